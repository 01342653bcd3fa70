from .export import ExportFormat, ExportService

__all__ = [
    "ExportFormat",
    "ExportService",
]
