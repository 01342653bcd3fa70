"""
BizTrack - small-business record keeping

Keeps an in-memory ledger of sales, inventory, expenses, suppliers,
customers and returns durably stored in SQLite, with a single-document
fallback store when SQLite cannot be used.
"""

from .exceptions import BizTrackError, MalformedDocument
from .models import BusinessSettings, Ledger
from .sync import SyncController, SyncState

__version__ = "0.1.0"

__all__ = [
    "BizTrackError",
    "BusinessSettings",
    "Ledger",
    "MalformedDocument",
    "SyncController",
    "SyncState",
]
