"""
Storage layer for the BizTrack ledger.

Structure:
- base.py: StoreResult, Statement and the backend protocols
- write_set.py: Schema DDL, reconciliation write-set, row decoding
- sqlite_store.py: Primary backend on SQLite
- document_store.py: Degraded single-document backend
"""

from .base import DegradedBackend, PrimaryBackend, Statement, StoreResult
from .document_store import DocumentStore
from .sqlite_store import SqliteStore
from .write_set import (
    SCHEMA_DDL,
    SETTINGS_TABLE,
    build_write_set,
    decode_collection_rows,
    decode_settings_rows,
)

__all__ = [
    # Base
    "DegradedBackend",
    "PrimaryBackend",
    "Statement",
    "StoreResult",
    # Backends
    "DocumentStore",
    "SqliteStore",
    # Write-sets
    "SCHEMA_DDL",
    "SETTINGS_TABLE",
    "build_write_set",
    "decode_collection_rows",
    "decode_settings_rows",
]
