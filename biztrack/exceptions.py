"""Custom exceptions for BizTrack.

Storage failures are normally carried inside a ``StoreResult`` rather than
raised; the sync controller decides what each failure kind means.
"""

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Where in the storage lifecycle a failure happened."""

    UNAVAILABLE = "unavailable"
    CONNECT = "connect"
    SCHEMA = "schema"
    HYDRATE = "hydrate"
    WRITE = "write"
    DOCUMENT = "document"


class BizTrackError(Exception):
    """Base exception for all BizTrack errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """Initialize exception with message and optional details.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details


class StorageError(BizTrackError):
    """A storage backend operation failed."""

    kind: FailureKind = FailureKind.WRITE


class BackendUnavailable(StorageError):
    """The primary backend is not present on this platform."""

    kind = FailureKind.UNAVAILABLE


class StoreConnectionError(StorageError):
    """The primary backend could not be connected to or opened."""

    kind = FailureKind.CONNECT


class SchemaError(StorageError):
    """Schema creation failed."""

    kind = FailureKind.SCHEMA


class HydrationError(StorageError):
    """Reading the stored ledger back into memory failed."""

    kind = FailureKind.HYDRATE


class WriteError(StorageError):
    """A bulk write to the primary backend failed and was rolled back."""

    kind = FailureKind.WRITE


class DocumentStoreError(StorageError):
    """Reading or writing the fallback document failed."""

    kind = FailureKind.DOCUMENT


class MalformedDocument(BizTrackError):
    """An imported ledger document is not valid JSON or has the wrong shape."""

    pass


class RecordError(BizTrackError, ValueError):
    """Base class for record validation errors."""

    pass


class MissingKeyError(RecordError):
    """A record has no usable value in its key field."""

    pass


class DuplicateKeyError(RecordError):
    """A record's key is already used in its collection."""

    pass


class RecordDecodeError(RecordError):
    """A record field has a value of the wrong type."""

    pass
