"""
Base types shared by the storage backends.

Backend operations do not raise on storage failures. They return a
``StoreResult`` that either carries a value or the ``StorageError`` that
stopped them, and the sync controller decides how to react.
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, Protocol, Sequence, TypeVar

from biztrack.exceptions import FailureKind, StorageError

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of a backend operation: a value, or an error."""

    value: Optional[T] = None
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[FailureKind]:
        """Failure kind, or None on success."""
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: StorageError) -> "StoreResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value


@dataclass(frozen=True)
class Statement:
    """One parameterised SQL statement of a write-set."""

    sql: str
    params: tuple[Any, ...] = ()


class PrimaryBackend(Protocol):
    """Transactional store with one table per collection."""

    async def connect(self) -> StoreResult[None]: ...

    async def open(self) -> StoreResult[None]: ...

    async def ensure_schema(self, ddl: Sequence[str]) -> StoreResult[None]: ...

    async def query(self, table: str) -> StoreResult[list[tuple[str, str]]]: ...

    async def bulk_write(self, write_set: Sequence[Statement]) -> StoreResult[int]: ...

    async def close(self) -> None: ...


class DegradedBackend(Protocol):
    """Key/value store holding the whole ledger as one document."""

    async def read_document(self) -> StoreResult[Optional[str]]: ...

    async def write_document(self, document: str) -> StoreResult[None]: ...
