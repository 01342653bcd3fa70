"""
Document store: the degraded backend.

A minimal persisted key/value string store. The ledger is written as one
JSON document under a single well-known key, with no schema and no
transactions beyond an atomic file replace.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from biztrack.config import FALLBACK_DOCUMENT_KEY
from biztrack.exceptions import DocumentStoreError

from .base import StoreResult

logger = logging.getLogger(__name__)


class DocumentStore:
    """Persist one string document per key as a file in a directory."""

    def __init__(self, directory: Union[Path, str], key: str = FALLBACK_DOCUMENT_KEY):
        """
        Args:
            directory: Directory holding the document files
            key: Well-known name of the ledger document
        """
        self.directory = Path(directory)
        self.key = key

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def _write(self, document: str):
        self.directory.mkdir(parents=True, exist_ok=True)
        # Write beside the target, then swap it in so readers never see half a file
        fd, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=f".{self.key}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def read_document(self) -> StoreResult[Optional[str]]:
        """Read the stored document; the value is None when nothing is stored."""
        try:
            document = await asyncio.to_thread(self._read)
            return StoreResult.success(document)
        except (OSError, UnicodeDecodeError) as e:
            return StoreResult.failure(
                DocumentStoreError(f"Could not read {self.path}: {e}")
            )

    async def write_document(self, document: str) -> StoreResult[None]:
        """Replace the stored document."""
        try:
            await asyncio.to_thread(self._write, document)
            logger.debug(f"Wrote {len(document)} characters to {self.path}")
            return StoreResult.success()
        except OSError as e:
            return StoreResult.failure(
                DocumentStoreError(f"Could not write {self.path}: {e}")
            )
