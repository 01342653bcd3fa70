"""
Sync controller for the BizTrack ledger.

Owns the link between the in-memory ledger and storage:
- cold-start hydration from the primary SQLite store
- a one-way switch to the document store when the primary one fails
- write-through saves of the whole ledger as a single transaction
- JSON export and import of the complete ledger

State machine::

    UNINITIALIZED -> CONNECTING -> (HYDRATED | DEGRADED) -> READY
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Callable, Optional, Union

from biztrack.config import BACKEND_DOCUMENT, get_backend_mode, get_data_dir, get_db_path
from biztrack.db import (
    SCHEMA_DDL,
    SETTINGS_TABLE,
    DegradedBackend,
    DocumentStore,
    PrimaryBackend,
    SqliteStore,
    StoreResult,
    build_write_set,
    decode_collection_rows,
    decode_settings_rows,
)
from biztrack.exceptions import (
    BackendUnavailable,
    FailureKind,
    MalformedDocument,
    RecordDecodeError,
    StorageError,
)
from biztrack.models import COLLECTIONS, BusinessSettings, Ledger

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    HYDRATED = "hydrated"
    DEGRADED = "degraded"
    READY = "ready"


class FailureAction(str, Enum):
    """What the controller does about a storage failure."""

    DEGRADE = "degrade"  # use the document store for the rest of the run
    FALLBACK_WRITE = "fallback_write"  # write the ledger to the document store too
    LOG = "log"  # nothing left to fall back to


FAILURE_POLICY: dict[FailureKind, FailureAction] = {
    FailureKind.UNAVAILABLE: FailureAction.DEGRADE,
    FailureKind.CONNECT: FailureAction.DEGRADE,
    FailureKind.SCHEMA: FailureAction.DEGRADE,
    FailureKind.HYDRATE: FailureAction.DEGRADE,
    FailureKind.WRITE: FailureAction.FALLBACK_WRITE,
    FailureKind.DOCUMENT: FailureAction.LOG,
}


class SyncController:
    """
    Keeps a Ledger durably stored.

    ``initialize`` never raises: whatever goes wrong, it ends READY with the
    ledger populated from the primary store, from the fallback document, or
    left at defaults. ``save`` never raises either; ``import_ledger`` is the
    only operation that reports failure to its caller.
    """

    def __init__(
        self,
        ledger: Ledger,
        primary: Optional[PrimaryBackend],
        fallback: DegradedBackend,
        status_callback: Optional[StatusCallback] = None,
    ):
        """
        Initialize the controller.

        Args:
            ledger: The shared ledger to hydrate and persist
            primary: Transactional backend, or None when not available
            fallback: Single-document backend used in degraded mode
            status_callback: Receives human-readable progress messages
        """
        self.ledger = ledger
        self._primary = primary
        self._fallback = fallback
        self._status_callback = status_callback

        self.state = SyncState.UNINITIALIZED
        self.degraded = False
        self.last_error: Optional[StorageError] = None

        self._write_lock = asyncio.Lock()
        self._pending: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        ledger: Optional[Ledger] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> "SyncController":
        """Build a controller with the backends selected by environment config."""
        if get_backend_mode() == BACKEND_DOCUMENT:
            primary = None
        else:
            primary = SqliteStore(get_db_path())
        return cls(
            ledger if ledger is not None else Ledger(),
            primary,
            DocumentStore(get_data_dir()),
            status_callback=status_callback,
        )

    @property
    def is_ready(self) -> bool:
        return self.state is SyncState.READY

    @property
    def backend_name(self) -> str:
        """Name of the backend saves currently go to."""
        return "document" if self._primary is None else "sqlite"

    def _notify(self, message: str):
        """Send a progress message to the status sink."""
        logger.info(message)
        if self._status_callback is None:
            return
        try:
            self._status_callback(message)
        except Exception as e:
            logger.warning(f"Status callback failed: {e}", exc_info=True)

    # =========================================================================
    # Startup
    # =========================================================================

    async def initialize(self) -> SyncState:
        """
        Select a backend and hydrate the ledger from it.

        Returns:
            The final state, always READY
        """
        if self.state is not SyncState.UNINITIALIZED:
            logger.warning(f"initialize() called again in state {self.state.value}")
            return self.state

        self.state = SyncState.CONNECTING
        self._notify("Opening database…")

        if self._primary is None:
            result = StoreResult.failure(
                BackendUnavailable("SQLite store not available, using document fallback")
            )
        else:
            result = await self._start_primary()

        if result.ok:
            self.state = SyncState.HYDRATED
        else:
            await self._handle_failure(result)

        self.state = SyncState.READY
        self._notify("Ready!")
        return self.state

    async def _start_primary(self) -> StoreResult[None]:
        """Connect, open, create the schema and hydrate, stopping at the first failure."""
        steps = [
            ("Creating connection…", self._primary.connect),
            ("Opening database…", self._primary.open),
            ("Initialising schema…", lambda: self._primary.ensure_schema(SCHEMA_DDL)),
            ("Loading your data…", self._hydrate),
        ]
        for message, step in steps:
            self._notify(message)
            result = await step()
            if not result.ok:
                return result
        return StoreResult.success()

    async def _hydrate(self) -> StoreResult[None]:
        """
        Read every table and load it into the ledger.

        All tables are read before the ledger is touched, so a failed query
        leaves the ledger as it was for the fallback to populate.
        """
        settings_result = await self._primary.query(SETTINGS_TABLE)
        if not settings_result.ok:
            return settings_result

        staged = {}
        for spec in COLLECTIONS:
            result = await self._primary.query(spec.name)
            if not result.ok:
                return result
            if result.value:
                staged[spec.name] = decode_collection_rows(spec, result.value)

        if settings_result.value:
            self.ledger.settings = BusinessSettings.layered(
                self.ledger.settings.to_dict(),
                decode_settings_rows(settings_result.value),
            )
        for name, records in staged.items():
            self.ledger.collection(name)[:] = records

        logger.info(f"Hydrated ledger from SQLite: {self.ledger.counts()}")
        return StoreResult.success()

    async def _degrade(self, error: StorageError):
        """Switch to the document store for the rest of the run and load from it."""
        logger.warning(f"{error.message} - switching to document fallback")
        self.degraded = True
        self.state = SyncState.DEGRADED

        primary, self._primary = self._primary, None
        if primary is not None:
            await primary.close()

        await self._load_fallback()

    async def _load_fallback(self):
        """Merge the fallback document, if any, into the ledger."""
        result = await self._fallback.read_document()
        if not result.ok:
            await self._handle_failure(result)
            return
        if not result.value:
            logger.info("No fallback document found, starting with defaults")
            return

        try:
            data = json.loads(result.value)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            self.ledger.merge(
                data, settings_base=self.ledger.settings.to_dict(), strict=False
            )
        except ValueError as e:
            logger.warning(f"Fallback document is not a valid ledger: {e}")
            return

        logger.info(f"Loaded ledger from fallback document: {self.ledger.counts()}")

    async def _handle_failure(self, result: StoreResult):
        """Apply the failure policy to a failed backend result."""
        error = result.error
        self.last_error = error
        action = FAILURE_POLICY[result.kind]

        if action is FailureAction.DEGRADE:
            await self._degrade(error)
        elif action is FailureAction.FALLBACK_WRITE:
            logger.error(f"{error.message} - writing ledger to fallback document")
            await self._write_fallback()
        else:
            logger.warning(f"Storage failure ignored: {error.message}")

    # =========================================================================
    # Saving
    # =========================================================================

    def save(self) -> asyncio.Task:
        """
        Persist the whole ledger in the background.

        Saves run one at a time. A save requested while another is running
        is queued; further requests made before the queued one starts share
        it, since it will snapshot the ledger when it runs.

        Must be called from a running event loop.

        Returns:
            Task that finishes when the queued save has been written. It can be
            ignored; failures are handled and logged inside the task.
        """
        if self._pending is None or self._pending.done():
            task = asyncio.get_running_loop().create_task(self._run_save())
            self._pending = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return self._pending

    async def wait_for_saves(self):
        """Wait until every requested save has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _run_save(self):
        async with self._write_lock:
            # From here on the ledger is snapshotted; later requests need a new save
            self._pending = None
            await self._flush()

    async def _flush(self):
        if self._primary is None or not self.is_ready:
            await self._write_fallback()
            return

        try:
            write_set = build_write_set(self.ledger)
        except (TypeError, ValueError) as e:
            logger.error(f"Ledger could not be serialized: {e}", exc_info=True)
            return

        result = await self._primary.bulk_write(write_set)
        if not result.ok:
            await self._handle_failure(result)

    async def _write_fallback(self):
        try:
            document = self.export_ledger()
        except (TypeError, ValueError) as e:
            logger.error(f"Ledger could not be serialized: {e}", exc_info=True)
            return

        result = await self._fallback.write_document(document)
        if not result.ok:
            await self._handle_failure(result)

    # =========================================================================
    # Export / import
    # =========================================================================

    def export_ledger(self) -> str:
        """Serialize the complete ledger as a JSON document."""
        return json.dumps(self.ledger.to_dict(), indent=2, ensure_ascii=False)

    async def import_ledger(self, document: Union[str, bytes]):
        """
        Replace ledger contents with an exported document and save.

        Collections in the document replace the current ones. Settings are
        rebuilt from defaults plus the document's settings, so settings the
        document leaves out return to their defaults.

        Args:
            document: JSON text produced by ``export_ledger`` or compatible

        Raises:
            MalformedDocument: If the document is not a valid ledger; the
                ledger is left untouched
        """
        try:
            data = json.loads(document)
        except (TypeError, ValueError) as e:
            raise MalformedDocument(
                "Document is not valid JSON", details={"error": str(e)}
            ) from e

        if not isinstance(data, dict):
            raise MalformedDocument(
                f"Document must be a JSON object, got {type(data).__name__}"
            )

        try:
            self.ledger.merge(data, settings_base=None)
        except RecordDecodeError as e:
            raise MalformedDocument(e.message, details=e.details) from e

        logger.info(f"Imported ledger document: {self.ledger.counts()}")
        await self.save()
