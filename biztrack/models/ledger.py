"""
In-memory business ledger.

The Ledger is the working copy of all business data for the session. It is
created with defaults at startup, hydrated once from storage, and then read
and mutated directly by the application. Persistence goes through the sync
controller, which always writes the whole ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Type

from biztrack.config import ERROR_MESSAGES
from biztrack.exceptions import DuplicateKeyError, MissingKeyError, RecordDecodeError

from .records import Customer, Expense, Product, Record, Return, Sale, Supplier
from .settings import DEFAULT_BIZ_NAME, BusinessSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSpec:
    """Describes one keyed collection of the ledger."""

    name: str
    record_type: Type[Record]
    id_prefix: Optional[str] = None  # None for naturally keyed collections

    @property
    def key_field(self) -> str:
        """JSON name of the key field (``id`` or ``name``)."""
        return self.record_type.KEY_FIELD


# Storage order of the collections
COLLECTIONS: tuple[CollectionSpec, ...] = (
    CollectionSpec("sales", Sale, "SL-"),
    CollectionSpec("inventory", Product, "PRD-"),
    CollectionSpec("expenses", Expense, "EXP-"),
    CollectionSpec("suppliers", Supplier, "SUP-"),
    CollectionSpec("customers", Customer),
    CollectionSpec("returns", Return, "RET-"),
)

COLLECTION_SPECS: dict[str, CollectionSpec] = {spec.name: spec for spec in COLLECTIONS}

# Key order of an exported document
DOCUMENT_KEYS = (
    "settings",
    "sales",
    "inventory",
    "suppliers",
    "customers",
    "expenses",
    "returns",
)


def get_collection_spec(name: str) -> CollectionSpec:
    """Look up a collection by name, raising KeyError for unknown names."""
    try:
        return COLLECTION_SPECS[name]
    except KeyError:
        raise KeyError(ERROR_MESSAGES["unknown_collection"].format(name=name)) from None


def decode_records(spec: CollectionSpec, items: Any, strict: bool = True) -> list[Record]:
    """
    Decode a JSON list into typed records for a collection.

    Strict decoding rejects wrongly typed fields and repeated keys. Lenient
    decoding keeps such records as they are and only drops elements that
    are not JSON objects.

    Raises:
        RecordDecodeError: If items is not a list, or (strict only) an
            element fails to decode or repeats a key
    """
    if not isinstance(items, list):
        raise RecordDecodeError(
            f"Collection '{spec.name}' must be a list, got {type(items).__name__}"
        )
    records = []
    seen = set()
    for index, item in enumerate(items):
        try:
            record = spec.record_type.from_dict(item, strict=strict)
        except RecordDecodeError as e:
            if not strict:
                logger.warning(f"Dropping {spec.name}[{index}]: {e.message}")
                continue
            raise RecordDecodeError(
                f"{spec.name}[{index}]: {e.message}", details=e.details
            ) from e

        key = record.key
        if key and key in seen:
            if strict:
                raise RecordDecodeError(
                    f"{spec.name}[{index}]: duplicate {spec.key_field} '{key}'",
                    details={"field": spec.key_field, "value": key},
                )
            logger.warning(f"Duplicate {spec.key_field} '{key}' in {spec.name}")
        seen.add(key)
        records.append(record)
    return records


@dataclass
class Ledger:
    """
    Root aggregate of business records and settings.

    One instance is shared by reference between the sync controller and
    every collaborator; the controller updates it in place so that handles
    held elsewhere stay valid.
    """

    settings: BusinessSettings = field(default_factory=BusinessSettings)
    sales: list[Sale] = field(default_factory=list)
    inventory: list[Product] = field(default_factory=list)
    suppliers: list[Supplier] = field(default_factory=list)
    customers: list[Customer] = field(default_factory=list)
    expenses: list[Expense] = field(default_factory=list)
    returns: list[Return] = field(default_factory=list)

    def collection(self, name: str) -> list:
        """Get a collection list by name."""
        get_collection_spec(name)
        return getattr(self, name)

    @property
    def is_onboarded(self) -> bool:
        """Whether the business name has been set away from the default."""
        return bool(self.settings.biz_name) and self.settings.biz_name != DEFAULT_BIZ_NAME

    def counts(self) -> dict[str, int]:
        """Number of records per collection."""
        return {spec.name: len(self.collection(spec.name)) for spec in COLLECTIONS}

    # =========================================================================
    # Record operations
    # =========================================================================

    def find(self, collection: str, key: Any) -> Optional[Record]:
        """Find a record by exact key match."""
        wanted = str(key)
        for record in self.collection(collection):
            if record.key == wanted:
                return record
        return None

    def next_id(self, collection: str) -> str:
        """
        Generate the next free id for a collection.

        Ids look like ``SL-0001``: the prefix, then the collection size plus
        one, zero padded. If that id is already taken (records were removed),
        the number is advanced until a free one is found.

        Raises:
            ValueError: If the collection is keyed by name rather than id
        """
        spec = get_collection_spec(collection)
        if spec.id_prefix is None:
            raise ValueError(f"Collection '{collection}' has no generated ids")

        taken = {record.key for record in self.collection(collection)}
        number = len(taken) + 1
        while f"{spec.id_prefix}{number:04d}" in taken:
            number += 1
        return f"{spec.id_prefix}{number:04d}"

    def add(self, collection: str, record: Record) -> Record:
        """
        Append a record after validating its key.

        Args:
            collection: Collection name
            record: Record of the collection's type

        Returns:
            The record that was added

        Raises:
            TypeError: If the record type does not match the collection
            MissingKeyError: If the record has no key value
            DuplicateKeyError: If another record already uses the key
        """
        spec = get_collection_spec(collection)
        if not isinstance(record, spec.record_type):
            raise TypeError(
                f"{collection} holds {spec.record_type.__name__}, "
                f"got {type(record).__name__}"
            )

        if not record.key:
            raise MissingKeyError(
                f"{spec.record_type.__name__} needs a '{spec.key_field}' value",
                details={"collection": collection},
            )

        if self.find(collection, record.key) is not None:
            raise DuplicateKeyError(
                f"{collection} already has a record '{record.key}'",
                details={"collection": collection, "key": record.key},
            )

        self.collection(collection).append(record)
        return record

    def remove(self, collection: str, key: Any) -> bool:
        """Remove the record with the given key. Returns False if absent."""
        records = self.collection(collection)
        record = self.find(collection, key)
        if record is None:
            return False
        records.remove(record)
        return True

    def clear_records(self):
        """Empty every collection. Settings are kept."""
        for spec in COLLECTIONS:
            self.collection(spec.name).clear()

    # =========================================================================
    # Document conversion
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Convert to the exported document shape."""
        data: dict[str, Any] = {"settings": self.settings.to_dict()}
        for name in DOCUMENT_KEYS[1:]:
            data[name] = [record.to_dict() for record in self.collection(name)]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], strict: bool = True) -> "Ledger":
        """Create a new ledger from a document. Missing parts get defaults."""
        ledger = cls()
        ledger.merge(data, settings_base=None, strict=strict)
        return ledger

    def merge(
        self,
        data: Mapping[str, Any],
        settings_base: Optional[Mapping[str, Any]] = None,
        strict: bool = True,
    ):
        """
        Merge a document into this ledger in place.

        Collections present in the document replace the current ones
        wholesale; absent collections are left alone. Settings become the
        defaults, then ``settings_base``, then the document's settings.
        Everything is decoded before anything is assigned, so a decode
        failure leaves the ledger untouched.

        Documents read back from storage are merged with ``strict=False``:
        records are kept even when fields have unexpected types, and a part
        of the wrong shape is skipped with a warning instead of failing the
        whole document.

        Args:
            data: Parsed document
            settings_base: Settings layered between defaults and the document
            strict: Reject the document on any decode problem

        Raises:
            RecordDecodeError: If (strict only) a collection or record has the
                wrong shape
        """
        decoded = {}
        for spec in COLLECTIONS:
            if spec.name not in data:
                continue
            try:
                decoded[spec.name] = decode_records(spec, data[spec.name], strict=strict)
            except RecordDecodeError as e:
                if strict:
                    raise
                logger.warning(f"Skipping stored {spec.name}: {e.message}")

        imported_settings = data.get("settings")
        if imported_settings is not None and not isinstance(imported_settings, Mapping):
            message = f"settings must be an object, got {type(imported_settings).__name__}"
            if strict:
                raise RecordDecodeError(message)
            logger.warning(f"Skipping stored settings: {message}")
            imported_settings = None

        unknown = set(data) - set(DOCUMENT_KEYS)
        if unknown:
            logger.debug(f"Ignoring unknown document keys: {sorted(unknown)}")

        for name, records in decoded.items():
            self.collection(name)[:] = records
        self.settings = BusinessSettings.layered(settings_base, imported_settings)
