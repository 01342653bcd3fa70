"""
Schema and write-set construction for the SQLite store.

Each collection is a table of ``(key, payload)`` rows holding the JSON of
one record. Settings are ``(key, value)`` rows with JSON-encoded values.
A save is one write-set: settings upserts, then for every collection a
delete of the keys no longer in memory followed by an upsert of every live
record. Applied in one transaction, the stored tables converge to exactly
the in-memory ledger.
"""

import json
import logging
from typing import Any

from biztrack.exceptions import RecordDecodeError
from biztrack.models import COLLECTIONS, CollectionSpec, Ledger, Record

from .base import Statement

logger = logging.getLogger(__name__)

SETTINGS_TABLE = "settings"

# Second column of each table; collections use "payload"
VALUE_COLUMNS = {SETTINGS_TABLE: "value"}

# Plain rowid tables: INSERT OR REPLACE moves a row to the end, so reading
# back in rowid order returns records in the order they were last saved.
SCHEMA_DDL: list[str] = [
    f"""
    CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
        key TEXT NOT NULL PRIMARY KEY,
        value TEXT NOT NULL
    )
    """
] + [
    f"""
    CREATE TABLE IF NOT EXISTS {spec.name} (
        key TEXT NOT NULL PRIMARY KEY CHECK(length(key) > 0),
        payload TEXT NOT NULL
    )
    """
    for spec in COLLECTIONS
]


def value_column(table: str) -> str:
    """Name of the payload column for a table."""
    return VALUE_COLUMNS.get(table, "payload")


def encode(value: Any) -> str:
    """JSON-encode a value for storage, keeping non-ASCII text as-is."""
    return json.dumps(value, ensure_ascii=False)


def build_write_set(ledger: Ledger) -> list[Statement]:
    """
    Build the statements that make storage match the ledger.

    Records without a key are left out of the write-set and logged.

    Args:
        ledger: The ledger to persist

    Returns:
        Ordered list of statements, meant to run in a single transaction
    """
    write_set = [
        Statement(
            f"INSERT OR REPLACE INTO {SETTINGS_TABLE} (key, value) VALUES (?, ?)",
            (key, encode(value)),
        )
        for key, value in ledger.settings.to_dict().items()
    ]

    for spec in COLLECTIONS:
        live_keys = []
        upserts = []
        for record in ledger.collection(spec.name):
            key = record.key
            if not key:
                logger.warning(
                    f"Skipping {spec.record_type.__name__} without "
                    f"'{spec.key_field}' in {spec.name}"
                )
                continue
            live_keys.append(key)
            upserts.append(
                Statement(
                    f"INSERT OR REPLACE INTO {spec.name} (key, payload) VALUES (?, ?)",
                    (key, encode(record.to_dict())),
                )
            )

        if live_keys:
            # One JSON array parameter instead of a placeholder per key
            write_set.append(
                Statement(
                    f"DELETE FROM {spec.name} WHERE key NOT IN "
                    f"(SELECT value FROM json_each(?))",
                    (encode(live_keys),),
                )
            )
        else:
            write_set.append(Statement(f"DELETE FROM {spec.name}"))
        write_set.extend(upserts)

    logger.debug(f"Built write-set of {len(write_set)} statements")
    return write_set


def decode_settings_rows(rows: list[tuple[str, str]]) -> dict[str, Any]:
    """Decode settings rows; values that are not JSON are kept as text."""
    settings = {}
    for key, value in rows:
        try:
            settings[key] = json.loads(value)
        except (TypeError, ValueError):
            settings[key] = value
    return settings


def decode_collection_rows(spec: CollectionSpec, rows: list[tuple[str, str]]) -> list[Record]:
    """
    Decode stored rows into records, skipping rows that are not JSON objects.

    Fields with unexpected types do not drop a row; they are kept as raw
    values so the next save writes the record back unchanged.

    Args:
        spec: Collection the rows belong to
        rows: ``(key, payload)`` tuples in storage order

    Returns:
        Decoded records in storage order
    """
    records = []
    for key, payload in rows:
        try:
            records.append(spec.record_type.from_dict(json.loads(payload), strict=False))
        except (TypeError, ValueError) as e:
            # RecordDecodeError is a ValueError, as is JSONDecodeError
            reason = e.message if isinstance(e, RecordDecodeError) else str(e)
            logger.warning(f"Skipping unreadable row '{key}' in {spec.name}: {reason}")
    return records
