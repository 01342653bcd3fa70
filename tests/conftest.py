"""Test fixtures and utilities."""

import asyncio
import sqlite3
from pathlib import Path

import pytest

from biztrack.db import DocumentStore, SqliteStore, StoreResult
from biztrack.exceptions import SchemaError, WriteError
from biztrack.models import Customer, Expense, Ledger, Product, Return, Sale, Supplier
from biztrack.sync import SyncController


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


def table_rows(db_path: Path, table: str) -> dict[str, str]:
    """Read a table straight from the database file, bypassing the store."""
    conn = sqlite3.connect(db_path)
    try:
        column = "value" if table == "settings" else "payload"
        rows = conn.execute(f"SELECT key, {column} FROM {table}").fetchall()
        return {key: value for key, value in rows}
    finally:
        conn.close()


class BrokenWriteStore(SqliteStore):
    """SQLite store whose bulk writes always fail."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.write_attempts = 0

    async def bulk_write(self, write_set):
        self.write_attempts += 1
        return StoreResult.failure(WriteError("simulated write failure"))


class BrokenSchemaStore(SqliteStore):
    """SQLite store that cannot create its schema."""

    async def ensure_schema(self, ddl):
        return StoreResult.failure(SchemaError("simulated schema failure"))


@pytest.fixture
def data_dir(tmp_path):
    """Directory for database and fallback files."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def db_path(data_dir):
    return data_dir / "biztrack_v3.db"


@pytest.fixture
def document_store(data_dir):
    return DocumentStore(data_dir)


@pytest.fixture
def make_controller(db_path, document_store):
    """Factory for controllers sharing the same database and fallback files."""

    def _make(ledger=None, primary="sqlite", status_callback=None):
        if primary == "sqlite":
            primary = SqliteStore(db_path)
        return SyncController(
            ledger if ledger is not None else Ledger(),
            primary,
            document_store,
            status_callback=status_callback,
        )

    return _make


@pytest.fixture
def sample_ledger():
    """A ledger with one record in every collection."""
    ledger = Ledger()
    ledger.settings.biz_name = "Mama Rose Shop"
    ledger.settings.currency = "KES"
    ledger.add(
        "sales",
        Sale(
            id="SL-0001",
            date="2024-05-01T09:30:00.000Z",
            customer="Amina",
            product="Sugar 1kg",
            qty=2,
            unit_price=4500,
            subtotal=9000,
            tax=0,
            total=9000,
            paid=5000,
            balance=4000,
            status="PARTIAL",
            due_date="2024-05-31",
            method="Cash",
        ),
    )
    ledger.add(
        "inventory",
        Product(id="PRD-0001", name="Sugar 1kg", category="Food", cost_price=3800, sell_price=4500, stock=48),
    )
    ledger.add("expenses", Expense(id="EXP-0001", description="Rent", amount=150000, category="Rent"))
    ledger.add("suppliers", Supplier(id="SUP-0001", name="Kakira Sugar", balance=200000))
    ledger.add("customers", Customer(name="Amina", billed=9000, paid=5000, balance=4000, transactions=1))
    ledger.add("returns", Return(id="RET-0001", sale_id="SL-0001", product="Sugar 1kg", qty=1, refund=4500))
    return ledger
