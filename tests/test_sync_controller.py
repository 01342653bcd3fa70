"""Tests for the sync controller."""

import asyncio
import json
import sqlite3

import pytest

from conftest import BrokenSchemaStore, BrokenWriteStore, run, table_rows

from biztrack.exceptions import FailureKind, MalformedDocument
from biztrack.models import Customer, Ledger, Product, Sale
from biztrack.sync import FAILURE_POLICY, FailureAction, SyncController, SyncState


def stored_ledger(document_store) -> dict:
    """The fallback document as parsed JSON."""
    return json.loads(document_store.path.read_text(encoding="utf-8"))


class TestInitialize:
    """Tests for startup and hydration."""

    def test_first_run_has_defaults(self, make_controller):
        """An empty store yields empty collections and default settings."""
        controller = make_controller()

        state = run(controller.initialize())

        assert state is SyncState.READY
        assert not controller.degraded
        assert controller.backend_name == "sqlite"
        assert all(count == 0 for count in controller.ledger.counts().values())
        assert controller.ledger.settings.biz_name == "My Business"

    def test_restart_hydrates_saved_sale(self, make_controller):
        """A saved sale is there after a restart."""

        async def first_run():
            controller = make_controller()
            await controller.initialize()
            controller.ledger.add("sales", Sale(id="SL-0001", product="Soap", total=2500))
            await controller.save()

        async def second_run():
            controller = make_controller()
            await controller.initialize()
            return controller.ledger

        run(first_run())
        ledger = run(second_run())

        assert [s.id for s in ledger.sales] == ["SL-0001"]
        assert ledger.sales[0].total == 2500

    def test_restart_round_trips_whole_ledger(self, make_controller, sample_ledger):
        async def scenario():
            first = make_controller(ledger=sample_ledger)
            await first.initialize()
            await first.save()

            second = make_controller()
            await second.initialize()
            return second.ledger

        assert run(scenario()) == sample_ledger

    def test_hydration_preserves_order(self, make_controller):
        """Records come back in their in-memory order, not key order."""

        async def scenario():
            controller = make_controller()
            await controller.initialize()
            for key in ("PRD-0003", "PRD-0001", "PRD-0002"):
                controller.ledger.add("inventory", Product(id=key))
            await controller.save()

            restarted = make_controller()
            await restarted.initialize()
            return [p.id for p in restarted.ledger.inventory]

        assert run(scenario()) == ["PRD-0003", "PRD-0001", "PRD-0002"]

    def test_hydration_skips_corrupt_rows(self, make_controller, db_path):
        async def setup():
            controller = make_controller()
            await controller.initialize()
            controller.ledger.add("sales", Sale(id="SL-0001"))
            await controller.save()

        run(setup())
        conn = sqlite3.connect(db_path)
        conn.execute("INSERT INTO sales (key, payload) VALUES ('SL-0002', 'garbage')")
        conn.commit()
        conn.close()

        controller = make_controller()
        run(controller.initialize())

        assert not controller.degraded
        assert [s.id for s in controller.ledger.sales] == ["SL-0001"]

    def test_hydration_keeps_oddly_typed_row(self, make_controller, db_path):
        """A stored row with an unexpected field type survives restart and save."""
        payload = {"id": "SL-0001", "qty": "2", "total": 100}

        async def setup():
            await make_controller().initialize()

        run(setup())
        conn = sqlite3.connect(db_path)
        conn.execute("INSERT INTO sales (key, payload) VALUES (?, ?)", ("SL-0001", json.dumps(payload)))
        conn.commit()
        conn.close()

        async def restart():
            controller = make_controller()
            await controller.initialize()
            await controller.save()
            return controller

        controller = run(restart())

        assert [s.id for s in controller.ledger.sales] == ["SL-0001"]
        assert json.loads(table_rows(db_path, "sales")["SL-0001"]) == payload

    def test_status_messages(self, make_controller):
        messages = []
        run(make_controller(status_callback=messages.append).initialize())

        assert messages == [
            "Opening database…",
            "Creating connection…",
            "Opening database…",
            "Initialising schema…",
            "Loading your data…",
            "Ready!",
        ]

    def test_failing_status_callback_is_ignored(self, make_controller):
        def broken(message):
            raise RuntimeError("display gone")

        assert run(make_controller(status_callback=broken).initialize()) is SyncState.READY

    def test_initialize_twice_is_a_no_op(self, make_controller):
        async def scenario():
            controller = make_controller()
            await controller.initialize()
            return await controller.initialize()

        assert run(scenario()) is SyncState.READY


class TestDegradedMode:
    """Tests for falling back to the document store."""

    def test_missing_primary_uses_document(self, make_controller, document_store):
        """Without SQLite, data is loaded from and saved to the document."""
        document_store.path.write_text(
            json.dumps({"settings": {"bizName": "Doc Shop"}, "sales": [{"id": "SL-0001"}]}),
            encoding="utf-8",
        )
        controller = make_controller(primary=None)

        async def scenario():
            await controller.initialize()
            controller.ledger.add("sales", Sale(id="SL-0002"))
            await controller.save()

        run(scenario())

        assert controller.degraded
        assert controller.backend_name == "document"
        assert controller.last_error.kind is FailureKind.UNAVAILABLE
        assert controller.ledger.settings.biz_name == "Doc Shop"
        assert [s["id"] for s in stored_ledger(document_store)["sales"]] == ["SL-0001", "SL-0002"]

    def test_fallback_settings_layer_over_current(self, make_controller, document_store):
        """Stored settings are applied over the in-memory ones."""
        document_store.path.write_text(json.dumps({"settings": {"currency": "USD"}}), encoding="utf-8")
        ledger = Ledger()
        ledger.settings.owner = "Rose"

        run(make_controller(ledger=ledger, primary=None).initialize())

        assert ledger.settings.currency == "USD"
        assert ledger.settings.owner == "Rose"

    def test_schema_failure_degrades(self, make_controller, db_path, document_store):
        controller = make_controller(primary=BrokenSchemaStore(db_path))

        run(controller.initialize())

        assert controller.degraded
        assert controller.state is SyncState.READY
        assert controller.last_error.kind is FailureKind.SCHEMA

    def test_corrupt_database_degrades(self, make_controller, db_path):
        db_path.write_bytes(b"this is not a database" * 200)
        controller = make_controller()

        run(controller.initialize())

        assert controller.degraded
        assert controller.backend_name == "document"

    def test_fallback_keeps_oddly_typed_records(self, make_controller, document_store):
        """One unexpected field type does not cost the rest of the document."""
        document_store.path.write_text(
            json.dumps(
                {
                    "settings": {"bizName": "Doc Shop"},
                    "sales": [{"id": "SL-0001"}, {"id": "SL-0002"}],
                    "customers": [{"name": "Amina", "phone": 772123456}],
                }
            ),
            encoding="utf-8",
        )
        controller = make_controller(primary=None)

        async def scenario():
            await controller.initialize()
            await controller.save()

        run(scenario())
        stored = stored_ledger(document_store)

        assert controller.ledger.settings.biz_name == "Doc Shop"
        assert [s["id"] for s in stored["sales"]] == ["SL-0001", "SL-0002"]
        assert stored["customers"] == [{"name": "Amina", "phone": 772123456}]
        assert stored["settings"]["bizName"] == "Doc Shop"

    def test_invalid_fallback_document_keeps_defaults(self, make_controller, document_store):
        document_store.path.write_text("{ not json", encoding="utf-8")
        controller = make_controller(primary=None)

        run(controller.initialize())

        assert controller.ledger == Ledger()

    def test_degraded_mode_is_not_retried(self, make_controller, db_path, document_store):
        """Once degraded, saves keep going to the document store."""
        controller = make_controller(primary=BrokenSchemaStore(db_path))

        async def scenario():
            await controller.initialize()
            controller.ledger.add("sales", Sale(id="SL-0001"))
            await controller.save()

        run(scenario())

        assert controller.backend_name == "document"
        assert stored_ledger(document_store)["sales"] == [{"id": "SL-0001"}]


class TestSave:
    """Tests for write-through persistence."""

    def test_removal_empties_table(self, make_controller, db_path):
        """Removing the only product deletes its row."""

        async def scenario():
            controller = make_controller()
            await controller.initialize()
            controller.ledger.add("inventory", Product(id="PRD-0001"))
            await controller.save()
            assert set(table_rows(db_path, "inventory")) == {"PRD-0001"}

            controller.ledger.remove("inventory", "PRD-0001")
            await controller.save()

        run(scenario())

        assert table_rows(db_path, "inventory") == {}

    def test_storage_converges_to_ledger(self, make_controller, db_path):
        """Adds, edits and removals leave exactly the live records stored."""

        async def scenario():
            controller = make_controller()
            await controller.initialize()
            ledger = controller.ledger
            for name in ("Amina", "Baraka", "Chebet"):
                ledger.add("customers", Customer(name=name, balance=0))
            await controller.save()

            ledger.remove("customers", "Baraka")
            ledger.find("customers", "Amina").balance = 1200
            ledger.add("customers", Customer(name="Dalia"))
            await controller.save()
            return ledger

        ledger = run(scenario())
        rows = table_rows(db_path, "customers")

        assert set(rows) == {"Amina", "Chebet", "Dalia"}
        for customer in ledger.customers:
            assert json.loads(rows[customer.name]) == customer.to_dict()

    def test_save_is_idempotent(self, make_controller, sample_ledger, db_path):
        tables = ["settings", "sales", "inventory", "expenses", "suppliers", "customers", "returns"]

        async def scenario():
            controller = make_controller(ledger=sample_ledger)
            await controller.initialize()
            await controller.save()
            first = {t: table_rows(db_path, t) for t in tables}
            await controller.save()
            return first

        first = run(scenario())

        assert {t: table_rows(db_path, t) for t in tables} == first

    def test_settings_are_stored_as_json(self, make_controller, sample_ledger, db_path):
        async def scenario():
            controller = make_controller(ledger=sample_ledger)
            await controller.initialize()
            await controller.save()

        run(scenario())
        settings = table_rows(db_path, "settings")

        assert json.loads(settings["bizName"]) == "Mama Rose Shop"
        assert json.loads(settings["payTerms"]) == 30

    def test_keyless_record_is_not_stored(self, make_controller, db_path):
        async def scenario():
            controller = make_controller()
            await controller.initialize()
            controller.ledger.sales.append(Sale(product="no id"))
            controller.ledger.sales.append(Sale(id="SL-0001"))
            await controller.save()

        run(scenario())

        assert set(table_rows(db_path, "sales")) == {"SL-0001"}

    def test_failed_write_falls_back_to_document(self, make_controller, db_path, document_store, sample_ledger):
        """A broken bulk write still leaves the ledger in the document store."""
        primary = BrokenWriteStore(db_path)
        controller = make_controller(ledger=sample_ledger, primary=primary)

        async def scenario():
            await controller.initialize()
            await controller.save()

        run(scenario())

        assert primary.write_attempts == 1
        assert controller.last_error.kind is FailureKind.WRITE
        assert Ledger.from_dict(stored_ledger(document_store)) == sample_ledger
        # The primary store stays selected for the next save
        assert controller.backend_name == "sqlite"

    def test_rolled_back_write_falls_back(self, make_controller, db_path, document_store):
        """A real SQLite error rolls back and the document gets the data."""

        async def scenario():
            controller = make_controller()
            await controller.initialize()
            controller.ledger.add("sales", Sale(id="SL-0001"))

            conn = sqlite3.connect(db_path)
            conn.execute("DROP TABLE inventory")
            conn.commit()
            conn.close()

            await controller.save()

        run(scenario())

        assert table_rows(db_path, "sales") == {}
        assert stored_ledger(document_store)["sales"] == [{"id": "SL-0001"}]

    def test_save_before_initialize_uses_document(self, make_controller, document_store, db_path):
        async def scenario():
            controller = make_controller()
            controller.ledger.add("sales", Sale(id="SL-0001"))
            await controller.save()

        run(scenario())

        assert stored_ledger(document_store)["sales"] == [{"id": "SL-0001"}]
        assert not db_path.exists()

    def test_save_returns_awaitable_task(self, make_controller):
        async def scenario():
            controller = make_controller()
            await controller.initialize()
            task = controller.save()
            assert isinstance(task, asyncio.Task)
            await task
            return task

        assert run(scenario()).done()

    def test_overlapping_saves_are_coalesced(self, make_controller, db_path):
        """Saves requested while one is running share a single queued save."""

        async def scenario():
            controller = make_controller()
            await controller.initialize()
            controller.ledger.add("sales", Sale(id="SL-0001"))
            running = controller.save()
            await asyncio.sleep(0)  # let the first save take the lock

            controller.ledger.add("sales", Sale(id="SL-0002"))
            queued = controller.save()
            controller.ledger.add("sales", Sale(id="SL-0003"))
            again = controller.save()

            await controller.wait_for_saves()
            return running, queued, again

        running, queued, again = run(scenario())

        assert queued is again
        assert running is not queued
        assert set(table_rows(db_path, "sales")) == {"SL-0001", "SL-0002", "SL-0003"}

    def test_failure_policy_table(self):
        assert FAILURE_POLICY[FailureKind.CONNECT] is FailureAction.DEGRADE
        assert FAILURE_POLICY[FailureKind.HYDRATE] is FailureAction.DEGRADE
        assert FAILURE_POLICY[FailureKind.WRITE] is FailureAction.FALLBACK_WRITE
        assert FAILURE_POLICY[FailureKind.DOCUMENT] is FailureAction.LOG
        assert set(FAILURE_POLICY) == set(FailureKind)


class TestExportImport:
    """Tests for whole-ledger export and import."""

    def test_export_has_document_keys(self, make_controller, sample_ledger):
        document = json.loads(make_controller(ledger=sample_ledger).export_ledger())

        assert list(document) == [
            "settings",
            "sales",
            "inventory",
            "suppliers",
            "customers",
            "expenses",
            "returns",
        ]
        assert document["sales"][0]["unitPrice"] == 4500

    def test_round_trip(self, make_controller, sample_ledger):
        """Importing an export reproduces the ledger."""
        exported = make_controller(ledger=sample_ledger).export_ledger()
        target = make_controller()

        async def scenario():
            await target.initialize()
            await target.import_ledger(exported)

        run(scenario())

        assert target.ledger == sample_ledger

    def test_partial_settings_fall_back_to_defaults(self, make_controller, sample_ledger):
        """Settings missing from the document get defaults, not old values."""
        controller = make_controller(ledger=sample_ledger)

        async def scenario():
            await controller.initialize()
            await controller.import_ledger(json.dumps({"settings": {"currency": "USD"}}))

        run(scenario())
        settings = controller.ledger.settings

        assert settings.currency == "USD"
        assert settings.biz_name == "My Business"
        assert settings.to_dict() == {**Ledger().settings.to_dict(), "currency": "USD"}

    def test_import_is_saved(self, make_controller, db_path):
        async def scenario():
            controller = make_controller()
            await controller.initialize()
            await controller.import_ledger(json.dumps({"sales": [{"id": "SL-0042"}]}))

        run(scenario())

        assert set(table_rows(db_path, "sales")) == {"SL-0042"}

    def test_import_accepts_bytes(self, make_controller):
        controller = make_controller()

        async def scenario():
            await controller.initialize()
            await controller.import_ledger('{"settings": {"bizName": "Kahawa Café"}}'.encode("utf-8"))

        run(scenario())

        assert controller.ledger.settings.biz_name == "Kahawa Café"

    @pytest.mark.parametrize(
        "document",
        [
            "not json at all",
            "[1, 2, 3]",
            '{"sales": "SL-0001"}',
            '{"inventory": [{"id": "PRD-0001", "stock": "plenty"}]}',
            '{"settings": ["bizName"]}',
            '{"customers": [{"name": "Amina"}, {"name": "Amina"}]}',
        ],
    )
    def test_malformed_document_is_rejected(self, make_controller, sample_ledger, document):
        """Bad documents raise and leave the ledger untouched."""
        controller = make_controller(ledger=sample_ledger)
        before = Ledger.from_dict(sample_ledger.to_dict())

        async def scenario():
            await controller.initialize()
            await controller.import_ledger(document)

        with pytest.raises(MalformedDocument):
            run(scenario())

        assert controller.ledger == before


    def test_duplicate_keys_are_rejected(self, make_controller, sample_ledger):
        """Two sales with one id would collapse into a single stored row."""
        controller = make_controller(ledger=sample_ledger)
        document = json.dumps({"sales": [{"id": "SL-0007", "total": 1}, {"id": "SL-0007", "total": 2}]})

        async def scenario():
            await controller.initialize()
            await controller.import_ledger(document)

        with pytest.raises(MalformedDocument):
            run(scenario())

        assert [s.id for s in controller.ledger.sales] == ["SL-0001"]


class TestFromConfig:
    """Tests for environment-driven backend selection."""

    def test_sqlite_by_default(self, monkeypatch, data_dir):
        monkeypatch.setenv("BIZTRACK_DATA_DIR", str(data_dir))
        monkeypatch.delenv("BIZTRACK_BACKEND", raising=False)

        controller = SyncController.from_config()
        run(controller.initialize())

        assert controller.backend_name == "sqlite"
        assert (data_dir / "biztrack_v3.db").exists()

    def test_document_backend_requested(self, monkeypatch, data_dir):
        monkeypatch.setenv("BIZTRACK_DATA_DIR", str(data_dir))
        monkeypatch.setenv("BIZTRACK_BACKEND", "document")

        controller = SyncController.from_config()
        run(controller.initialize())

        assert controller.degraded
        assert not (data_dir / "biztrack_v3.db").exists()
