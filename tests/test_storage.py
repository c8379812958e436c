"""
Test suite for storage backends

Covers CRUD, create-only inserts with unique fields, compare-and-set and
atomic blocks on both the in-memory and the SQLite backend.
"""

import tempfile
from pathlib import Path

import pytest

from teller_banking.errors import DuplicateRecordError, StorageError
from teller_banking.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage
)


test_data = {
    "id": "record_1",
    "name": "Test Record",
    "balance": "1000.50",
    "version": 0
}


@pytest.fixture(params=["memory", "sqlite"])
def backend(request):
    """Each test runs against both backends"""
    if request.param == "memory":
        storage = InMemoryStorage()
        yield storage
        storage.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            yield storage
            storage.close()


class TestBasicOperations:

    def test_save_and_load(self, backend):
        backend.save("test_table", "record_1", test_data)
        assert backend.load("test_table", "record_1") == test_data
        assert backend.exists("test_table", "record_1")
        assert backend.load("test_table", "missing") is None

    def test_loaded_records_are_copies(self, backend):
        backend.save("test_table", "record_1", test_data)
        loaded = backend.load("test_table", "record_1")
        loaded["name"] = "Changed"
        assert backend.load("test_table", "record_1")["name"] == "Test Record"

    def test_find_count_delete_clear(self, backend):
        backend.save("test_table", "record_1", test_data)
        backend.save("test_table", "record_2", {**test_data, "id": "record_2", "name": "Other"})

        assert len(backend.load_all("test_table")) == 2
        results = backend.find("test_table", {"name": "Other"})
        assert [r["id"] for r in results] == ["record_2"]
        assert backend.find("test_table", {"missing_key": 1}) == []
        assert backend.count("test_table") == 2

        assert backend.delete("test_table", "record_1")
        assert not backend.delete("test_table", "record_1")
        assert backend.count("test_table") == 1

        backend.clear_table("test_table")
        assert backend.count("test_table") == 0


class TestInsert:

    def test_insert_refuses_existing_id(self, backend):
        backend.insert("test_table", "record_1", test_data)
        with pytest.raises(DuplicateRecordError) as exc_info:
            backend.insert("test_table", "record_1", test_data)
        assert exc_info.value.field == "id"

    def test_insert_enforces_unique_fields(self, backend):
        backend.insert("accounts", "a1", {"id": "a1", "account_number": "BA0000000001"},
                       unique_fields=("account_number",))
        with pytest.raises(DuplicateRecordError) as exc_info:
            backend.insert("accounts", "a2", {"id": "a2", "account_number": "BA0000000001"},
                           unique_fields=("account_number",))
        assert exc_info.value.field == "account_number"
        assert not backend.exists("accounts", "a2")


class TestCompareAndSet:

    def test_succeeds_when_expected_value_matches(self, backend):
        backend.save("test_table", "record_1", test_data)
        updated = {**test_data, "balance": "900.50", "version": 1}
        assert backend.compare_and_set("test_table", "record_1", "version", 0, updated)
        assert backend.load("test_table", "record_1")["balance"] == "900.50"

    def test_fails_on_stale_expected_value(self, backend):
        backend.save("test_table", "record_1", {**test_data, "version": 3})
        assert not backend.compare_and_set(
            "test_table", "record_1", "version", 2, {**test_data, "version": 3}
        )
        assert backend.load("test_table", "record_1")["version"] == 3

    def test_fails_on_missing_record(self, backend):
        assert not backend.compare_and_set("test_table", "nope", "version", 0, test_data)
        assert not backend.exists("test_table", "nope")


class TestAtomic:

    def test_commits_all_writes(self, backend):
        with backend.atomic():
            backend.save("test_table", "record_1", test_data)
            backend.insert("other_table", "x", {"id": "x"})
        assert backend.exists("test_table", "record_1")
        assert backend.exists("other_table", "x")

    def test_rolls_back_all_writes_on_error(self, backend):
        backend.save("test_table", "record_1", test_data)

        with pytest.raises(RuntimeError):
            with backend.atomic():
                backend.compare_and_set(
                    "test_table", "record_1", "version", 0,
                    {**test_data, "balance": "0.00", "version": 1}
                )
                backend.insert("other_table", "x", {"id": "x"})
                raise RuntimeError("append failed")

        assert backend.load("test_table", "record_1") == test_data
        assert not backend.exists("other_table", "x")

    def test_nested_blocks_roll_back_together(self, backend):
        with pytest.raises(RuntimeError):
            with backend.atomic():
                backend.save("test_table", "outer", {"id": "outer"})
                with backend.atomic():
                    backend.save("test_table", "inner", {"id": "inner"})
                raise RuntimeError("outer failed")

        assert backend.count("test_table") == 0

    def test_table_usable_after_rollback_of_its_creation(self, backend):
        with pytest.raises(RuntimeError):
            with backend.atomic():
                backend.save("fresh_table", "a", {"id": "a"})
                raise RuntimeError("boom")

        backend.save("fresh_table", "b", {"id": "b"})
        assert backend.count("fresh_table") == 1

    def test_rollback_restores_deletes_and_clears(self, backend):
        backend.save("test_table", "record_1", test_data)
        backend.save("other_table", "x", {"id": "x"})
        backend.save("kept_table", "k", {"id": "k"})

        with pytest.raises(RuntimeError):
            with backend.atomic():
                backend.delete("test_table", "record_1")
                backend.clear_table("other_table")
                raise RuntimeError("boom")

        assert backend.load("test_table", "record_1") == test_data
        assert backend.exists("other_table", "x")
        assert backend.load("kept_table", "k") == {"id": "k"}

    def test_inner_success_then_outer_failure(self, backend):
        backend.save("test_table", "record_1", test_data)

        with pytest.raises(RuntimeError):
            with backend.atomic():
                with backend.atomic():
                    assert backend.compare_and_set(
                        "test_table", "record_1", "version", 0, {**test_data, "version": 1}
                    )
                backend.save("test_table", "record_1", {**test_data, "version": 2})
                raise RuntimeError("outer failed")

        assert backend.load("test_table", "record_1") == test_data


class TestInMemoryJournal:

    def test_only_written_tables_are_journaled(self):
        storage = InMemoryStorage()
        storage.save("accounts", "a", {"id": "a"})
        storage.save("transactions", "t", {"id": "t"})

        with storage.atomic():
            storage.load("transactions", "t")
            storage.save("accounts", "a", {"id": "a", "version": 1})
            assert set(storage._journals[-1]) == {"accounts"}
        assert storage._journals == []


class TestSQLiteAcrossConnections:
    """Two stores on one database file, as two processes would have"""

    @pytest.fixture
    def stores(self, tmp_path):
        first = SQLiteStorage(tmp_path / "shared.db")
        second = SQLiteStorage(tmp_path / "shared.db", timeout=0.1)
        yield first, second
        first.close()
        second.close()

    def test_compare_and_set_sees_other_connection_write(self, stores):
        first, second = stores
        first.save("accounts", "a", {"id": "a", "version": 0})

        assert second.compare_and_set("accounts", "a", "version", 0, {"id": "a", "version": 1})
        assert not first.compare_and_set("accounts", "a", "version", 0, {"id": "a", "version": 1})
        assert first.load("accounts", "a")["version"] == 1

    def test_atomic_block_excludes_other_writers(self, stores):
        first, second = stores
        first.save("accounts", "a", {"id": "a", "version": 0})

        with first.atomic():
            assert first.compare_and_set(
                "accounts", "a", "version", 0, {"id": "a", "version": 1}
            )
            with pytest.raises(StorageError):
                second.compare_and_set("accounts", "a", "version", 0, {"id": "a", "version": 9})

        assert not second.compare_and_set(
            "accounts", "a", "version", 0, {"id": "a", "version": 9}
        )
        assert second.load("accounts", "a")["version"] == 1
        second.save("accounts", "b", {"id": "b"})
        assert first.exists("accounts", "b")


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = create_storage(f"sqlite:///{temp_dir}/teller.db")
            assert isinstance(storage, SQLiteStorage)
            assert storage.db_path == f"{temp_dir}/teller.db"
            storage.close()

    def test_bare_sqlite_url_is_in_memory(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, StorageInterface)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_unknown_url(self):
        with pytest.raises(ValueError):
            create_storage("mongodb://localhost/bank")

    def test_sqlite_failure_becomes_storage_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            with pytest.raises(StorageError):
                SQLiteStorage(Path(temp_dir) / "missing_dir" / "test.db")
