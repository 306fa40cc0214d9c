"""
Tests for storage backends and transaction support
"""

import pytest
import threading

from transfer_ledger.errors import ConflictError, StoreUnavailableError
from transfer_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageTransaction, PendingWrite,
    create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each backend under the same contract"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test base storage interface functionality"""

    def test_basic_operations(self, storage):
        """Test save, load, exists, load_all, find and count"""
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")
        assert storage.load("test_table", "non_existent") is None

        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other"})
        assert len(storage.load_all("test_table")) == 2

        results = storage.find("test_table", {"name": "Test Record"})
        assert len(results) == 1
        assert results[0]["id"] == "test_001"

        assert len(storage.find("test_table", {})) == 2
        assert storage.count("test_table") == 2

    def test_versions_increase_on_save(self, storage):
        storage.save("t", "a", {"v": 1})
        assert storage.load_versioned("t", "a").version == 1
        storage.save("t", "a", {"v": 2})
        record = storage.load_versioned("t", "a")
        assert record.version == 2
        assert record.data == {"v": 2}

    def test_loaded_data_is_a_copy(self, storage):
        storage.save("t", "a", {"items": [1]})
        loaded = storage.load("t", "a")
        loaded["items"].append(2)
        assert storage.load("t", "a") == {"items": [1]}

    def test_compare_and_swap(self, storage):
        assert storage.compare_and_swap("t", "a", {"v": 1}, 0) == 1
        assert storage.compare_and_swap("t", "a", {"v": 2}, 1) == 2

        with pytest.raises(ConflictError):
            storage.compare_and_swap("t", "a", {"v": 3}, 1)
        assert storage.load("t", "a") == {"v": 2}

    def test_insert_of_existing_record_conflicts(self, storage):
        storage.save("t", "a", {"v": 1})
        with pytest.raises(ConflictError):
            storage.compare_and_swap("t", "a", {"v": 9}, 0)


class TestStorageTransaction:
    """Test atomic multi-record writes"""

    def test_atomic_commits_all_writes(self, storage):
        storage.save("accounts", "a", {"balance": "10.00"})
        storage.save("accounts", "b", {"balance": "0.00"})

        with storage.atomic() as txn:
            a = txn.load("accounts", "a")
            b = txn.load("accounts", "b")
            a["balance"] = "5.00"
            b["balance"] = "5.00"
            txn.save("accounts", "a", a)
            txn.save("accounts", "b", b)
            txn.insert("log", "entry", {"amount": "5.00"})

            # Nothing visible before commit
            assert storage.load("accounts", "a")["balance"] == "10.00"
            assert not storage.exists("log", "entry")

        assert storage.load("accounts", "a")["balance"] == "5.00"
        assert storage.load("accounts", "b")["balance"] == "5.00"
        assert storage.exists("log", "entry")

    def test_exception_discards_staged_writes(self, storage):
        storage.save("accounts", "a", {"balance": "10.00"})

        with pytest.raises(RuntimeError):
            with storage.atomic() as txn:
                txn.load("accounts", "a")
                txn.save("accounts", "a", {"balance": "0.00"})
                txn.insert("log", "entry", {})
                raise RuntimeError("boom")

        assert storage.load("accounts", "a")["balance"] == "10.00"
        assert not storage.exists("log", "entry")

    def test_conflict_rejects_whole_batch(self, storage):
        storage.save("accounts", "a", {"balance": "10.00"})
        storage.save("accounts", "b", {"balance": "0.00"})

        with pytest.raises(ConflictError):
            with storage.atomic() as txn:
                txn.load("accounts", "a")
                txn.load("accounts", "b")
                txn.save("accounts", "a", {"balance": "1.00"})
                txn.save("accounts", "b", {"balance": "9.00"})
                txn.insert("log", "entry", {})
                # Concurrent writer changes b after it was read
                storage.save("accounts", "b", {"balance": "100.00"})

        assert storage.load("accounts", "a")["balance"] == "10.00"
        assert storage.load("accounts", "b")["balance"] == "100.00"
        assert not storage.exists("log", "entry")

    def test_reads_see_own_staged_writes(self, storage):
        with storage.atomic() as txn:
            txn.insert("t", "x", {"v": 1})
            assert txn.load("t", "x") == {"v": 1}

    def test_save_requires_prior_read(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic() as txn:
                txn.save("t", "unread", {"v": 1})

    def test_closed_transaction_rejects_use(self, storage):
        txn = StorageTransaction(storage)
        txn.commit()
        with pytest.raises(RuntimeError):
            txn.load("t", "x")

    def test_pending_writes_are_ordered(self, storage):
        txn = StorageTransaction(storage)
        txn.insert("t", "b", {})
        txn.insert("t", "a", {})
        txn.insert("s", "z", {})
        assert [w.key for w in txn.pending_writes] == [("s", "z"), ("t", "a"), ("t", "b")]
        txn.rollback()
        assert storage.count("t") == 0

    def test_concurrent_increments_never_lose_updates(self, storage):
        """Optimistic retries under contention keep every increment"""
        storage.save("counters", "c", {"value": 0})
        workers, increments = 4, 25

        def worker():
            done = 0
            while done < increments:
                try:
                    with storage.atomic() as txn:
                        record = txn.load("counters", "c")
                        record["value"] += 1
                        txn.save("counters", "c", record)
                    done += 1
                except ConflictError:
                    continue

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert storage.load("counters", "c")["value"] == workers * increments


class TestSQLiteStorage:
    """SQLite specific behaviour"""

    def test_persistence_across_connections(self, tmp_path):
        db_path = tmp_path / "persist.db"
        storage = SQLiteStorage(db_path)
        storage.compare_and_swap("t", "a", {"v": 1}, 0)
        storage.close()

        reopened = SQLiteStorage(db_path)
        record = reopened.load_versioned("t", "a")
        assert record.data == {"v": 1}
        assert record.version == 1
        reopened.close()

    def test_closed_connection_reports_unavailable(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "closed.db")
        storage.close()
        with pytest.raises(StoreUnavailableError):
            storage.load("t", "a")

    def test_apply_writes_rolls_back_on_conflict(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "rollback.db")
        storage.save("t", "a", {"v": 1})
        with pytest.raises(ConflictError):
            storage.apply_writes([
                PendingWrite("t", "new", {"v": 0}, 0),
                PendingWrite("t", "a", {"v": 2}, 5),
            ])
        assert not storage.exists("t", "new")
        assert storage.load("t", "a") == {"v": 1}
        storage.close()


class TestCreateStorage:

    def test_factory(self, tmp_path):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        sqlite_storage = create_storage("sqlite", str(tmp_path / "f.db"))
        assert isinstance(sqlite_storage, SQLiteStorage)
        sqlite_storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage("postgresql")
