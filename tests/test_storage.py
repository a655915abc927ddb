"""
Test suite for storage backends

Covers record persistence, units of work with savepoints and rollback,
and backend selection from a database URL.
"""

import threading

import pytest

from lending_core.storage import InMemoryStorage, SQLiteStorage, create_storage
from lending_core.errors import TransactionAborted


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    if request.param == "memory":
        storage = InMemoryStorage()
    else:
        storage = SQLiteStorage(tmp_path / "lending.db")
    yield storage
    storage.close()


class TestRecords:

    def test_save_and_load(self, backend):
        backend.save("loans", "loan-1", {"id": "loan-1", "borrower_id": "b-1"})

        assert backend.load("loans", "loan-1") == {"id": "loan-1", "borrower_id": "b-1"}
        assert backend.load("loans", "missing") is None
        assert backend.exists("loans", "loan-1")
        assert backend.count("loans") == 1

    def test_save_replaces(self, backend):
        backend.save("loans", "loan-1", {"id": "loan-1", "status": "Unpaid"})
        backend.save("loans", "loan-1", {"id": "loan-1", "status": "Paid"})

        assert backend.load("loans", "loan-1")["status"] == "Paid"
        assert backend.count("loans") == 1

    def test_find_filters(self, backend):
        backend.save("loans", "a", {"id": "a", "borrower_id": "b-1"})
        backend.save("loans", "b", {"id": "b", "borrower_id": "b-2"})
        backend.save("loans", "c", {"id": "c", "borrower_id": "b-1"})

        found = backend.find("loans", {"borrower_id": "b-1"})
        assert sorted(r["id"] for r in found) == ["a", "c"]
        assert backend.find("loans", {"borrower_id": "nobody"}) == []

    def test_delete(self, backend):
        backend.save("loans", "a", {"id": "a"})

        assert backend.delete("loans", "a") is True
        assert backend.delete("loans", "a") is False
        assert backend.count("loans") == 0

    def test_loaded_record_is_a_copy(self):
        storage = InMemoryStorage()
        storage.save("loans", "a", {"id": "a", "tags": ["x"]})

        record = storage.load("loans", "a")
        record["tags"].append("y")

        assert storage.load("loans", "a")["tags"] == ["x"]


class TestUnitOfWork:

    def test_commit(self, backend):
        with backend.atomic() as tx:
            assert tx is backend
            assert tx.in_transaction
            tx.save("loans", "a", {"id": "a"})

        assert not backend.in_transaction
        assert backend.exists("loans", "a")

    def test_rollback_on_error(self, backend):
        backend.save("loans", "a", {"id": "a", "status": "Unpaid"})

        with pytest.raises(RuntimeError):
            with backend.atomic() as tx:
                tx.save("loans", "a", {"id": "a", "status": "Paid"})
                tx.save("loans", "b", {"id": "b"})
                raise RuntimeError("boom")

        assert not backend.in_transaction
        assert backend.load("loans", "a")["status"] == "Unpaid"
        assert not backend.exists("loans", "b")

    def test_rollback_of_table_created_in_transaction(self, backend):
        with pytest.raises(RuntimeError):
            with backend.atomic() as tx:
                tx.save("payments", "p", {"id": "p"})
                raise RuntimeError("boom")

        assert backend.count("payments") == 0
        backend.save("payments", "p", {"id": "p"})
        assert backend.count("payments") == 1

    def test_nested_savepoint_rolls_back_alone(self, backend):
        with backend.atomic() as tx:
            tx.save("loans", "outer", {"id": "outer"})
            with pytest.raises(ValueError):
                with tx.atomic():
                    tx.save("loans", "inner", {"id": "inner"})
                    raise ValueError("inner failure")
            assert tx.in_transaction

        assert backend.exists("loans", "outer")
        assert not backend.exists("loans", "inner")

    def test_outer_rollback_discards_committed_savepoint(self, backend):
        with pytest.raises(RuntimeError):
            with backend.atomic() as tx:
                with tx.atomic():
                    tx.save("loans", "inner", {"id": "inner"})
                raise RuntimeError("outer failure")

        assert not backend.exists("loans", "inner")

    def test_commit_without_transaction_is_noop(self, backend):
        backend.commit()
        backend.rollback()
        assert not backend.in_transaction

    def test_transaction_belongs_to_opening_thread(self, backend):
        opened = threading.Event()
        release = threading.Event()

        def worker():
            with backend.atomic():
                backend.save("loans", "loan-1", {"id": "loan-1"})
                opened.set()
                release.wait(timeout=10)

        thread = threading.Thread(target=worker)
        thread.start()
        try:
            assert opened.wait(timeout=10)
            assert not backend.in_transaction
            # No effect on the other thread's transaction
            backend.commit()
            backend.rollback()
        finally:
            release.set()
            thread.join(timeout=10)

        assert not thread.is_alive()
        assert backend.exists("loans", "loan-1")


class TestSQLitePersistence:

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "lending.db"
        storage = SQLiteStorage(path)
        with storage.atomic() as tx:
            tx.save("loans", "a", {"id": "a"})
        storage.close()

        reopened = SQLiteStorage(path)
        assert reopened.load("loans", "a") == {"id": "a"}
        reopened.close()

    def test_load_all_in_insertion_order(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "lending.db")
        for record_id in ["c", "a", "b"]:
            storage.save("loans", record_id, {"id": record_id})

        assert [r["id"] for r in storage.load_all("loans")] == ["c", "a", "b"]
        storage.close()

    def test_operational_error_becomes_transaction_aborted(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "lending.db")

        with pytest.raises(TransactionAborted):
            storage.save("bad table name", "a", {"id": "a"})
        storage.close()


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_file_url(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'lending.db'}")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == str(tmp_path / "lending.db")
        storage.close()

    def test_sqlite_in_memory_url(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/lending")
