"""
Tests for the SQLite store adapter: connection bootstrap, pragmas,
transactions and named statements.
"""

import threading
import time

import pytest
from sqlalchemy import inspect, text

from nestcache.config import StoreConfig
from nestcache.error_handling import CacheConnectionError, CacheTransactionError
from nestcache.store import STATEMENTS, StoreAdapter


@pytest.fixture
def store(db_file):
    adapter = StoreAdapter(StoreConfig(db_file=db_file))
    yield adapter
    adapter.close()


def _row(session, key):
    return session.execute(
        text("SELECT value, expires_at FROM cache_entries WHERE key = :k"), {"k": key}
    ).first()


class TestConnect:
    def test_lazy(self, store):
        assert not store.connected
        store.connect()
        assert store.connected

    def test_idempotent(self, store):
        store.connect()
        engine = store.engine
        store.connect()
        assert store.engine is engine

    def test_creates_schema(self, store):
        store.connect()
        tables = set(inspect(store.engine).get_table_names())
        assert {"cache_entries", "cache_tags"} <= tables

    def test_creates_parent_directory(self, temp_dir):
        adapter = StoreAdapter(StoreConfig(db_file=str(temp_dir / "nested" / "dir" / "c.db")))
        adapter.connect()
        assert (temp_dir / "nested" / "dir" / "c.db").exists()
        adapter.close()

    def test_wal_and_synchronous_pragmas(self, store):
        store.connect()
        with store.engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar().lower() == "wal"
            # NORMAL == 1
            assert conn.exec_driver_sql("PRAGMA synchronous").scalar() == 1

    def test_unopenable_database(self, temp_dir):
        # A directory cannot be opened as a database file
        adapter = StoreAdapter(StoreConfig(db_file=str(temp_dir)))
        with pytest.raises(CacheConnectionError):
            adapter.connect()

    def test_close_then_reconnect(self, store):
        store.connect()
        store.close()
        assert not store.connected
        with store.transaction(write=False) as session:
            assert _row(session, "missing") is None


class TestTransactions:
    def test_commit(self, store):
        with store.transaction() as session:
            store.execute(
                session, "upsert_entry", {"key": "a", "value": b"1", "expires_at": None}
            )
        with store.transaction(write=False) as session:
            assert _row(session, "a").value == b"1"

    def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as session:
                store.execute(
                    session, "upsert_entry", {"key": "a", "value": b"1", "expires_at": None}
                )
                raise RuntimeError("abort")

        with store.transaction(write=False) as session:
            assert _row(session, "a") is None

    def test_database_errors_become_transaction_errors(self, store):
        with pytest.raises(CacheTransactionError):
            with store.transaction() as session:
                store.execute(
                    session, "upsert_entry", {"key": "a", "value": b"1", "expires_at": None}
                )
                # value is NOT NULL
                store.execute(
                    session, "upsert_entry", {"key": "b", "value": None, "expires_at": None}
                )

        with store.transaction(write=False) as session:
            assert _row(session, "a") is None

    def test_upsert_replaces(self, store):
        with store.transaction() as session:
            store.execute(
                session, "upsert_entry", {"key": "a", "value": b"1", "expires_at": 5.0}
            )
            store.execute(
                session, "upsert_entry", {"key": "a", "value": b"2", "expires_at": None}
            )
        with store.transaction(write=False) as session:
            row = _row(session, "a")
            count = session.execute(text("SELECT COUNT(*) FROM cache_entries")).scalar()
        assert row.value == b"2"
        assert row.expires_at is None
        assert count == 1

    def test_duplicate_tag_rows_rejected(self, store):
        with pytest.raises(CacheTransactionError):
            with store.transaction() as session:
                store.execute(
                    session,
                    "insert_tag",
                    [{"tag": "t", "key": "a"}, {"tag": "t", "key": "a"}],
                )

    def test_writers_are_serialized(self, store):
        """A second writer waits until the first commits."""
        store.connect()
        order = []
        first_started = threading.Event()

        def first():
            with store.transaction():
                first_started.set()
                order.append("first-begin")
                time.sleep(0.2)
                order.append("first-end")

        def second():
            first_started.wait()
            with store.transaction():
                order.append("second")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert order == ["first-begin", "first-end", "second"]


class TestStatements:
    def test_statements_are_cached_by_name(self, store):
        assert store.statement("select_entry") is store.statement("select_entry")

    def test_unknown_statement(self, store):
        with pytest.raises(KeyError):
            store.statement("drop_everything")

    def test_every_statement_builds(self, store):
        for name in STATEMENTS:
            assert store.statement(name) is not None


class TestMemoryStore:
    def test_memory_database_is_shared_across_sessions(self):
        adapter = StoreAdapter(StoreConfig(db_file=":memory:"))
        with adapter.transaction() as session:
            adapter.execute(
                session, "upsert_entry", {"key": "a", "value": b"x", "expires_at": None}
            )
        with adapter.transaction(write=False) as session:
            assert _row(session, "a").value == b"x"
        adapter.close()
