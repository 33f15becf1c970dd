"""
SQLite Store Adapter
====================

Owns the SQLAlchemy engine for the cache database and exposes:

- lazy, idempotent connection with schema bootstrap (``create_all``)
- ``transaction()`` context manager: commit on success, rollback on failure
- named, parameterized statements cached by logical name

SQLite is configured for concurrent access: WAL journaling so readers never
block on a writer, ``synchronous=NORMAL`` and a busy timeout. pysqlite's own
transaction handling is disabled and ``BEGIN`` is emitted by the adapter, so
write transactions start with ``BEGIN IMMEDIATE`` and take the write lock up
front. Read-modify-write sequences inside one write transaction are therefore
serialized against every other writer, including other processes.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from sqlalchemy import (
    bindparam,
    create_engine,
    delete,
    event,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import StoreConfig
from .error_handling import CacheConnectionError, CacheTransactionError
from .schema import Base, CacheEntry, TagIndex

logger = logging.getLogger(__name__)

entries = CacheEntry.__table__
tags = TagIndex.__table__


def _upsert_entry():
    stmt = sqlite_insert(entries)
    return stmt.on_conflict_do_update(
        index_elements=[entries.c.key],
        set_={"value": stmt.excluded.value, "expires_at": stmt.excluded.expires_at},
    )


def _live():
    return or_(entries.c.expires_at.is_(None), entries.c.expires_at > bindparam("now"))


def _dead():
    return entries.c.expires_at.is_not(None) & (entries.c.expires_at <= bindparam("now"))


# Logical statement name -> builder. Parameter names never collide with
# column names so they can be used in VALUES/SET clauses.
STATEMENTS: Dict[str, Callable[[], Any]] = {
    # entries
    "select_entry": lambda: select(entries.c.value, entries.c.expires_at).where(
        entries.c.key == bindparam("k")
    ),
    "upsert_entry": _upsert_entry,
    "update_value": lambda: update(entries)
    .where(entries.c.key == bindparam("k"))
    .values(value=bindparam("new_value")),
    "set_expiry": lambda: update(entries)
    .where(entries.c.key == bindparam("k"))
    .values(expires_at=bindparam("new_expires_at")),
    "expire_live": lambda: update(entries)
    .where(_live())
    .values(expires_at=bindparam("new_expires_at")),
    "delete_entry": lambda: delete(entries).where(entries.c.key == bindparam("k")),
    "delete_entries_in": lambda: delete(entries).where(
        entries.c.key.in_(bindparam("keys", expanding=True))
    ),
    "delete_expired": lambda: delete(entries).where(_dead()),
    "delete_all_entries": lambda: delete(entries),
    "select_live": lambda: select(entries.c.key, entries.c.value, entries.c.expires_at)
    .where(_live())
    .order_by(entries.c.key),
    "select_expired": lambda: select(
        entries.c.key, entries.c.value, entries.c.expires_at
    )
    .where(_dead())
    .order_by(entries.c.key),
    "count_entries": lambda: select(func.count()).select_from(entries),
    "count_live": lambda: select(func.count()).select_from(entries).where(_live()),
    # tags
    "insert_tag": lambda: insert(tags),
    "select_tags_for_key": lambda: select(tags.c.tag)
    .where(tags.c.key == bindparam("k"))
    .order_by(tags.c.tag),
    "select_keys_for_tag": lambda: select(tags.c.key).where(
        tags.c.tag == bindparam("t")
    ),
    "select_all_tags": lambda: select(tags.c.key, tags.c.tag).order_by(tags.c.tag),
    "delete_tags_for_key": lambda: delete(tags).where(tags.c.key == bindparam("k")),
    "delete_tags_for_keys": lambda: delete(tags).where(
        tags.c.key.in_(bindparam("keys", expanding=True))
    ),
    "delete_tag": lambda: delete(tags).where(tags.c.tag == bindparam("t")),
    "delete_orphan_tags": lambda: delete(tags).where(
        tags.c.key.not_in(select(entries.c.key))
    ),
    "delete_all_tags": lambda: delete(tags),
    "count_tags": lambda: select(func.count(func.distinct(tags.c.tag))),
}


class StoreAdapter:
    """SQLite database handle shared by every cache operation."""

    def __init__(self, config: Optional[StoreConfig] = None):
        """
        Initialize the adapter. No connection is opened until first use.

        Args:
            config: Store configuration (defaults to ``StoreConfig()``)
        """
        self.config = config or StoreConfig()
        self.engine = None
        self.SessionLocal = None
        self._statements: Dict[str, Any] = {}
        # Writers (and every reader of a shared in-memory connection) hold this
        self._lock = threading.RLock()

    @property
    def connected(self) -> bool:
        return self.engine is not None

    def connect(self) -> "StoreAdapter":
        """Open the engine and ensure the schema exists. Idempotent."""
        if self.engine is not None:
            return self

        with self._lock:
            if self.engine is not None:
                return self

            config = self.config
            try:
                if config.in_memory:
                    engine = create_engine(
                        "sqlite://",
                        echo=config.echo,
                        poolclass=StaticPool,
                        connect_args={"check_same_thread": False},
                    )
                else:
                    Path(config.db_file).parent.mkdir(parents=True, exist_ok=True)
                    engine = create_engine(
                        f"sqlite:///{config.db_file}",
                        echo=config.echo,
                        pool_pre_ping=True,
                        connect_args={
                            "check_same_thread": False,
                            "timeout": config.busy_timeout_ms / 1000,
                        },
                    )
                self._configure_events(engine)
                Base.metadata.create_all(engine)
            except (SQLAlchemyError, OSError) as e:
                raise CacheConnectionError(
                    f"Unable to open cache database: {e}",
                    {"db_file": config.db_file},
                ) from e

            self.engine = engine
            self.SessionLocal = sessionmaker(
                autocommit=False, autoflush=False, bind=engine
            )

        logger.info(f"✅ Cache store initialized: {self.config.db_file}")
        return self

    def _configure_events(self, engine):
        config = self.config

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Set SQLite pragmas and take over transaction control."""
            # Let the "begin" listener below emit BEGIN
            dbapi_connection.isolation_level = None

            cursor = dbapi_connection.cursor()
            if not config.in_memory:
                cursor.execute(f"PRAGMA journal_mode={config.journal_mode}")
            cursor.execute(f"PRAGMA synchronous={config.synchronous}")
            cursor.execute(f"PRAGMA busy_timeout={int(config.busy_timeout_ms)}")
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def do_begin(conn):
            mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
            conn.exec_driver_sql(f"BEGIN {mode}")

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[Session]:
        """
        Run a block of statements as one transaction.

        Write transactions start with ``BEGIN IMMEDIATE``. Any exception rolls
        the transaction back; SQLAlchemy errors are re-raised as
        :class:`CacheTransactionError`, anything else propagates unchanged.

        Args:
            write: Whether the block modifies the database
        """
        self.connect()

        needs_lock = write or self.config.in_memory
        with self._lock if needs_lock else nullcontext():
            session = self.SessionLocal()
            try:
                session.connection(
                    execution_options={
                        "sqlite_begin": "IMMEDIATE" if write else "DEFERRED"
                    }
                )
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise CacheTransactionError(
                    f"Transaction rolled back: {e}",
                    {"db_file": self.config.db_file, "write": write},
                ) from e
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    def statement(self, name: str):
        """Return the cached statement construct registered under ``name``."""
        stmt = self._statements.get(name)
        if stmt is None:
            try:
                builder = STATEMENTS[name]
            except KeyError:
                raise KeyError(f"Unknown statement: {name}") from None
            stmt = self._statements[name] = builder()
        return stmt

    def execute(self, session: Session, name: str, params: Any = None) -> Result:
        """Execute a named statement with bound parameters."""
        return session.execute(self.statement(name), params or {})

    def close(self):
        """Dispose the engine. The next operation reconnects."""
        with self._lock:
            if self.engine is not None:
                self.engine.dispose()
                logger.debug(f"Cache store closed: {self.config.db_file}")
            self.engine = None
            self.SessionLocal = None
