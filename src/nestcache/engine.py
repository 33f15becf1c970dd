"""
Cache Engine
============

The public cache operations, composed from the store adapter, the codec and
the nested-path helpers.

Every multi-statement operation runs inside a single transaction: an
exception rolls everything back and leaves the previous state intact. Write
transactions begin with ``BEGIN IMMEDIATE``, so read-modify-write operations
(``increment``, ``limitizer``, nested writes) cannot lose updates to
concurrent writers in this or any other process.

Keys are plain strings or composite paths joined by ``"=>"``. Expiration and
tags always belong to the root entry; nested fields only live inside the
root's decoded value.

Example:
    >>> cache = CacheEngine(CacheConfig(db_file="app_cache.db"))
    >>> cache.add("user:1", {"name": "ada"}, ttl_minutes=5, tags=["users"])
    >>> cache.get("user:1=>name")
    'ada'
    >>> cache.increment("hits")
    1
    >>> cache.flush_by_tag("users")
    1
"""

import logging
import numbers
import time
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from .config import CacheConfig
from .error_handling import CacheTypeError, cache_operation_context
from .janitor import Janitor
from .paths import MISSING, parse_path, read_nested, remove_nested, write_nested
from .serialization import Codec, create_codec
from .store import StoreAdapter

logger = logging.getLogger(__name__)

# Seconds subtracted from "now" when forcing an entry to expire
EXPIRE_OFFSET = 1.0

TagsArg = Optional[Union[str, Iterable[str]]]


def _is_number(value: Any) -> bool:
    return isinstance(value, (numbers.Real, Decimal)) and not isinstance(value, bool)


def _normalize_tags(tags: TagsArg) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [tags]

    normalized = []
    for tag in tags:
        if not isinstance(tag, str) or not tag:
            raise ValueError(f"Tags must be non-empty strings, got {tag!r}")
        if tag not in normalized:
            normalized.append(tag)
    return normalized


class CacheEngine:
    """
    File-backed key-value cache with TTLs, nested keys and tags.

    The engine connects lazily: constructing one is cheap and the database is
    opened (and the schema created) on the first operation.
    """

    def __init__(
        self,
        config: Optional[Union[str, Path, CacheConfig]] = None,
        store: Optional[StoreAdapter] = None,
        codec: Optional[Codec] = None,
        clock: Callable[[], float] = time.time,
        janitor: Optional[Janitor] = None,
    ):
        """
        Initialize the cache engine.

        Args:
            config: Database file path or CacheConfig (uses defaults if None)
            store: Store adapter to use instead of building one from config
            codec: Value codec to use instead of building one from config
            clock: Source of the current Unix time in seconds
            janitor: Janitor to use instead of building one from config
        """
        if isinstance(config, (str, Path)):
            self.config = CacheConfig(db_file=str(config))
        elif isinstance(config, CacheConfig):
            self.config = config
        elif config is None:
            self.config = CacheConfig()
        else:
            raise TypeError(f"Expected str, Path, or CacheConfig, got {type(config)}")

        self.store = store or StoreAdapter(self.config.store)
        self.codec = codec or create_codec(self.config.codec)
        self.clock = clock
        self.janitor = janitor or Janitor(self.store, self.config.janitor, clock)
        self._bootstrapped = False

    def __repr__(self):
        return f"CacheEngine(db_file={self.store.config.db_file!r}, codec={self.codec.name!r})"

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> "CacheEngine":
        """Open the store if needed. The first call may sweep expired rows."""
        self.store.connect()
        if not self._bootstrapped:
            self._bootstrapped = True
            self.janitor.maybe_sweep()
        return self

    def close(self):
        """Release the database connection."""
        self.store.close()
        self._bootstrapped = False

    # ------------------------------------------------------------------
    # Internal helpers (all run inside a caller-owned session)
    # ------------------------------------------------------------------

    def _expiry(self, ttl_minutes: Optional[float]) -> Optional[float]:
        if ttl_minutes is None:
            return None
        if not _is_number(ttl_minutes):
            raise ValueError(f"ttl_minutes must be a number, got {ttl_minutes!r}")
        if ttl_minutes < 0:
            raise ValueError("ttl_minutes must not be negative")
        return self.clock() + float(ttl_minutes) * 60

    def _positive_expiry(self, ttl_minutes: Optional[float]) -> Optional[float]:
        if ttl_minutes is not None and _is_number(ttl_minutes) and ttl_minutes == 0:
            raise ValueError("ttl_minutes must be positive")
        return self._expiry(ttl_minutes)

    def _load(self, session: Session, root: str) -> Tuple[Any, Optional[float]]:
        """Decoded root value and its expiry, or ``MISSING`` if absent/expired."""
        row = self.store.execute(session, "select_entry", {"k": root}).first()
        if row is None:
            return MISSING, None
        if row.expires_at is not None and row.expires_at <= self.clock():
            return MISSING, None
        return self.codec.decode(row.value), row.expires_at

    def _write(self, session: Session, root: str, value: Any, expires_at: Optional[float]):
        self.store.execute(
            session,
            "upsert_entry",
            {"key": root, "value": self.codec.encode(value), "expires_at": expires_at},
        )

    def _replace_tags(self, session: Session, root: str, tags: List[str]):
        self.store.execute(session, "delete_tags_for_key", {"k": root})
        if tags:
            self.store.execute(
                session, "insert_tag", [{"tag": tag, "key": root} for tag in tags]
            )

    def _delete(self, session: Session, root: str) -> bool:
        removed = self.store.execute(session, "delete_entry", {"k": root}).rowcount
        self.store.execute(session, "delete_tags_for_key", {"k": root})
        return removed > 0

    def _remove(self, session: Session, root: str, segments: List[str]) -> bool:
        if not segments:
            return self._delete(session, root)

        current, _ = self._load(session, root)
        updated = remove_nested(current, segments)
        if updated is current:
            return False

        # Only the value changes; expiry and tags stay with the root
        self.store.execute(
            session,
            "update_value",
            {"k": root, "new_value": self.codec.encode(updated)},
        )
        return True

    def _lookup(self, key: str) -> Any:
        root, segments = parse_path(key)
        with self.store.transaction(write=False) as session:
            current, _ = self._load(session, root)
        return read_nested(current, segments)

    def _tags_by_key(self, session: Session) -> Dict[str, List[str]]:
        tags: Dict[str, List[str]] = {}
        for row in self.store.execute(session, "select_all_tags"):
            tags.setdefault(row.key, []).append(row.tag)
        return tags

    def _details(self, statement: str) -> Dict[str, Dict[str, Any]]:
        self.connect()
        with self.store.transaction(write=False) as session:
            rows = self.store.execute(session, statement, {"now": self.clock()}).all()
            tags = self._tags_by_key(session)

        return {
            row.key: {
                "value": self.codec.decode(row.value),
                "expires_at": row.expires_at,
                "tags": tags.get(row.key, []),
            }
            for row in rows
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(
        self,
        key: str,
        value: Any,
        ttl_minutes: Optional[float] = None,
        tags: TagsArg = None,
    ):
        """
        Store a value, replacing any previous value and tags.

        Args:
            key: Plain or nested (``"a=>b"``) key
            value: Any value the codec can encode
            ttl_minutes: Lifetime in minutes; None never expires, 0 removes
                the key instead of writing it. For a nested key into a live
                root, None keeps the root's expiration.
            tags: Tags for the root entry; they replace the previous set.
                For a nested key into a live root, None keeps the root's tags.
        """
        root, segments = parse_path(key)
        if _is_number(ttl_minutes) and ttl_minutes == 0:
            self.remove(key)
            return

        expires_at = self._expiry(ttl_minutes)
        tag_list = None if tags is None and segments else _normalize_tags(tags)

        self.connect()
        with cache_operation_context("add", cache_key=key):
            with self.store.transaction() as session:
                if segments:
                    current, root_expiry = self._load(session, root)
                    value = write_nested(current, segments, value)
                    # A nested write into a live root keeps what it omits
                    if ttl_minutes is None:
                        expires_at = root_expiry
                    if tag_list is None and current is MISSING:
                        tag_list = []
                self._write(session, root, value, expires_at)
                if tag_list is not None:
                    self._replace_tags(session, root, tag_list)

        logger.debug(f"Cached {key} (ttl={ttl_minutes}min, tags={tag_list})")

    def update(
        self,
        key: str,
        value: Any,
        ttl_minutes: Optional[float] = None,
        tags: TagsArg = None,
    ):
        """Same as :meth:`add`; overwrites whether or not the key exists."""
        return self.add(key, value, ttl_minutes, tags)

    def remove(self, key: str) -> bool:
        """
        Remove a key and its tags.

        For a nested key only the field is removed; the root keeps its
        expiration and tags.

        Returns:
            True if anything was removed
        """
        root, segments = parse_path(key)
        self.connect()
        with self.store.transaction() as session:
            removed = self._remove(session, root, segments)

        if removed:
            logger.debug(f"Removed cache entry {key}")
        return removed

    def remove_all(self) -> int:
        """Remove every entry and tag. Returns the number of entries removed."""
        self.connect()
        with self.store.transaction() as session:
            removed = self.store.execute(session, "delete_all_entries").rowcount
            self.store.execute(session, "delete_all_tags")

        logger.info(f"Cleared {removed} cache entries")
        return removed

    def flush_by_tag(self, tag: str) -> int:
        """
        Remove every entry carrying ``tag``.

        Returns:
            Number of entries removed (0 for an unknown tag)
        """
        self.connect()
        removed = 0
        with self.store.transaction() as session:
            keys = [
                row.key
                for row in self.store.execute(session, "select_keys_for_tag", {"t": tag})
            ]
            if keys:
                removed = self.store.execute(
                    session, "delete_entries_in", {"keys": keys}
                ).rowcount
                self.store.execute(session, "delete_tags_for_keys", {"keys": keys})
            self.store.execute(session, "delete_tag", {"t": tag})

        if removed:
            logger.info(f"Flushed {removed} cache entries tagged {tag!r}")
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a value.

        Returns:
            The stored value, or ``default`` if the key is missing or expired
        """
        self.connect()
        value = self._lookup(key)
        if value is MISSING:
            logger.debug(f"Cache miss: {key}")
            return default
        return value

    def has(self, key: str) -> bool:
        """Whether ``key`` currently resolves to a live value."""
        self.connect()
        return self._lookup(key) is not MISSING

    active = has

    def expired(self, key: str) -> bool:
        """Whether ``key`` is expired or missing."""
        return not self.has(key)

    def get_all(self) -> Dict[str, Any]:
        """All live entries as ``{key: value}``."""
        self.connect()
        with self.store.transaction(write=False) as session:
            rows = self.store.execute(session, "select_live", {"now": self.clock()}).all()
        return {row.key: self.codec.decode(row.value) for row in rows}

    def get_tags(self, key: str) -> List[str]:
        """Tags of the live (root) entry, sorted; empty if missing or expired."""
        root, _ = parse_path(key)
        self.connect()
        with self.store.transaction(write=False) as session:
            current, _ = self._load(session, root)
            if current is MISSING:
                return []
            return [
                row.tag
                for row in self.store.execute(session, "select_tags_for_key", {"k": root})
            ]

    def get_active_details(self) -> Dict[str, Dict[str, Any]]:
        """Live entries with ``value``, ``expires_at`` and ``tags``."""
        return self._details("select_live")

    def get_expired_details(self) -> Dict[str, Dict[str, Any]]:
        """Expired entries that have not been swept yet."""
        return self._details("select_expired")

    # ------------------------------------------------------------------
    # Expiration
    # ------------------------------------------------------------------

    def expire(self, key: str) -> bool:
        """
        Mark the (root) entry as expired without deleting it.

        Returns:
            True if the entry existed
        """
        root, _ = parse_path(key)
        self.connect()
        with self.store.transaction() as session:
            updated = self.store.execute(
                session,
                "set_expiry",
                {"k": root, "new_expires_at": self.clock() - EXPIRE_OFFSET},
            ).rowcount
        return updated > 0

    def expire_all(self) -> int:
        """Mark every live entry as expired. Returns how many were marked."""
        self.connect()
        now = self.clock()
        with self.store.transaction() as session:
            updated = self.store.execute(
                session,
                "expire_live",
                {"now": now, "new_expires_at": now - EXPIRE_OFFSET},
            ).rowcount
        logger.info(f"Expired {updated} cache entries")
        return updated

    def sweep(self) -> int:
        """Delete expired entries now. Returns the number removed."""
        self.connect()
        return self.janitor.sweep()

    expire_all_expired = sweep

    # ------------------------------------------------------------------
    # Atomic read-modify-write
    # ------------------------------------------------------------------

    def increment(
        self, key: str, amount: Any = 1, ttl_minutes: Optional[float] = None
    ) -> Any:
        """
        Atomically add ``amount`` to a numeric value.

        A missing or expired key counts as 0. Without ``ttl_minutes`` a live
        entry keeps its expiration and a new one never expires; tags of a
        live entry are kept.

        Returns:
            The new value

        Raises:
            CacheTypeError: If the stored value or ``amount`` is not a number
        """
        if not _is_number(amount):
            raise CacheTypeError(
                f"Increment amount must be a number, got {type(amount).__name__}",
                {"cache_key": key},
            )
        root, segments = parse_path(key)
        new_expiry = self._positive_expiry(ttl_minutes)

        self.connect()
        with self.store.transaction() as session:
            root_value, expires_at = self._load(session, root)
            current = read_nested(root_value, segments)
            if current is MISSING:
                current = 0
            elif not _is_number(current):
                raise CacheTypeError(
                    f"Cannot increment non-numeric value of type {type(current).__name__}",
                    {"cache_key": key},
                )

            try:
                result = current + amount
            except TypeError as e:
                # e.g. Decimal + float
                raise CacheTypeError(
                    f"Cannot add {type(amount).__name__} to {type(current).__name__}",
                    {"cache_key": key},
                ) from e
            if root_value is MISSING:
                # Fresh entry: drop tags left by an expired predecessor
                self.store.execute(session, "delete_tags_for_key", {"k": root})
            if new_expiry is not None:
                expires_at = new_expiry
            self._write(session, root, write_nested(root_value, segments, result), expires_at)

        logger.debug(f"Incremented {key} by {amount} -> {result}")
        return result

    def decrement(
        self, key: str, amount: Any = 1, ttl_minutes: Optional[float] = None
    ) -> Any:
        """Atomically subtract ``amount``; see :meth:`increment`."""
        if not _is_number(amount):
            raise CacheTypeError(
                f"Decrement amount must be a number, got {type(amount).__name__}",
                {"cache_key": key},
            )
        return self.increment(key, -amount, ttl_minutes)

    def limitizer(
        self,
        key: str,
        value: Any,
        limit: int = 20,
        ttl_minutes: Optional[float] = None,
    ) -> List[Any]:
        """
        Prepend ``value`` to a stored list and keep only the newest ``limit``.

        Expiration and tags behave as in :meth:`increment`.

        Returns:
            The stored list, most recent first

        Raises:
            CacheTypeError: If the stored value is not a list
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit!r}")
        root, segments = parse_path(key)
        new_expiry = self._positive_expiry(ttl_minutes)

        self.connect()
        with self.store.transaction() as session:
            root_value, expires_at = self._load(session, root)
            current = read_nested(root_value, segments)
            if current is MISSING:
                current = []
            elif not isinstance(current, (list, tuple)):
                raise CacheTypeError(
                    f"Cannot prepend to value of type {type(current).__name__}",
                    {"cache_key": key},
                )

            items = [value] + list(current)[: limit - 1]
            if root_value is MISSING:
                self.store.execute(session, "delete_tags_for_key", {"k": root})
            if new_expiry is not None:
                expires_at = new_expiry
            self._write(session, root, write_nested(root_value, segments, items), expires_at)

        return items

    def remember(
        self,
        key: str,
        ttl_minutes: Optional[float],
        producer: Callable[[], Any],
        tags: TagsArg = None,
    ) -> Any:
        """
        Return the cached value, or compute, store and return it.

        The check and the store are separate transactions: two callers
        missing at the same time may both run ``producer`` and the later
        write wins. Exceptions from ``producer`` propagate and nothing is
        stored.
        """
        self.connect()
        value = self._lookup(key)
        if value is not MISSING:
            logger.debug(f"Cache hit: {key}")
            return value

        logger.debug(f"Cache miss, computing: {key}")
        value = producer()
        self.add(key, value, ttl_minutes, tags)
        return value

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Entry and tag counts for the cache."""
        self.connect()
        with self.store.transaction(write=False) as session:
            total = self.store.execute(session, "count_entries").scalar_one()
            live = self.store.execute(
                session, "count_live", {"now": self.clock()}
            ).scalar_one()
            tag_count = self.store.execute(session, "count_tags").scalar_one()

        return {
            "total_entries": total,
            "active_entries": live,
            "expired_entries": total - live,
            "total_tags": tag_count,
            "db_file": self.store.config.db_file,
            "codec": self.codec.name,
        }
