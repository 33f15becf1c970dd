"""
Tests for expired-entry cleanup.
"""

import logging
import random

from nestcache.config import CacheConfig, JanitorConfig
from nestcache.engine import CacheEngine
from nestcache.janitor import Janitor


def _seed_expired(db_file, clock, count=3):
    """Write entries that are already expired, then close the engine."""
    engine = CacheEngine(CacheConfig(db_file=db_file, sweep_probability=0), clock=clock)
    for i in range(count):
        engine.add(f"old:{i}", i, ttl_minutes=1, tags=["old"])
    engine.add("keep", "live")
    engine.close()
    clock.advance(minutes=5)


def _raw_count(cache, statement):
    with cache.store.transaction(write=False) as session:
        return cache.store.execute(session, statement).scalar_one()


class TestSweep:
    def test_removes_only_expired(self, cache, clock):
        cache.add("dead", 1, ttl_minutes=1)
        cache.add("live", 2, ttl_minutes=10)
        cache.add("forever", 3)
        clock.advance(minutes=2)

        assert cache.sweep() == 1
        assert _raw_count(cache, "count_entries") == 2
        assert cache.get_all() == {"live": 2, "forever": 3}

    def test_removes_tags_of_swept_entries(self, cache, clock):
        cache.add("dead", 1, ttl_minutes=1, tags=["gone"])
        cache.add("live", 2, tags=["kept"])
        clock.advance(minutes=2)

        cache.sweep()
        assert _raw_count(cache, "count_tags") == 1
        assert cache.get_active_details()["live"]["tags"] == ["kept"]

    def test_removes_orphaned_tag_rows(self, cache):
        cache.connect()
        with cache.store.transaction() as session:
            cache.store.execute(session, "insert_tag", [{"tag": "lost", "key": "nobody"}])

        assert cache.sweep() == 0
        assert _raw_count(cache, "count_tags") == 0

    def test_explicit_sweep_runs_once(self, cache, clock):
        calls = []

        class CountingJanitor(Janitor):
            def sweep(self, session=None):
                calls.append(1)
                return super().sweep(session)

        cache.add("dead", 1, ttl_minutes=1)
        clock.advance(minutes=2)
        cache.janitor = CountingJanitor(cache.store, cache.config.janitor, clock)

        assert cache.sweep() == 1
        assert calls == [1]

    def test_nothing_to_do(self, cache):
        cache.add("k", 1)
        assert cache.sweep() == 0

    def test_logs_cleanup(self, cache, clock, caplog):
        cache.add("dead", 1, ttl_minutes=1)
        clock.advance(minutes=2)
        with caplog.at_level(logging.INFO, logger="nestcache.janitor"):
            cache.sweep()
        assert "Cleaned up 1 expired cache entries" in caplog.text

    def test_sweep_in_callers_transaction(self, cache, clock):
        cache.add("dead", 1, ttl_minutes=1)
        clock.advance(minutes=2)

        with cache.store.transaction() as session:
            assert cache.janitor.sweep(session) == 1
        assert cache.get_expired_details() == {}


class TestProbabilisticSweep:
    def test_never_with_zero_probability(self, db_file, clock):
        _seed_expired(db_file, clock)
        cache = CacheEngine(CacheConfig(db_file=db_file, sweep_probability=0), clock=clock)
        cache.connect()
        assert len(cache.get_expired_details()) == 3
        cache.close()

    def test_always_with_probability_one(self, db_file, clock):
        _seed_expired(db_file, clock)
        cache = CacheEngine(CacheConfig(db_file=db_file, sweep_probability=1), clock=clock)
        cache.connect()
        assert cache.get_expired_details() == {}
        assert cache.get("keep") == "live"
        cache.close()

    def test_cleanup_on_init_overrides_probability(self, db_file, clock):
        _seed_expired(db_file, clock)
        config = CacheConfig(db_file=db_file, sweep_probability=0, cleanup_on_init=True)
        cache = CacheEngine(config, clock=clock)
        cache.connect()
        assert cache.get_expired_details() == {}
        cache.close()

    def test_seeded_rng_is_deterministic(self, cache):
        cache.connect()
        config = JanitorConfig(sweep_probability=0.5)

        # random.Random(0).random() ~ 0.844, random.Random(1).random() ~ 0.134
        assert Janitor(cache.store, config, rng=random.Random(0)).maybe_sweep() is False
        assert Janitor(cache.store, config, rng=random.Random(1)).maybe_sweep() is True

    def test_runs_once_per_connection(self, db_file, clock):
        calls = []

        class CountingJanitor(Janitor):
            def sweep(self, session=None):
                calls.append(1)
                return super().sweep(session)

        config = CacheConfig(db_file=db_file, sweep_probability=1)
        engine = CacheEngine(config, clock=clock)
        engine.janitor = CountingJanitor(engine.store, config.janitor, clock)

        engine.add("a", 1)
        engine.get("a")
        engine.get_all()
        assert len(calls) == 1

        engine.close()
        engine.get("a")
        assert len(calls) == 2
        engine.close()
