"""
Shared fixtures for the nestcache test suite.

Every fixture builds its own engine on its own database, so tests never share
state with each other or with the process-wide cache.
"""

import tempfile
import time
from pathlib import Path

import pytest

from nestcache import facade
from nestcache.config import CacheConfig
from nestcache.engine import CacheEngine


class FakeClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, start: float = None):
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0):
        self.now += seconds + minutes * 60


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    with tempfile.TemporaryDirectory() as directory:
        yield Path(directory)


@pytest.fixture
def db_file(temp_dir) -> str:
    return str(temp_dir / "cache.db")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(db_file, clock):
    """File-backed cache with a controllable clock and no random sweeps."""
    config = CacheConfig(db_file=db_file, sweep_probability=0.0)
    engine = CacheEngine(config, clock=clock)
    yield engine
    engine.close()


@pytest.fixture
def memory_cache(clock):
    """In-memory cache, used where file durability is irrelevant."""
    config = CacheConfig(db_file=":memory:", sweep_probability=0.0)
    engine = CacheEngine(config, clock=clock)
    yield engine
    engine.close()


@pytest.fixture(params=["file", "memory"])
def any_cache(request, db_file, clock):
    """Runs a test against both file-backed and in-memory stores."""
    target = db_file if request.param == "file" else ":memory:"
    engine = CacheEngine(CacheConfig(db_file=target, sweep_probability=0.0), clock=clock)
    yield engine
    engine.close()


@pytest.fixture(autouse=True)
def isolated_global_cache():
    """Make sure no test leaks a process-wide cache into another."""
    yield
    facade.shutdown()
