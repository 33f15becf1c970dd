"""
Process-wide cache access.

Most applications want one cache per process without passing an engine
around. ``get_cache()`` returns a lazily created shared engine; ``init()``
configures it explicitly and ``shutdown()`` releases it (also registered to
run at interpreter exit). Tests should prefer constructing their own
:class:`~nestcache.engine.CacheEngine`.
"""

import atexit
import logging
import threading
from typing import Optional

from .config import CacheConfig
from .engine import CacheEngine

logger = logging.getLogger(__name__)

# Global cache instance for convenience
_global_cache: Optional[CacheEngine] = None
_global_lock = threading.Lock()


def init(config: Optional[CacheConfig] = None, **kwargs) -> CacheEngine:
    """
    Create the process-wide cache, replacing any existing one.

    Args:
        config: Cache configuration; flat options (``db_file="..."``) may be
            given as keyword arguments instead
    """
    global _global_cache
    if config is None:
        config = CacheConfig(**kwargs)
    elif kwargs:
        raise TypeError("Pass either a CacheConfig or keyword options, not both")

    with _global_lock:
        if _global_cache is not None:
            _global_cache.close()
        _global_cache = CacheEngine(config)
        logger.debug(f"Global cache initialized: {_global_cache!r}")
        return _global_cache


def get_cache() -> CacheEngine:
    """Get the global cache instance, creating it if necessary."""
    global _global_cache
    with _global_lock:
        if _global_cache is None:
            _global_cache = CacheEngine()
        return _global_cache


def reset_cache(config: Optional[CacheConfig] = None) -> CacheEngine:
    """Reset the global cache instance."""
    if config is None and _global_cache is not None:
        config = _global_cache.config
    return init(config)


def shutdown():
    """Close and discard the global cache instance."""
    global _global_cache
    with _global_lock:
        if _global_cache is not None:
            _global_cache.close()
            logger.debug("Global cache shut down")
        _global_cache = None


atexit.register(shutdown)
