"""
Function Caching Decorators
===========================

Decorators that cache function results through :meth:`CacheEngine.remember`
with automatic key generation.
"""

import functools
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import orjson
import xxhash

from .engine import CacheEngine
from .error_handling import CacheError

logger = logging.getLogger(__name__)

FUNCTION_TAG_PREFIX = "fn:"


def _function_id(func: Callable) -> str:
    func_name = getattr(func, "__qualname__", getattr(func, "__name__", "unknown"))
    func_module = getattr(func, "__module__", "unknown")
    return f"{func_module}.{func_name}"


def _serialize_arguments(args: Tuple, kwargs: Dict[str, Any]) -> bytes:
    return orjson.dumps(
        {"args": args, "kwargs": kwargs},
        option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS,
        default=repr,
    )


def _generate_cache_key(
    func: Callable,
    args: Tuple,
    kwargs: Dict[str, Any],
    key_prefix: Optional[str] = None,
) -> str:
    """
    Generate a cache key for a function call.

    Arguments are serialized with orjson (``repr`` for anything orjson does
    not know) and hashed with XXH3-64, so keys have a fixed length and never
    contain the nested-path separator.
    """
    digest = xxhash.xxh3_64(_serialize_arguments(args, kwargs)).hexdigest()
    return f"{key_prefix or _function_id(func)}:{digest}"


class remembered:
    """
    Decorator caching a function's return value per argument set.

    Examples:
        # Basic usage
        @remembered()
        def expensive_function(x, y):
            return x * y

        # With TTL and tags
        @remembered(ttl_minutes=10, tags=["reports"])
        def build_report(day):
            return render(day)

        # Custom key generation
        @remembered(key_func=lambda func, args, kwargs: f"user:{args[0]}")
        def load_user(user_id):
            return fetch_user(user_id)
    """

    def __init__(
        self,
        ttl_minutes: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
        key_prefix: Optional[str] = None,
        cache_instance: Optional[CacheEngine] = None,
        key_func: Optional[Callable[[Callable, Tuple, Dict], str]] = None,
        ignore_errors: bool = True,
    ):
        """
        Initialize the caching decorator.

        Args:
            ttl_minutes: Lifetime of cached results (None never expires)
            tags: Extra tags for every cached result
            key_prefix: Prefix for generated keys (defaults to module.qualname)
            cache_instance: Cache to use (defaults to the process-wide cache)
            key_func: Custom function for generating cache keys
            ignore_errors: If True, cache failures fall back to calling the function
        """
        self.ttl_minutes = ttl_minutes
        self.tags = list(tags or [])
        self.key_prefix = key_prefix
        self._cache_instance = cache_instance
        self.key_func = key_func
        self.ignore_errors = ignore_errors

    @property
    def cache_instance(self) -> CacheEngine:
        if self._cache_instance is None:
            from .facade import get_cache

            return get_cache()
        return self._cache_instance

    def _key(self, func: Callable, args: Tuple, kwargs: Dict[str, Any]) -> str:
        if self.key_func:
            return self.key_func(func, args, kwargs)
        return _generate_cache_key(func, args, kwargs, self.key_prefix)

    def __call__(self, func: Callable) -> Callable:
        """Apply the caching decorator to a function."""
        func_tag = FUNCTION_TAG_PREFIX + _function_id(func)
        tags = [func_tag] + self.tags

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            cache_key = self._key(func, args, kwargs)
            calls = []
            results = []

            def producer():
                calls.append(None)
                result = func(*args, **kwargs)
                results.append(result)
                return result

            try:
                return self.cache_instance.remember(
                    cache_key, self.ttl_minutes, producer, tags
                )
            except CacheError as e:
                if not self.ignore_errors:
                    raise
                if results:
                    logger.warning(f"Failed to cache result of {func_tag}: {e}")
                    return results[0]
                if calls:
                    raise
                logger.warning(f"Cache unavailable for {func_tag}, calling directly: {e}")
                return func(*args, **kwargs)

        def cache_clear() -> int:
            """Remove every cached result of this function."""
            return self.cache_instance.flush_by_tag(func_tag)

        def cache_info() -> Dict[str, Any]:
            return {
                "function": _function_id(func),
                "ttl_minutes": self.ttl_minutes,
                "key_prefix": self.key_prefix,
                "tags": tags,
                "db_file": self.cache_instance.store.config.db_file,
                "ignore_errors": self.ignore_errors,
            }

        def cache_key(*args, **kwargs) -> str:
            return self._key(func, args, kwargs)

        setattr(wrapper, "cache_clear", cache_clear)
        setattr(wrapper, "cache_info", cache_info)
        setattr(wrapper, "cache_key", cache_key)

        return wrapper


def memoize(func: Callable) -> Callable:
    """
    Cache a function's results permanently in the process-wide cache.

    Example:
        @memoize
        def fibonacci(n):
            if n < 2:
                return n
            return fibonacci(n-1) + fibonacci(n-2)
    """
    return remembered(ttl_minutes=None)(func)
