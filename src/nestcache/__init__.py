"""
nestcache - Embedded, file-backed key-value cache on SQLite.

Values live in a single SQLite file shared by every thread and process that
opens it. No server to run, nothing to administer.

Key Features:
- TTLs in minutes with lazy expiry and background-free sweeping
- Nested keys ("user=>profile=>name") addressing fields inside a stored dict
- Tags for bulk invalidation
- Atomic increment/decrement and bounded most-recent-first lists
- Get-or-compute (``remember``) and a function decorator built on it
- Pluggable value codecs (pickle with optional blosc2 compression, or orjson)

Quick Start:
    >>> from nestcache import CacheEngine
    >>>
    >>> cache = CacheEngine("/path/to/cache.db")
    >>> cache.add("user:1", {"name": "ada"}, ttl_minutes=10, tags=["users"])
    >>> cache.get("user:1=>name")
    'ada'
    >>> cache.increment("visits")
    1
    >>> cache.flush_by_tag("users")
    1
"""

from .config import CacheConfig, CodecConfig, JanitorConfig, StoreConfig
from .decorators import memoize, remembered
from .engine import CacheEngine
from .error_handling import (
    CacheConfigurationError,
    CacheConnectionError,
    CacheError,
    CacheSerializationError,
    CacheTransactionError,
    CacheTypeError,
    StorageError,
)
from .facade import get_cache, init, reset_cache, shutdown
from .paths import PATH_SEPARATOR
from .serialization import JsonCodec, PickleCodec, create_codec

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "CacheEngine",
    "CacheConfig",
    "StoreConfig",
    "CodecConfig",
    "JanitorConfig",
    # Process-wide cache
    "init",
    "get_cache",
    "reset_cache",
    "shutdown",
    # Decorators
    "remembered",
    "memoize",
    # Codecs
    "PickleCodec",
    "JsonCodec",
    "create_codec",
    # Errors
    "CacheError",
    "CacheConfigurationError",
    "CacheConnectionError",
    "CacheSerializationError",
    "CacheTransactionError",
    "CacheTypeError",
    "StorageError",
    # Constants
    "PATH_SEPARATOR",
    # Version info
    "__version__",
]
