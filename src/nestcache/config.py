"""
Configuration Management for nestcache
======================================

Configuration is split into focused sub-configurations (store, codec, janitor)
combined by :class:`CacheConfig`, which also accepts flat keyword shortcuts.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .error_handling import CacheConfigurationError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

VALID_JOURNAL_MODES = {"WAL", "DELETE", "TRUNCATE", "MEMORY"}
VALID_SYNCHRONOUS = {"OFF", "NORMAL", "FULL", "EXTRA"}
VALID_CODECS = {"pickle", "json"}
VALID_COMPRESSION = {"none", "lz4", "lz4hc", "zstd", "zlib", "blosclz"}


@dataclass
class StoreConfig:
    """Configuration for the SQLite store."""

    db_file: str = "nestcache.db"
    echo: bool = False
    busy_timeout_ms: int = 30000
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    def __post_init__(self):
        """Validate store configuration."""
        self.journal_mode = self.journal_mode.upper()
        self.synchronous = self.synchronous.upper()

        if self.journal_mode not in VALID_JOURNAL_MODES:
            raise ValueError(f"journal_mode must be one of {VALID_JOURNAL_MODES}")
        if self.synchronous not in VALID_SYNCHRONOUS:
            raise ValueError(f"synchronous must be one of {VALID_SYNCHRONOUS}")
        if self.busy_timeout_ms <= 0:
            raise ValueError("busy_timeout_ms must be positive")

        if self.db_file != MEMORY_DB and not Path(self.db_file).is_absolute():
            self.db_file = str(Path.cwd() / self.db_file)

        logger.debug(
            f"Store configured: db={self.db_file}, journal={self.journal_mode}, "
            f"synchronous={self.synchronous}"
        )

    @property
    def in_memory(self) -> bool:
        return self.db_file == MEMORY_DB


@dataclass
class CodecConfig:
    """Configuration for value serialization."""

    codec: str = "pickle"  # pickle, json
    compression: str = "none"  # none, lz4, lz4hc, zstd, zlib, blosclz
    compression_level: int = 5

    def __post_init__(self):
        """Validate codec configuration."""
        if self.codec not in VALID_CODECS:
            raise ValueError(f"codec must be one of {VALID_CODECS}")

        if self.compression not in VALID_COMPRESSION:
            raise ValueError(f"compression must be one of {VALID_COMPRESSION}")

        if not (0 <= self.compression_level <= 9):
            raise ValueError("compression_level must be between 0 and 9")

        logger.debug(
            f"Codec configured: {self.codec} "
            f"(compression={self.compression}@{self.compression_level})"
        )


@dataclass
class JanitorConfig:
    """Configuration for expired-entry cleanup."""

    sweep_probability: float = 0.1
    cleanup_on_init: bool = False

    def __post_init__(self):
        """Validate janitor configuration."""
        if not (0.0 <= self.sweep_probability <= 1.0):
            raise ValueError("sweep_probability must be between 0 and 1")

        logger.debug(
            f"Janitor configured: probability={self.sweep_probability}, "
            f"cleanup_on_init={self.cleanup_on_init}"
        )


# Flat keyword shortcuts accepted by CacheConfig, mapped to (section, attribute)
_FLAT_OPTIONS = {
    "db_file": ("store", "db_file"),
    "echo": ("store", "echo"),
    "busy_timeout_ms": ("store", "busy_timeout_ms"),
    "journal_mode": ("store", "journal_mode"),
    "synchronous": ("store", "synchronous"),
    "codec": ("codec", "codec"),
    "compression": ("codec", "compression"),
    "compression_level": ("codec", "compression_level"),
    "sweep_probability": ("janitor", "sweep_probability"),
    "cleanup_on_init": ("janitor", "cleanup_on_init"),
}

_SECTIONS = {
    "store": StoreConfig,
    "codec": CodecConfig,
    "janitor": JanitorConfig,
}


class CacheConfig:
    """Main configuration class that combines all sub-configurations."""

    store: StoreConfig
    codec: CodecConfig
    janitor: JanitorConfig

    def __init__(
        self,
        store: Optional[StoreConfig] = None,
        codec: Optional[Any] = None,
        janitor: Optional[JanitorConfig] = None,
        **kwargs,
    ):
        """Initialize configuration from sub-configurations and flat overrides.

        ``codec`` may be either a :class:`CodecConfig` or a codec name such as
        ``"json"``.
        """
        if isinstance(codec, str):
            kwargs["codec"] = codec
            codec = None

        unknown = set(kwargs) - set(_FLAT_OPTIONS)
        if unknown:
            raise CacheConfigurationError(
                f"Unknown configuration options: {sorted(unknown)}",
                {"valid_options": sorted(_FLAT_OPTIONS)},
            )

        overrides = {"store": {}, "codec": {}, "janitor": {}}
        for option, value in kwargs.items():
            if value is None:
                continue
            section, attribute = _FLAT_OPTIONS[option]
            overrides[section][attribute] = value

        self.store = self._build_section("store", store, overrides["store"])
        self.codec = self._build_section("codec", codec, overrides["codec"])
        self.janitor = self._build_section("janitor", janitor, overrides["janitor"])

    @staticmethod
    def _build_section(name, current, overrides):
        section_cls = _SECTIONS[name]
        if current is not None and not isinstance(current, section_cls):
            raise CacheConfigurationError(
                f"{name} must be a {section_cls.__name__}",
                {"got": type(current).__name__},
            )
        if not overrides:
            return current or section_cls()

        # Re-run validation with the overrides applied
        base = vars(current).copy() if current is not None else {}
        base.update(overrides)
        try:
            return section_cls(**base)
        except ValueError as e:
            raise CacheConfigurationError(str(e), {"section": name}) from e

    @property
    def db_file(self) -> str:
        return self.store.db_file

    def __repr__(self) -> str:
        return (
            f"CacheConfig(store={self.store!r}, codec={self.codec!r}, "
            f"janitor={self.janitor!r})"
        )
