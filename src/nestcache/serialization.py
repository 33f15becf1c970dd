"""
Value Serialization
===================

Values are stored as opaque blobs. A codec turns a Python value into bytes
and back; the storage layer never inspects the bytes.

Two codecs are available:

- ``pickle``: lossless for any picklable Python value (tuples, sets,
  datetimes, Decimals...). Optionally compressed with blosc2.
- ``json``: portable JSON via orjson. Dicts with non-string keys, tuples and
  sets do not round-trip exactly.

Usage:
    >>> codec = create_codec(CodecConfig(codec="pickle", compression="zstd"))
    >>> codec.decode(codec.encode({"a": [1, 2, 3]}))
    {'a': [1, 2, 3]}
"""

import logging
import pickle
from abc import ABC, abstractmethod
from typing import Any, Optional

import blosc2
import orjson

from .config import CodecConfig
from .error_handling import CacheSerializationError, with_error_handling

logger = logging.getLogger(__name__)

BLOSC_CODECS = {
    "lz4": blosc2.Codec.LZ4,
    "lz4hc": blosc2.Codec.LZ4HC,
    "zstd": blosc2.Codec.ZSTD,
    "zlib": blosc2.Codec.ZLIB,
    "blosclz": blosc2.Codec.BLOSCLZ,
}


class Codec(ABC):
    """Serialize values to bytes and back."""

    name = "abstract"

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        """Serialize ``value`` to bytes."""
        pass

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        """Deserialize bytes produced by :meth:`encode`."""
        pass


class PickleCodec(Codec):
    """Pickle-based codec with optional blosc2 compression.

    Compressed payloads are self-describing (blosc2 frames carry their own
    header), so decoding only needs to know whether compression was enabled.
    """

    name = "pickle"

    def __init__(self, compression: str = "none", compression_level: int = 5):
        if compression != "none" and compression not in BLOSC_CODECS:
            raise ValueError(
                f"Unsupported codec: {compression}. Supported: {sorted(BLOSC_CODECS)}"
            )
        self.compression = compression
        self.compression_level = compression_level

    def encode(self, value: Any) -> bytes:
        try:
            data = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise CacheSerializationError(
                f"Value is not picklable: {e}", {"value_type": type(value).__name__}
            ) from e

        if self.compression == "none":
            return data

        return blosc2.compress(
            data,
            typesize=1,
            clevel=self.compression_level,
            filter=blosc2.Filter.SHUFFLE,
            codec=BLOSC_CODECS[self.compression],
        )

    @with_error_handling(CacheSerializationError, context={"codec": "pickle"})
    def decode(self, data: bytes) -> Any:
        if self.compression != "none":
            data = blosc2.decompress(data)
        return pickle.loads(data)


class JsonCodec(Codec):
    """JSON codec backed by orjson."""

    name = "json"

    def encode(self, value: Any) -> bytes:
        try:
            return orjson.dumps(value, option=orjson.OPT_NON_STR_KEYS)
        except TypeError as e:
            raise CacheSerializationError(
                f"Value is not JSON serializable: {e}",
                {"value_type": type(value).__name__},
            ) from e

    def decode(self, data: bytes) -> Any:
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise CacheSerializationError(f"Invalid JSON payload: {e}") from e


def create_codec(config: Optional[CodecConfig] = None) -> Codec:
    """Build the codec described by ``config``."""
    config = config or CodecConfig()

    if config.codec == "json":
        if config.compression != "none":
            logger.warning("Compression is ignored by the json codec")
        codec: Codec = JsonCodec()
    else:
        codec = PickleCodec(config.compression, config.compression_level)

    logger.debug(f"Using {codec.name} codec")
    return codec
