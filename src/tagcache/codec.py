"""
Codec pipeline — serialize then (conditionally) compress, and the inverse.

Write path::

    value ──serialize(method)──▶ bytes ──len >= min_bytes?──▶ compress(method)
                                                   │               │
                                                   no              └─ compressed=True
                                                   └─ compressed=False

Read path::

    raw ──compressed?──▶ decompress(persisted method) ──▶ deserialize(persisted method)

Both stages fail open: a method whose backing library is unavailable in
this interpreter passes data through unchanged, and the write path then
leaves ``compressed`` unset so the read path never tries to undo it.
Decoding always follows the per-entry ``CodecConfig`` persisted with the
entry, never the pool's current defaults.
"""

from __future__ import annotations

import pickle
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

try:
    import bz2
except ImportError:  # pragma: no cover - interpreter built without libbz2
    bz2 = None  # type: ignore[assignment]

try:
    import zlib
    import gzip
except ImportError:  # pragma: no cover - interpreter built without zlib
    zlib = None  # type: ignore[assignment]
    gzip = None  # type: ignore[assignment]

try:
    import msgpack
except ImportError:  # pragma: no cover
    msgpack = None  # type: ignore[assignment]

from tagcache.logging import get_logger

logger = get_logger(__name__)

Encoder = Callable[[bytes], bytes]


def _identity(data: Any) -> Any:
    return data


# ── Compression ──────────────────────────────────────────────────────────


class CompressionMethod(str, Enum):
    """Compression stage methods."""

    NONE = "none"
    GZIP = "gzip"
    ZLIB = "zlib"
    BZIP2 = "bzip2"

    @property
    def available(self) -> bool:
        return self.name in _COMPRESSORS

    def compress(self, data: bytes) -> bytes:
        compress, _ = _COMPRESSORS.get(self.name, (_identity, _identity))
        return compress(data)

    def decompress(self, data: bytes) -> bytes:
        _, decompress = _COMPRESSORS.get(self.name, (_identity, _identity))
        return decompress(data)


_COMPRESSORS: dict[str, tuple[Encoder, Encoder]] = {"NONE": (_identity, _identity)}
if gzip is not None:
    _COMPRESSORS["GZIP"] = (gzip.compress, gzip.decompress)
if zlib is not None:
    _COMPRESSORS["ZLIB"] = (zlib.compress, zlib.decompress)
if bz2 is not None:
    _COMPRESSORS["BZIP2"] = (bz2.compress, bz2.decompress)


# ── Serialization ────────────────────────────────────────────────────────


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if value is None:
        return b""
    return str(value).encode("utf-8")


def _from_bytes(data: bytes) -> str | bytes:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data


def _pickle_dumps(value: Any) -> bytes:
    return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)


def _msgpack_dumps(value: Any) -> bytes:
    return msgpack.packb(value, use_bin_type=True)


def _msgpack_loads(data: bytes) -> Any:
    return msgpack.unpackb(data, raw=False)


class SerializationMethod(str, Enum):
    """Serialization stage methods.

    ``MSGPACK`` is the compact binary format, ``PICKLE`` the Python-native
    one. ``NONE`` stores text and bytes as-is.
    """

    NONE = "none"
    MSGPACK = "msgpack"
    PICKLE = "pickle"

    @property
    def available(self) -> bool:
        return self.name in _SERIALIZERS

    def serialize(self, value: Any) -> bytes:
        dumps, _ = _SERIALIZERS.get(self.name, (_to_bytes, _from_bytes))
        return _to_bytes(dumps(value))

    def deserialize(self, data: bytes) -> Any:
        _, loads = _SERIALIZERS.get(self.name, (_to_bytes, _from_bytes))
        return loads(data)


_SERIALIZERS: dict[str, tuple[Callable[[Any], Any], Callable[[bytes], Any]]] = {
    "NONE": (_to_bytes, _from_bytes),
    "PICKLE": (_pickle_dumps, pickle.loads),
}
if msgpack is not None:
    _SERIALIZERS["MSGPACK"] = (_msgpack_dumps, _msgpack_loads)


# Enum members hash by name, so membership tests go through plain strings.
_COMPRESSION_NAMES = frozenset(m.value for m in CompressionMethod)
_SERIALIZATION_NAMES = frozenset(m.value for m in SerializationMethod)


def is_valid_compression_method(method: Any) -> bool:
    if isinstance(method, CompressionMethod):
        return True
    return isinstance(method, str) and method in _COMPRESSION_NAMES


def is_valid_serialization_method(method: Any) -> bool:
    if isinstance(method, SerializationMethod):
        return True
    return isinstance(method, str) and method in _SERIALIZATION_NAMES


# ── Per-entry config ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CodecConfig:
    """The codec settings persisted with one entry (``config`` meta field)."""

    compression: CompressionMethod = CompressionMethod.NONE
    serialization: SerializationMethod = SerializationMethod.NONE
    compressed: bool = False
    # Set when a bytes value went through ``none`` serialization, so reads
    # return bytes instead of decoding text.
    binary: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CodecConfig:
        """Build from a decoded ``config`` field.

        Missing or unknown method names fall back to ``none``, meaning the
        stored value is handed back unprocessed.
        """
        data = data or {}
        compression = data.get("compression")
        serialization = data.get("serialization")
        return cls(
            compression=CompressionMethod(compression)
            if is_valid_compression_method(compression)
            else CompressionMethod.NONE,
            serialization=SerializationMethod(serialization)
            if is_valid_serialization_method(serialization)
            else SerializationMethod.NONE,
            compressed=data.get("compressed") is True,
            binary=data.get("binary") is True,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "compressed": self.compressed,
            "compression": self.compression.value,
            "serialization": self.serialization.value,
        }
        if self.binary:
            data["binary"] = True
        return data


def encode_value(value: Any, config: CodecConfig, min_bytes: int) -> tuple[bytes, CodecConfig]:
    """Run the write path.

    Returns:
        The bytes to store and the config to persist alongside them, with
        ``compressed`` reflecting what actually happened.
    """
    data = config.serialization.serialize(value)
    binary = config.serialization is SerializationMethod.NONE and isinstance(
        value, (bytes, bytearray, memoryview)
    )
    compressed = False

    if config.compression is not CompressionMethod.NONE and len(data) >= min_bytes:
        if config.compression.available:
            data = config.compression.compress(data)
            compressed = True
        else:
            logger.warning("compression_unavailable", method=config.compression.value)

    return data, replace(config, compressed=compressed, binary=binary)


def decode_value(data: bytes, config: CodecConfig) -> Any:
    """Run the read path using the entry's persisted config."""
    if config.compressed:
        data = config.compression.decompress(data)
    if config.binary and config.serialization is SerializationMethod.NONE:
        return bytes(data)
    return config.serialization.deserialize(data)


__all__ = [
    "CompressionMethod",
    "SerializationMethod",
    "CodecConfig",
    "encode_value",
    "decode_value",
    "is_valid_compression_method",
    "is_valid_serialization_method",
]
