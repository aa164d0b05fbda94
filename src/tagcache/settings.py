"""
Settings for tagcache pools.

Manifesto:
    Pools are usually built in application code with explicit options,
    but deployments want the same knobs reachable from the environment.
    ``CacheSettings`` reads ``TAGCACHE_*`` variables (and ``.env``) and
    validates method names up front, so a typo fails at startup rather
    than on the first save.

Examples:
    >>> import os
    >>> os.environ["TAGCACHE_PREFIX"] = "orders:"
    >>> settings = get_settings(_force_reload=True)
    >>> settings.prefix
    'orders:'
    >>> settings.pool_options()["compression"]
    'gzip'

Tags:
    settings, configuration, pydantic, environment, tagcache

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tagcache.codec import (
    CompressionMethod,
    SerializationMethod,
    is_valid_compression_method,
    is_valid_serialization_method,
)

DEFAULT_PREFIX = ""
DEFAULT_COMPRESSION = CompressionMethod.GZIP.value
DEFAULT_COMPRESSION_MIN_BYTES = 1024
DEFAULT_SERIALIZATION = SerializationMethod.PICKLE.value
DEFAULT_LOCK_TTL = 30
DEFAULT_SCAN_BATCH_SIZE = 500


class CacheSettings(BaseSettings):
    """Environment-driven pool configuration.

    Fields
    ──────
    redis_url              : Connection URL used by ``RedisCachePool.from_settings``
    prefix                 : Prefix applied to every key the pool owns
    tags                   : Tags force-applied to every saved item
    compression            : Default compression method
    compression_min_bytes  : Serialized size at which compression kicks in
    serialization          : Default serialization method
    lock_ttl               : Default lock lifetime in seconds
    scan_batch_size        : Chunk size for prefix-scoped reads and deletes
    log_level / log_format : Used by the CLI when configuring structlog
    """

    model_config = SettingsConfigDict(
        env_prefix="TAGCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Connection ───────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0")

    # ── Pool ─────────────────────────────────────────────────────
    prefix: str = Field(default=DEFAULT_PREFIX)
    tags: list[str] = Field(default_factory=list)
    compression: str = Field(default=DEFAULT_COMPRESSION)
    compression_min_bytes: int = Field(default=DEFAULT_COMPRESSION_MIN_BYTES, ge=0)
    serialization: str = Field(default=DEFAULT_SERIALIZATION)
    lock_ttl: int = Field(default=DEFAULT_LOCK_TTL)
    scan_batch_size: int = Field(default=DEFAULT_SCAN_BATCH_SIZE, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    @field_validator("compression")
    @classmethod
    def _known_compression(cls, value: str) -> str:
        if not is_valid_compression_method(value):
            raise ValueError(f"unknown compression method: {value!r}")
        return value

    @field_validator("serialization")
    @classmethod
    def _known_serialization(cls, value: str) -> str:
        if not is_valid_serialization_method(value):
            raise ValueError(f"unknown serialization method: {value!r}")
        return value

    def pool_options(self) -> dict[str, Any]:
        """The subset of fields that ``RedisCachePool`` recognises."""
        return {
            "prefix": self.prefix,
            "tags": list(self.tags),
            "compression": self.compression,
            "compression_min_bytes": self.compression_min_bytes,
            "serialization": self.serialization,
            "lock_ttl": self.lock_ttl,
        }


_settings_cache: dict[str, CacheSettings] = {}


def get_settings(*, _force_reload: bool = False) -> CacheSettings:
    """Load, validate, and cache a :class:`CacheSettings` instance."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = CacheSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    _settings_cache.clear()


__all__ = [
    "CacheSettings",
    "get_settings",
    "clear_settings_cache",
    "DEFAULT_COMPRESSION",
    "DEFAULT_COMPRESSION_MIN_BYTES",
    "DEFAULT_SERIALIZATION",
    "DEFAULT_LOCK_TTL",
    "DEFAULT_SCAN_BATCH_SIZE",
]
