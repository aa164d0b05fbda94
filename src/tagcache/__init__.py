"""
tagcache - tagged, lockable cache pools on Redis.

    from tagcache import RedisCachePool, CacheItem

    pool = RedisCachePool.from_url("redis://localhost:6379/0", prefix="app:")
    item = pool.get_item("user.42")
    if not item.is_hit():
        pool.save(item.set(load_user(42)).expires_after(300).add_tags(["users"]))

Modules:
    keys       Key scheme (item|, meta|, lock|, tag| namespaces)
    codec      Serialization + compression pipeline
    item       CacheItem with tag/meta removal tracking
    scripts    Lua scripts and the EVALSHA/EVAL engine
    locks      Advisory lock manager
    pool       RedisCachePool orchestrator
    settings   TAGCACHE_* environment settings
    logging    structlog configuration
"""

__version__ = "0.1.0"

from tagcache.codec import CodecConfig, CompressionMethod, SerializationMethod
from tagcache.errors import (
    CacheConfigError,
    CacheError,
    CodecError,
    ErrorCategory,
    InvalidKeyError,
    ScriptError,
)
from tagcache.item import CacheItem
from tagcache.keys import KeyScheme, validate_key
from tagcache.locks import LockManager
from tagcache.pool import RedisCachePool
from tagcache.protocols import CacheItemPool
from tagcache.scripts import ScriptEngine
from tagcache.settings import CacheSettings, get_settings

__all__ = [
    "__version__",
    "CacheItem",
    "CacheItemPool",
    "CacheSettings",
    "CodecConfig",
    "CompressionMethod",
    "SerializationMethod",
    "KeyScheme",
    "LockManager",
    "RedisCachePool",
    "ScriptEngine",
    "get_settings",
    "validate_key",
    "CacheError",
    "CacheConfigError",
    "CodecError",
    "ErrorCategory",
    "InvalidKeyError",
    "ScriptError",
]
