"""
Structural protocols for code that consumes a cache pool.

Application code should depend on :class:`CacheItemPool` rather than on
``RedisCachePool`` directly, so tests can hand in any object with the same
shape.

Guardrails:
    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep protocols pure contracts; ``RedisCachePool`` implements them
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from tagcache.item import CacheItem


@runtime_checkable
class CacheItemPool(Protocol):
    """Tagged, lockable cache pool contract."""

    def get_item(self, key: str) -> CacheItem:
        """Return the item for ``key``, a miss if absent."""
        ...

    def get_items(self, keys: Iterable[str]) -> list[CacheItem]:
        """Return the hits among ``keys``; misses are omitted."""
        ...

    def has_item(self, key: str) -> bool: ...

    def save(self, item: CacheItem) -> bool:
        """Persist ``item``; ``False`` if its key is locked."""
        ...

    def save_deferred(self, item: CacheItem) -> bool: ...

    def commit(self) -> bool: ...

    def delete_item(self, key: str) -> bool: ...

    def delete_items(self, keys: Iterable[str]) -> bool: ...

    def clear(self) -> bool: ...

    def get_items_with_prefix(self, prefix: str, batch_size: int | None = None) -> list[CacheItem]: ...

    def delete_items_with_prefix(self, prefix: str, batch_size: int | None = None) -> bool: ...

    def get_items_with_tag(self, tag: str) -> list[CacheItem]: ...

    def delete_items_with_tag(self, tag: str) -> bool: ...

    def delete_tag(self, tag: str) -> int: ...

    def lock_item(self, key: str, token: str | None = None, ttl: int | None = None) -> str | None: ...

    def unlock_item(self, key: str, token: str) -> bool: ...

    def renew_item_lock(self, key: str, token: str, ttl: int | None = None) -> bool: ...

    def force_unlock_item(self, key: str) -> bool: ...

    def item_is_locked(self, key: str) -> bool: ...

    def get_config(self, key: str, default: Any = None) -> Any: ...


__all__ = ["CacheItemPool"]
