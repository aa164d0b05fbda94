"""
Key scheme — physical Redis key names for a logical cache key.

Every logical key ``K`` under the pool prefix ``P`` owns up to three
physical keys, and every tag name ``T`` owns one::

    P + "item|" + K     value record (codec output, native TTL)
    P + "meta|" + K     meta hash (tags, hits, timestamps, codec config)
    P + "lock|" + K     advisory lock token
    P + "tag|"  + T     tag index set of logical keys

Logical keys may not be empty and may not contain any of ``{}()/\\@:``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from tagcache.errors import InvalidKeyError

ITEM_NAMESPACE = "item|"
META_NAMESPACE = "meta|"
LOCK_NAMESPACE = "lock|"
TAG_NAMESPACE = "tag|"

RESERVED_CHARACTERS = "{}()/\\@:"

_RESERVED_RE = re.compile(r"[{}()/\\@:]")


def validate_key(key: str) -> None:
    """Raise :class:`InvalidKeyError` if ``key`` is not a valid logical key."""
    if not isinstance(key, str) or key == "" or _RESERVED_RE.search(key):
        raise InvalidKeyError(f"Invalid key ({key})").with_context(key=str(key))


@dataclass(frozen=True, slots=True)
class KeyScheme:
    """Derives namespaced Redis keys from logical keys.

    Example:
        >>> scheme = KeyScheme("app:")
        >>> scheme.item_key("user.42")
        'app:item|user.42'
        >>> scheme.logical_key("app:item|user.42")
        'user.42'
    """

    prefix: str = ""

    def item_key(self, key: str) -> str:
        return f"{self.prefix}{ITEM_NAMESPACE}{key}"

    def meta_key(self, key: str) -> str:
        return f"{self.prefix}{META_NAMESPACE}{key}"

    def lock_key(self, key: str) -> str:
        return f"{self.prefix}{LOCK_NAMESPACE}{key}"

    def tag_key(self, tag: str) -> str:
        return f"{self.prefix}{TAG_NAMESPACE}{tag}"

    @property
    def item_prefix(self) -> str:
        return self.item_key("")

    @property
    def meta_prefix(self) -> str:
        return self.meta_key("")

    def logical_key(self, item_key: str | bytes) -> str:
        """Strip the item namespace from a physical key.

        Keys outside the item namespace are returned unchanged.
        """
        if isinstance(item_key, bytes):
            item_key = item_key.decode("utf-8")
        if item_key.startswith(self.item_prefix):
            return item_key[len(self.item_prefix):]
        return item_key

    def item_pattern(self, prefix: str) -> str:
        """SCAN pattern matching every item key whose logical key starts with ``prefix``."""
        return f"{self.item_key(_escape_glob(prefix))}*"

    def pool_pattern(self) -> str:
        """SCAN pattern matching every key the pool owns, across all namespaces."""
        return f"{_escape_glob(self.prefix)}*"

    def item_and_meta_keys(self, keys: list[str]) -> list[str]:
        """Flatten logical keys into ``[item, meta, item, meta, ...]``."""
        flat: list[str] = []
        for key in keys:
            flat.append(self.item_key(key))
            flat.append(self.meta_key(key))
        return flat


def _escape_glob(value: str) -> str:
    return re.sub(r"([*?\[\]])", r"\\\1", value)


__all__ = [
    "ITEM_NAMESPACE",
    "META_NAMESPACE",
    "LOCK_NAMESPACE",
    "TAG_NAMESPACE",
    "RESERVED_CHARACTERS",
    "KeyScheme",
    "validate_key",
]
