"""
Cache item — the in-memory view of one cache record.

A ``CacheItem`` is either a *miss* (built directly by the caller, no value,
``is_hit() is False``) or a *hit* (hydrated by the pool from the value
record and its meta hash). Its logical key never changes; everything else
is mutable until the caller saves or discards it.

Tag and metadata removals are tracked as they happen: every tag (or meta
key) present before a mutator call and absent after it is appended to a
pending-removal list. The pool consumes these lists on save to prune the
tag index, then clears them.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any, Self

from tagcache.codec import is_valid_compression_method, is_valid_serialization_method

_MISSING = object()


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _optional_int(value: Any) -> int | None:
    # Redis hands back "" for fields that were written without a value
    if value is None or value == "" or value == b"":
        return None
    return int(value)


def _json_field(meta: Mapping[str, Any], field: str, default: Any) -> Any:
    raw = meta.get(field)
    if raw is None or raw == "":
        return default
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class CacheItem:
    """One cache entry.

    Example:
        >>> item = CacheItem("user.42").set({"name": "Ada"}).expires_after(300)
        >>> item.add_tags(["users", "tenant-7"]).add_meta({"source": {"db": "primary"}})
        >>> item.get_meta_value("source.db")
        'primary'
    """

    def __init__(
        self,
        key: str,
        value: Any = None,
        is_hit: bool = False,
        meta: Mapping[str, Any] | None = None,
    ):
        self._key = key
        self._value = value
        self._is_hit = is_hit

        self._removed_tags: list[str] = []
        self._removed_meta: list[str] = []

        if meta is not None:
            self._expiration = _optional_int(meta.get("expires_at"))
            tags = _json_field(meta, "tags", [])
            self._tags = _unique(str(t) for t in tags) if isinstance(tags, list) else []
            user_meta = _json_field(meta, "meta", {})
            self._meta: dict[str, Any] = user_meta if isinstance(user_meta, dict) else {}
            self._hits = _optional_int(meta.get("hits")) or 0
            self._created_at = _optional_int(meta.get("created_at"))
            self._last_updated = _optional_int(meta.get("last_updated"))
            config = _json_field(meta, "config", {})
            self._config: dict[str, Any] = config if isinstance(config, dict) else {}
            return

        self._expiration = None
        self._tags = []
        self._meta = {}
        self._hits = 0
        self._created_at = None
        self._last_updated = None
        self._config = {}

    def __repr__(self) -> str:
        state = "hit" if self._is_hit else "miss"
        return f"CacheItem({self._key!r}, {state}, hits={self._hits}, tags={self._tags!r})"

    # ── Identity and value ───────────────────────────────────────────

    @property
    def key(self) -> str:
        return self._key

    def get_key(self) -> str:
        return self._key

    @property
    def value(self) -> Any:
        return self._value

    def get(self) -> Any:
        return self._value

    def set(self, value: Any) -> Self:
        self._value = value
        return self

    def is_hit(self) -> bool:
        return self._is_hit

    # ── Expiration ───────────────────────────────────────────────────

    def expires_at(self, expiration: datetime | int | float | None) -> Self:
        """Set an absolute expiration instant, or ``None`` for a persistent entry.

        Numbers are Unix epoch seconds; fractions are truncated.

        Raises:
            TypeError: For any other type, including ``bool``.
        """
        if expiration is None:
            self._expiration = None
        elif isinstance(expiration, datetime):
            self._expiration = int(expiration.timestamp())
        elif isinstance(expiration, (int, float)) and not isinstance(expiration, bool):
            self._expiration = int(expiration)
        else:
            raise TypeError(f"expiration must be a datetime, number or None, not {type(expiration).__name__}")
        return self

    def expires_after(self, duration: timedelta | int | float | None) -> Self:
        """Set expiration relative to now, or ``None`` for a persistent entry.

        Raises:
            TypeError: For anything but a timedelta, a number of seconds or ``None``.
        """
        if duration is None:
            self._expiration = None
        elif isinstance(duration, timedelta):
            self._expiration = int(time.time() + duration.total_seconds())
        elif isinstance(duration, (int, float)) and not isinstance(duration, bool):
            self._expiration = int(time.time() + duration)
        else:
            raise TypeError(f"duration must be a timedelta, number or None, not {type(duration).__name__}")
        return self

    def has_expiration(self) -> bool:
        return self._expiration is not None

    def get_expiration_timestamp(self) -> int | None:
        return self._expiration

    def get_time_until_expiration(self) -> int | None:
        """Seconds until expiry (never negative), or ``None`` when persistent."""
        if self._expiration is None:
            return None
        return max(0, self._expiration - int(time.time()))

    # ── Tags ─────────────────────────────────────────────────────────

    def _track_removed_tags(self, before: list[str]) -> None:
        gone = [tag for tag in before if tag not in self._tags]
        self._removed_tags = _unique([*self._removed_tags, *gone])

    def set_tags(self, tags: Iterable[str]) -> Self:
        """Replace the tag set."""
        before = self._tags
        self._tags = _unique(tags)
        self._track_removed_tags(before)
        return self

    def add_tags(self, tags: Iterable[str]) -> Self:
        for tag in tags:
            if tag not in self._tags:
                self._tags.append(tag)
        return self

    def remove_tags(self, tags: Iterable[str]) -> Self:
        before = self._tags
        drop = set(tags)
        self._tags = [tag for tag in before if tag not in drop]
        self._track_removed_tags(before)
        return self

    def get_tags(self) -> list[str]:
        return list(self._tags)

    def get_removed_tags(self) -> list[str]:
        return list(self._removed_tags)

    def has_tag(self, tag: str) -> bool:
        return tag in self._tags

    def has_any_tags(self, tags: Iterable[str]) -> bool:
        return any(tag in self._tags for tag in tags)

    def has_all_tags(self, tags: Iterable[str]) -> bool:
        return all(tag in self._tags for tag in tags)

    # ── Metadata ─────────────────────────────────────────────────────

    def _track_removed_meta(self, before: Iterable[str]) -> None:
        gone = [key for key in before if key not in self._meta]
        self._removed_meta = _unique([*self._removed_meta, *gone])

    def set_meta(self, meta: Mapping[str, Any]) -> Self:
        """Replace the metadata map."""
        before = list(self._meta)
        self._meta = dict(meta)
        self._track_removed_meta(before)
        return self

    def add_meta(self, meta: Mapping[str, Any]) -> Self:
        """Merge keys into the metadata map, overwriting existing ones."""
        self._meta.update(meta)
        return self

    def remove_meta(self, keys: Iterable[str]) -> Self:
        before = list(self._meta)
        for key in keys:
            self._meta.pop(key, None)
        self._track_removed_meta(before)
        return self

    def get_meta(self) -> dict[str, Any]:
        return dict(self._meta)

    def get_removed_meta_keys(self) -> list[str]:
        return list(self._removed_meta)

    def _lookup_meta(self, key: str) -> Any:
        if key in self._meta:
            return self._meta[key]
        node: Any = self._meta
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def get_meta_value(self, key: str, default: Any = None) -> Any:
        """Read a metadata value; nested dicts are addressed with dots (``"a.b.c"``)."""
        value = self._lookup_meta(key)
        return default if value is _MISSING else value

    def has_meta(self, key: str) -> bool:
        return self._lookup_meta(key) is not _MISSING

    # ── Bookkeeping ──────────────────────────────────────────────────

    def get_hits(self) -> int:
        return self._hits

    def get_created_at(self) -> int | None:
        return self._created_at

    def get_last_updated(self) -> int | None:
        return self._last_updated

    # ── Per-item codec overrides ─────────────────────────────────────

    def get_config(self) -> dict[str, Any]:
        return dict(self._config)

    def set_compression_method(self, method: str) -> Self:
        """Override the compression method for this item. Unknown names are ignored."""
        if is_valid_compression_method(method):
            self._config["compression"] = str(getattr(method, "value", method))
        return self

    def get_compression_method(self) -> str | None:
        return self._config.get("compression")

    def set_serialization_method(self, method: str) -> Self:
        """Override the serialization method for this item. Unknown names are ignored."""
        if is_valid_serialization_method(method):
            self._config["serialization"] = str(getattr(method, "value", method))
        return self

    def get_serialization_method(self) -> str | None:
        return self._config.get("serialization")

    # ── Save lifecycle (used by the pool) ────────────────────────────

    def _mark_saved(self, saved_at: int, created_at: int) -> None:
        self._created_at = created_at
        self._last_updated = saved_at
        self._removed_tags = []
        self._removed_meta = []


__all__ = ["CacheItem"]
