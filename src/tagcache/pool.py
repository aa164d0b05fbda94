"""
Redis cache pool — tagged, lockable cache items on top of Redis.

``RedisCachePool`` is the public entry point. It resolves logical keys to
Redis keys, runs hit-counting reads through Lua scripts, writes items and
their meta hashes in one pipelined round trip, and keeps a per-tag index of
logical keys.

Manifesto:
    The pool favours round trips over strict consistency:

    - **Reads are atomic:** value + hit increment + meta in one script
    - **Writes are batched, not transactional:** a pipeline can be cut
      short by a connection failure, leaving value, meta, and tag index
      partially written
    - **The tag index is eventually consistent:** plain deletes and natural
      expiry leave orphaned members behind; ``get_items_with_tag`` sweeps
      them, ``delete_tag`` rewrites member meta
    - **Locks are advisory:** ``save`` refuses to write a locked key, but
      it only checks, it never takes the lock itself

Architecture:
    ::

        RedisCachePool
        ├── KeyScheme      logical key → item|meta|lock|tag keys
        ├── ScriptEngine   EVALSHA (EVAL on NOSCRIPT) for reads + lock CAS
        ├── LockManager    SET NX EX / release / renew / force
        └── codec          serialize → compress  /  decompress → deserialize

        Persisted per item:
            <prefix>item|K   codec output, native TTL
            <prefix>meta|K   hash: tags, hits, created_at, last_updated,
                             expires_at, config, [meta]   (same TTL)
            <prefix>tag|T    set of logical keys

Examples:
    >>> pool = RedisCachePool.from_url("redis://localhost:6379/0", prefix="shop:")
    >>> item = pool.get_item("product.42")
    >>> if not item.is_hit():
    ...     item.set(load_product(42)).expires_after(600).add_tags(["products"])
    ...     pool.save(item)
    >>> pool.delete_tag("products")  # untag everything, keep the items

Guardrails:
    ❌ DON'T: rely on save() to serialize concurrent writers
    ✅ DO: take a lock with lock_item() around read-modify-write cycles

    ❌ DON'T: expect the hit counter to survive a re-save untouched
    ✅ DO: treat hits as approximate; a save writes back the count the
       saving item object holds, discarding increments made since it was read

Tags:
    redis, cache, tags, locking, lua, pipeline, tagcache

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from tagcache.codec import (
    CodecConfig,
    decode_value,
    encode_value,
    is_valid_compression_method,
    is_valid_serialization_method,
)
from tagcache.errors import CacheConfigError, CodecError, InvalidKeyError
from tagcache.item import CacheItem
from tagcache.keys import KeyScheme, validate_key
from tagcache.locks import LockManager
from tagcache.logging import get_logger
from tagcache.scripts import ScriptEngine
from tagcache.settings import (
    DEFAULT_COMPRESSION,
    DEFAULT_COMPRESSION_MIN_BYTES,
    DEFAULT_LOCK_TTL,
    DEFAULT_SCAN_BATCH_SIZE,
    DEFAULT_SERIALIZATION,
    CacheSettings,
    get_settings,
)

logger = get_logger(__name__)

DEFAULT_OPTIONS: dict[str, Any] = {
    "prefix": "",
    "tags": [],
    "compression": DEFAULT_COMPRESSION,
    "compression_min_bytes": DEFAULT_COMPRESSION_MIN_BYTES,
    "serialization": DEFAULT_SERIALIZATION,
    "lock_ttl": DEFAULT_LOCK_TTL,
}


def _chunks(values: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class RedisCachePool:
    """Tagged, lockable cache pool backed by a redis-py client.

    The client must return raw bytes (``decode_responses=False``); values
    go through the codec pipeline and are not text in general.

    Args:
        client: A ``redis.Redis`` instance
        config: Pool options as a mapping (see ``DEFAULT_OPTIONS``)
        **options: Pool options as keywords; override ``config``

    Raises:
        CacheConfigError: If the default compression or serialization
            method is not a known method name.
    """

    def __init__(self, client: Any, config: Mapping[str, Any] | None = None, **options: Any):
        merged = {**DEFAULT_OPTIONS, **(config or {}), **options}
        self._config: dict[str, Any] = {name: merged[name] for name in DEFAULT_OPTIONS}

        if not is_valid_compression_method(self._config["compression"]):
            raise CacheConfigError(
                f"Invalid compression method ({self._config['compression']})"
            ).with_context(operation="init")
        if not is_valid_serialization_method(self._config["serialization"]):
            raise CacheConfigError(
                f"Invalid serialization method ({self._config['serialization']})"
            ).with_context(operation="init")

        self._config["tags"] = list(dict.fromkeys(self._config["tags"] or []))

        self.client = client
        self.keys = KeyScheme(self._config["prefix"] or "")
        self.scripts = ScriptEngine(client)
        self.locks = LockManager(
            client, self.keys, default_ttl=int(self._config["lock_ttl"]), scripts=self.scripts
        )
        self.scan_batch_size = DEFAULT_SCAN_BATCH_SIZE

        self._deferred: list[CacheItem] = []
        self._delete_all = False

        logger.debug(
            "cache_pool_created",
            prefix=self.keys.prefix,
            compression=self._config["compression"],
            serialization=self._config["serialization"],
        )

    @classmethod
    def from_url(cls, url: str, **options: Any) -> RedisCachePool:
        """Connect to ``url`` and build a pool with the given options."""
        import redis

        return cls(redis.from_url(url, decode_responses=False), **options)

    @classmethod
    def from_settings(cls, settings: CacheSettings | None = None) -> RedisCachePool:
        """Build a pool from ``TAGCACHE_*`` settings."""
        settings = settings or get_settings()
        pool = cls.from_url(settings.redis_url, **settings.pool_options())
        pool.scan_batch_size = settings.scan_batch_size
        return pool

    def get_config(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def close(self) -> None:
        self.client.close()

    # ── Reads ────────────────────────────────────────────────────────

    def _hydrate(self, key: str, raw: bytes | None, meta: dict[str, str]) -> CacheItem:
        if raw is None:
            return CacheItem(key)

        item = CacheItem(key, None, True, meta)
        codec = CodecConfig.from_dict(item.get_config())
        try:
            item.set(decode_value(raw, codec))
        except Exception as e:
            raise CodecError(f"Unable to decode cached value ({key})", cause=e).with_context(
                key=key,
                compression=codec.compression.value,
                serialization=codec.serialization.value,
            ) from e
        return item

    def _hydrate_many(self, found: list[tuple[str, bytes, dict[str, str]]]) -> list[CacheItem]:
        return [
            self._hydrate(self.keys.logical_key(item_key), raw, meta)
            for item_key, raw, meta in found
        ]

    def get_item(self, key: str) -> CacheItem:
        """Fetch one item, incrementing its hit counter if it exists.

        Returns a miss (``is_hit() is False``) when there is no value record.
        """
        validate_key(key)
        raw, meta = self.scripts.get_item(self.keys.item_key(key), self.keys.meta_key(key))
        return self._hydrate(key, raw, meta)

    def get_items(self, keys: Iterable[str]) -> list[CacheItem]:
        """Fetch several items in one script call.

        Only hits are returned; missing keys are simply absent from the list.
        """
        keys = list(keys)
        if not keys:
            return []
        for key in keys:
            validate_key(key)
        return self._hydrate_many(self.scripts.get_items(self.keys.item_and_meta_keys(keys)))

    def has_item(self, key: str) -> bool:
        """Whether a value record exists. Does not count as a hit."""
        validate_key(key)
        return bool(self.client.exists(self.keys.item_key(key)))

    def _scan(self, pattern: str, batch_size: int) -> Iterator[list[str]]:
        """Yield SCAN pages, split into chunks of at most ``batch_size`` keys."""
        seen: set[str] = set()
        cursor = 0
        while True:
            cursor, page = self.client.scan(cursor, match=pattern, count=batch_size)
            fresh = []
            for raw in page:
                key = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                if key not in seen:
                    seen.add(key)
                    fresh.append(key)
            yield from _chunks(fresh, batch_size)
            if int(cursor) == 0:
                break

    def get_items_with_prefix(self, prefix: str, batch_size: int | None = None) -> list[CacheItem]:
        """Fetch every item whose logical key starts with ``prefix``.

        Keys are discovered with SCAN and read ``batch_size`` at a time
        through the multi-item script, so each read counts as a hit.
        """
        validate_key(prefix)
        batch_size = batch_size or self.scan_batch_size

        items: list[CacheItem] = []
        for chunk in self._scan(self.keys.item_pattern(prefix), batch_size):
            flat: list[str] = []
            for item_key in chunk:
                flat.append(item_key)
                flat.append(self.keys.meta_key(self.keys.logical_key(item_key)))
            items.extend(self._hydrate_many(self.scripts.get_items(flat)))
        return items

    def get_items_with_tag(self, tag: str) -> list[CacheItem]:
        """Fetch every live item carrying ``tag``.

        Tag members without a value record are removed from the tag set
        as a side effect.
        """
        found = self.scripts.get_items_with_tag(
            self.keys.tag_key(tag), self.keys.item_prefix, self.keys.meta_prefix
        )
        logger.debug("cache_tag_read", tag=tag, live=len(found))
        return self._hydrate_many(found)

    # ── Writes ───────────────────────────────────────────────────────

    def _queue_save(self, pipe: Any, item: CacheItem, now: int) -> int:
        """Append the commands that persist ``item`` to ``pipe``.

        Returns the ``created_at`` that was written.
        """
        key = item.get_key()
        item_key = self.keys.item_key(key)
        meta_key = self.keys.meta_key(key)

        expiration = item.get_expiration_timestamp()
        ttl = expiration - now if expiration is not None else 0

        tags = list(dict.fromkeys([*self._config["tags"], *item.get_tags()]))

        codec = CodecConfig.from_dict(
            {
                "compression": self._config["compression"],
                "serialization": self._config["serialization"],
                **item.get_config(),
            }
        )
        data, codec = encode_value(item.get(), codec, int(self._config["compression_min_bytes"]))

        created_at = item.get_created_at() or now
        fields: dict[str, Any] = {
            "tags": json.dumps(tags),
            "hits": item.get_hits(),
            "created_at": created_at,
            "last_updated": now,
            "expires_at": "" if expiration is None else expiration,
            "config": json.dumps(codec.to_dict()),
        }
        user_meta = item.get_meta()
        if user_meta:
            fields["meta"] = json.dumps(user_meta)

        pipe.hset(meta_key, mapping=fields)
        if not user_meta:
            pipe.hdel(meta_key, "meta")

        if ttl > 0:
            pipe.expire(meta_key, ttl)
        else:
            pipe.persist(meta_key)

        for tag in tags:
            pipe.sadd(self.keys.tag_key(tag), key)
        for tag in item.get_removed_tags():
            if tag not in tags:
                pipe.srem(self.keys.tag_key(tag), key)

        if ttl > 0:
            pipe.set(item_key, data, ex=ttl)
        else:
            pipe.set(item_key, data)

        return created_at

    def save(self, item: CacheItem) -> bool:
        """Persist an item unless its key is locked.

        Value, meta hash, and tag index updates go out in one pipeline.
        That is a single round trip, not a transaction.

        Returns:
            ``False`` if the key is locked (nothing is written), otherwise
            whether the pipeline produced replies.
        """
        validate_key(item.get_key())

        if self.locks.is_locked(item.get_key()):
            logger.info("cache_save_rejected_locked", key=item.get_key())
            return False

        now = int(time.time())
        pipe = self.client.pipeline(transaction=False)
        created_at = self._queue_save(pipe, item, now)
        results = pipe.execute()

        item._mark_saved(now, created_at)
        logger.debug("cache_item_saved", key=item.get_key(), tags=item.get_tags())
        return bool(results)

    def save_deferred(self, item: CacheItem) -> bool:
        """Queue an item for the next :meth:`commit`."""
        validate_key(item.get_key())
        self._deferred.append(item)
        return True

    def pending(self) -> int:
        return len(self._deferred)

    def commit(self) -> bool:
        """Save every queued item in one pipeline.

        Lock status is checked per item before the pipeline is built;
        locked items are dropped from the queue without being written and
        without an error. The queue is emptied once the pipeline has run.

        Returns:
            ``True`` when the queue was empty or the pipeline produced
            replies, ``False`` when every queued item was locked.
        """
        if not self._deferred:
            return True

        writable = []
        for item in self._deferred:
            if self.locks.is_locked(item.get_key()):
                logger.info("cache_deferred_dropped_locked", key=item.get_key())
                continue
            writable.append(item)

        if not writable:
            self._deferred = []
            return False

        now = int(time.time())
        pipe = self.client.pipeline(transaction=False)
        created = [self._queue_save(pipe, item, now) for item in writable]
        results = pipe.execute()

        for item, created_at in zip(writable, created):
            item._mark_saved(now, created_at)
        self._deferred = []

        logger.debug("cache_deferred_committed", saved=len(writable))
        return bool(results)

    # ── Deletes ──────────────────────────────────────────────────────

    def delete_item(self, key: str) -> bool:
        """Unlink an item's value and meta records.

        The tag index is left as is; stale members are swept by later
        tag reads.
        """
        validate_key(key)
        return self.client.unlink(self.keys.item_key(key), self.keys.meta_key(key)) > 0

    def delete_items(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        if not keys:
            return True
        for key in keys:
            validate_key(key)
        return self.client.unlink(*self.keys.item_and_meta_keys(keys)) > 0

    def delete_items_with_prefix(self, prefix: str, batch_size: int | None = None) -> bool:
        """Unlink every item (value + meta) whose logical key starts with ``prefix``.

        Returns ``True`` when nothing matched.
        """
        batch_size = batch_size or self.scan_batch_size

        if self._delete_all:
            self._delete_all = False
            pool_wide = True
            pattern = self.keys.pool_pattern()
        else:
            validate_key(prefix)
            pool_wide = False
            pattern = self.keys.item_pattern(prefix)

        matched = 0
        unlinked = 0
        for chunk in self._scan(pattern, batch_size):
            matched += len(chunk)
            if pool_wide:
                doomed = chunk
            else:
                doomed = self.keys.item_and_meta_keys(
                    [self.keys.logical_key(item_key) for item_key in chunk]
                )
            unlinked += self.client.unlink(*doomed)

        if not matched:
            return True
        return unlinked > 0

    def clear(self) -> bool:
        """Delete every key under the pool prefix: items, meta, locks, and tags."""
        self._delete_all = True
        try:
            cleared = self.delete_items_with_prefix("")
        except InvalidKeyError:
            return False
        finally:
            self._delete_all = False
        logger.info("cache_pool_cleared", prefix=self.keys.prefix)
        return cleared

    def delete_items_with_tag(self, tag: str) -> bool:
        """Unlink every item in the tag set, and the tag set itself."""
        tag_key = self.keys.tag_key(tag)
        members = [
            m.decode("utf-8") if isinstance(m, bytes) else m
            for m in self.client.smembers(tag_key)
        ]
        return self.client.unlink(*self.keys.item_and_meta_keys(members), tag_key) > 0

    def delete_tag(self, tag: str) -> int:
        """Remove ``tag`` from every member's meta and drop the tag set.

        Returns the number of tag members visited, not the number of
        items whose meta was rewritten.
        """
        return self.scripts.delete_tag(self.keys.tag_key(tag), self.keys.meta_prefix, tag)

    # ── Locks ────────────────────────────────────────────────────────

    def lock_item(self, key: str, token: str | None = None, ttl: int | None = None) -> str | None:
        validate_key(key)
        return self.locks.acquire(key, token, ttl)

    def unlock_item(self, key: str, token: str) -> bool:
        validate_key(key)
        return self.locks.release(key, token)

    def renew_item_lock(self, key: str, token: str, ttl: int | None = None) -> bool:
        validate_key(key)
        return self.locks.renew(key, token, ttl)

    def force_unlock_item(self, key: str) -> bool:
        """Delete the lock regardless of owner. Defeats mutual exclusion."""
        validate_key(key)
        return self.locks.force_release(key)

    def item_is_locked(self, key: str) -> bool:
        validate_key(key)
        return self.locks.is_locked(key)


__all__ = ["RedisCachePool", "DEFAULT_OPTIONS"]
