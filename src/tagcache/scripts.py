"""
Atomic script engine — server-side Lua for every read that must be atomic.

Redis runs each script to completion without interleaving other clients'
commands, which gives the pool two guarantees it cannot get from a
pipeline:

- a read and its hit-counter increment are never observed separately;
- lock release and renewal compare the stored token and act on it in one
  step, so a caller cannot release a lock that has meanwhile passed to
  someone else.

Manifesto:
    Scripts are addressed by content hash. The engine always tries
    ``EVALSHA`` first and, only when the server answers ``NOSCRIPT``,
    falls back to ``EVAL`` with the full body (which also caches it on the
    server). Any other transport error propagates untouched.

Architecture:
    ::

        ScriptEngine.run(script, keys, args)
            │
            ├─ EVALSHA sha1(body) ─────────────────▶ reply
            │
            └─ NoScriptError ─▶ EVAL body ─────────▶ reply   (exactly once)

        Script              KEYS                    ARGV
        ──────────────────  ──────────────────────  ─────────────────────────
        GET_ITEM            item, meta              -
        GET_ITEMS           item1, meta1, ...       -
        GET_ITEMS_WITH_TAG  tag                     item prefix, meta prefix
        DELETE_TAG          tag                     meta prefix, tag name
        RELEASE_LOCK        lock                    token
        RENEW_LOCK          lock                    token, ttl seconds

Guardrails:
    ❌ DON'T: emulate these scripts with GET + HINCRBY from the client
    ✅ DO: route every hit-counting read through ``ScriptEngine``

    ❌ DON'T: expect GET_ITEMS to report misses
    ✅ DO: diff the returned keys against the requested ones

Tags:
    redis, lua, evalsha, atomicity, locking, tag-index, tagcache

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from redis.exceptions import NoScriptError

from tagcache.errors import ScriptError
from tagcache.logging import get_logger

logger = get_logger(__name__)

# Upper bound on members passed to a single SREM while sweeping orphans.
ORPHAN_BATCH_SIZE = 5000


@dataclass(frozen=True)
class Script:
    """A named Lua script and its precomputed SHA1 digest."""

    name: str
    body: str
    sha: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sha", hashlib.sha1(self.body.encode("utf-8")).hexdigest())


GET_ITEM = Script(
    "get_item",
    """
local value = redis.call('GET', KEYS[1])
local meta = {}
if value ~= false then
    redis.call('HINCRBY', KEYS[2], 'hits', 1)
    meta = redis.call('HGETALL', KEYS[2])
end
return {value, meta}
""",
)

GET_ITEMS = Script(
    "get_items",
    """
local found = {}
for i = 1, #KEYS, 2 do
    local value = redis.call('GET', KEYS[i])
    if value ~= false then
        redis.call('HINCRBY', KEYS[i + 1], 'hits', 1)
        table.insert(found, KEYS[i])
        table.insert(found, value)
        table.insert(found, redis.call('HGETALL', KEYS[i + 1]))
    end
end
return found
""",
)

GET_ITEMS_WITH_TAG = Script(
    "get_items_with_tag",
    f"""
local tag_key = KEYS[1]
local item_prefix = ARGV[1]
local meta_prefix = ARGV[2]
local found = {{}}
local orphans = {{}}
for _, member in ipairs(redis.call('SMEMBERS', tag_key)) do
    local item_key = item_prefix .. member
    local value = redis.call('GET', item_key)
    if value == false then
        table.insert(orphans, member)
    else
        local meta_key = meta_prefix .. member
        redis.call('HINCRBY', meta_key, 'hits', 1)
        table.insert(found, item_key)
        table.insert(found, value)
        table.insert(found, redis.call('HGETALL', meta_key))
    end
end
for i = 1, #orphans, {ORPHAN_BATCH_SIZE} do
    local batch = {{}}
    for j = i, math.min(i + {ORPHAN_BATCH_SIZE - 1}, #orphans) do
        table.insert(batch, orphans[j])
    end
    redis.call('SREM', tag_key, unpack(batch))
end
return found
""",
)

DELETE_TAG = Script(
    "delete_tag",
    """
local tag_key = KEYS[1]
local meta_prefix = ARGV[1]
local tag = ARGV[2]
local members = redis.call('SMEMBERS', tag_key)
for _, member in ipairs(members) do
    local meta_key = meta_prefix .. member
    local raw = redis.call('HGET', meta_key, 'tags')
    if raw then
        local ok, tags = pcall(cjson.decode, raw)
        if ok and type(tags) == 'table' then
            local kept = {}
            local found = false
            for _, t in ipairs(tags) do
                if t == tag then
                    found = true
                else
                    table.insert(kept, t)
                end
            end
            if found then
                if #kept == 0 then
                    redis.call('HSET', meta_key, 'tags', '[]')
                else
                    redis.call('HSET', meta_key, 'tags', cjson.encode(kept))
                end
            end
        end
    end
end
redis.call('DEL', tag_key)
return #members
""",
)

RELEASE_LOCK = Script(
    "release_lock",
    """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
""",
)

RENEW_LOCK = Script(
    "renew_lock",
    """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return 0
""",
)

ALL_SCRIPTS = (GET_ITEM, GET_ITEMS, GET_ITEMS_WITH_TAG, DELETE_TAG, RELEASE_LOCK, RENEW_LOCK)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _hash_reply(flat: Any) -> dict[str, str]:
    """Turn an ``HGETALL`` reply (flat field/value list) into a dict."""
    if not flat:
        return {}
    if isinstance(flat, dict):
        return {_text(k): _text(v) for k, v in flat.items()}
    if len(flat) % 2:
        raise ScriptError("Malformed hash reply from script").with_context(
            operation="hgetall", length=len(flat)
        )
    return {_text(flat[i]): _text(flat[i + 1]) for i in range(0, len(flat), 2)}


class ScriptEngine:
    """Runs :class:`Script` objects against a redis-py client.

    Example:
        >>> engine = ScriptEngine(redis.Redis())
        >>> value, meta = engine.get_item("item|user.42", "meta|user.42")
    """

    def __init__(self, client: Any):
        self.client = client

    def run(self, script: Script, keys: Sequence[str], args: Sequence[Any] = ()) -> Any:
        """Execute by hash, uploading the body once if the server lacks it."""
        try:
            return self.client.evalsha(script.sha, len(keys), *keys, *args)
        except NoScriptError:
            logger.debug("script_not_cached", script=script.name, sha=script.sha)
            return self.client.eval(script.body, len(keys), *keys, *args)

    def load_all(self) -> dict[str, str]:
        """Upload every script ahead of time. Returns ``{name: sha}``."""
        loaded = {}
        for script in ALL_SCRIPTS:
            loaded[script.name] = _text(self.client.script_load(script.body))
        return loaded

    # ── Typed wrappers ───────────────────────────────────────────────

    def get_item(self, item_key: str, meta_key: str) -> tuple[bytes | None, dict[str, str]]:
        reply = self.run(GET_ITEM, [item_key, meta_key])
        if not isinstance(reply, (list, tuple)) or len(reply) != 2:
            raise ScriptError("Unexpected reply from get_item").with_context(key=item_key)
        value, meta = reply
        return value, _hash_reply(meta)

    def get_items(self, keys: Sequence[str]) -> list[tuple[str, bytes, dict[str, str]]]:
        """``keys`` is a flat ``[item, meta, item, meta, ...]`` list.

        Missing items are absent from the result, not reported as misses.
        """
        if not keys:
            return []
        return self._triples(self.run(GET_ITEMS, keys))

    def get_items_with_tag(
        self, tag_key: str, item_prefix: str, meta_prefix: str
    ) -> list[tuple[str, bytes, dict[str, str]]]:
        """Read every live member of a tag set and drop orphaned members from it."""
        return self._triples(self.run(GET_ITEMS_WITH_TAG, [tag_key], [item_prefix, meta_prefix]))

    def delete_tag(self, tag_key: str, meta_prefix: str, tag: str) -> int:
        """Strip ``tag`` from every member's meta, then drop the tag set.

        Returns the number of members visited, which can exceed the number
        of meta records actually rewritten.
        """
        return int(self.run(DELETE_TAG, [tag_key], [meta_prefix, tag]) or 0)

    def release_lock(self, lock_key: str, token: str) -> bool:
        return bool(self.run(RELEASE_LOCK, [lock_key], [token]))

    def renew_lock(self, lock_key: str, token: str, ttl: int) -> bool:
        return bool(self.run(RENEW_LOCK, [lock_key], [token, ttl]))

    @staticmethod
    def _triples(reply: Any) -> list[tuple[str, bytes, dict[str, str]]]:
        if not reply:
            return []
        if len(reply) % 3:
            raise ScriptError("Unexpected reply length from multi-item script").with_context(
                length=len(reply)
            )
        return [
            (_text(reply[i]), reply[i + 1], _hash_reply(reply[i + 2]))
            for i in range(0, len(reply), 3)
        ]


__all__ = [
    "ORPHAN_BATCH_SIZE",
    "Script",
    "ScriptEngine",
    "GET_ITEM",
    "GET_ITEMS",
    "GET_ITEMS_WITH_TAG",
    "DELETE_TAG",
    "RELEASE_LOCK",
    "RENEW_LOCK",
    "ALL_SCRIPTS",
]
