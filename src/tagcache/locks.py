"""Advisory per-key locks for cache items.

A lock is a token stored under ``<prefix>lock|<key>`` with a TTL. Holding
the lock means knowing the token; nothing in Redis enforces it. The pool
only *checks* for a lock before writing, it never takes one itself, so a
lock acquired between that check and the write is not honoured.

    Lock Flow:
        acquire  SET lock|K token NX EX ttl   → token | None
        release  script: GET == token ? DEL    → bool
        renew    script: GET == token ? EXPIRE → bool
        force    DEL lock|K                    → bool (defeats exclusion)
        check    EXISTS lock|K                 → bool
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from tagcache.keys import KeyScheme
from tagcache.logging import get_logger
from tagcache.scripts import ScriptEngine

logger = get_logger(__name__)


class LockManager:
    """Token-based, non-blocking advisory locks.

    Example:
        >>> locks = LockManager(client, KeyScheme("app:"), default_ttl=30)
        >>> token = locks.acquire("report.daily")
        >>> if token:
        ...     try:
        ...         rebuild_report()
        ...     finally:
        ...         locks.release("report.daily", token)
    """

    def __init__(
        self,
        client: Any,
        keys: KeyScheme,
        *,
        default_ttl: int = 30,
        scripts: ScriptEngine | None = None,
    ) -> None:
        self.client = client
        self.keys = keys
        self.default_ttl = default_ttl
        self.scripts = scripts or ScriptEngine(client)

    def acquire(self, key: str, token: str | None = None, ttl: int | None = None) -> str | None:
        """Try once to take the lock.

        Args:
            key: Logical key to lock
            token: Token to store; a random one is generated when omitted
            ttl: Lock lifetime in seconds (default: ``default_ttl``)

        Returns:
            The token if the lock was acquired, ``None`` if it is already
            held or ``ttl`` is not positive.
        """
        if token is None:
            token = uuid4().hex
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= 0:
            return None

        acquired = self.client.set(self.keys.lock_key(key), token, nx=True, ex=ttl)
        if acquired:
            logger.debug("lock_acquired", key=key, ttl=ttl)
            return token

        logger.debug("lock_busy", key=key)
        return None

    def release(self, key: str, token: str) -> bool:
        """Release the lock only if ``token`` still owns it."""
        released = self.scripts.release_lock(self.keys.lock_key(key), token)
        if not released:
            logger.debug("lock_release_refused", key=key)
        return released

    def renew(self, key: str, token: str, ttl: int | None = None) -> bool:
        """Reset the lock's TTL if ``token`` still owns it."""
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= 0:
            return False
        renewed = self.scripts.renew_lock(self.keys.lock_key(key), token, ttl)
        if not renewed:
            logger.debug("lock_renew_refused", key=key)
        return renewed

    def force_release(self, key: str) -> bool:
        """Delete the lock whoever holds it.

        This breaks mutual exclusion for the current holder. Use it only to
        recover from a holder that is known to be gone.
        """
        deleted = self.client.delete(self.keys.lock_key(key)) > 0
        logger.warning("lock_force_released", key=key, existed=deleted)
        return deleted

    def is_locked(self, key: str) -> bool:
        """Whether any lock exists for ``key``. The token is not inspected."""
        return bool(self.client.exists(self.keys.lock_key(key)))


__all__ = ["LockManager"]
