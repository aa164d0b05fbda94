#!/usr/bin/env python3
"""Tagged Cache — save, read, tag, lock, and wipe a pool.

WHY TAGS AND LOCKS
──────────────────
Key-only caches make invalidation a guessing game: "which keys held
data for tenant 7?"  A tag index answers that question directly, and
advisory locks keep a slow rebuild from being clobbered by a racing
writer.

ARCHITECTURE
────────────
    pool.save(item)
         │  one pipeline
         ▼
    <prefix>meta|K   hash  (tags, hits, timestamps, codec config)
    <prefix>tag|T    set   (logical keys)
    <prefix>item|K   value (serialized, maybe compressed)

    pool.get_item(K)  ── Lua ──▶  GET + HINCRBY hits + HGETALL

Run: TAGCACHE_REDIS_URL=redis://localhost:6379/15 python examples/01_tagged_cache.py
"""

from tagcache import CacheItem, RedisCachePool
from tagcache.logging import configure_logging
from tagcache.settings import get_settings


def main():
    configure_logging(level="WARNING", json_format=False)
    settings = get_settings()
    pool = RedisCachePool.from_url(settings.redis_url, prefix="example:", tags=["example"])

    print("=" * 60)
    print("Tagged Cache")
    print("=" * 60)

    # ── 1. Save and read ────────────────────────────────────────
    print("\n--- 1. Save and read ---")
    item = pool.get_item("user.42")
    print(f"  First read hit? {item.is_hit()}")
    item.set({"name": "Ada", "plan": "pro"}).expires_after(300)
    item.add_tags(["users", "tenant-7"]).add_meta({"source": {"db": "primary"}})
    pool.save(item)

    item = pool.get_item("user.42")
    print(f"  Value:   {item.get()}")
    print(f"  Tags:    {item.get_tags()}")
    print(f"  Hits:    {item.get_hits()}")
    print(f"  Source:  {item.get_meta_value('source.db')}")
    print(f"  TTL:     {item.get_time_until_expiration()}s")

    # ── 2. Deferred batch ───────────────────────────────────────
    print("\n--- 2. Deferred batch ---")
    for n in range(3):
        pool.save_deferred(CacheItem(f"order.{n}").set({"total": n * 10}).add_tags(["orders", "tenant-7"]))
    print(f"  Pending: {pool.pending()}")
    print(f"  Commit:  {pool.commit()}")

    # ── 3. Tag and prefix reads ─────────────────────────────────
    print("\n--- 3. Tag and prefix reads ---")
    tenant = pool.get_items_with_tag("tenant-7")
    print(f"  tenant-7: {sorted(i.get_key() for i in tenant)}")
    orders = pool.get_items_with_prefix("order.")
    print(f"  order.*:  {sorted(i.get_key() for i in orders)}")

    # ── 4. Locks ────────────────────────────────────────────────
    print("\n--- 4. Locks ---")
    token = pool.lock_item("user.42", ttl=10)
    print(f"  Locked with token {token}")
    print(f"  Save while locked: {pool.save(CacheItem('user.42').set('stale'))}")
    print(f"  Unlock: {pool.unlock_item('user.42', token)}")

    # ── 5. Untag, then wipe ─────────────────────────────────────
    print("\n--- 5. Untag and clear ---")
    print(f"  Untagged members: {pool.delete_tag('tenant-7')}")
    print(f"  user.42 tags now: {pool.get_item('user.42').get_tags()}")
    print(f"  Cleared: {pool.clear()}")
    pool.close()

    print("\n" + "=" * 60)
    print("[OK] Tagged cache example complete")


if __name__ == "__main__":
    main()
