"""
Shared pytest fixtures and configuration for tagcache tests.

This module provides:
- A MagicMock Redis client with sensible default replies
- A pool wired to that client
- A pool for tests under ``integration/``: a real Redis when
  ``TAGCACHE_TEST_REDIS_URL`` is set, an in-process fakeredis otherwise
- Root logger and structlog state reset after every test

Usage:
    def test_something(pool, redis_client):
        redis_client.evalsha.return_value = [None, []]
        assert not pool.get_item("k").is_hit()
"""

import logging
import os
import sys
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import structlog

# Ensure tagcache and tests._support are importable without an install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from tagcache.logging import HANDLER_NAME
from tagcache.pool import RedisCachePool
from tagcache.settings import clear_settings_cache


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Drop cached settings so env changes in one test don't leak."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo configure_logging so handlers and levels don't leak between tests."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


# =============================================================================
# Mocked Redis
# =============================================================================


@pytest.fixture
def redis_client() -> MagicMock:
    """A redis-py stand-in: nothing exists, writes succeed."""
    client = MagicMock()
    client.exists.return_value = 0
    client.set.return_value = True
    client.unlink.return_value = 0
    client.delete.return_value = 0
    client.scan.return_value = (0, [])
    client.smembers.return_value = set()

    pipe = MagicMock()
    pipe.execute.return_value = [True]
    client.pipeline.return_value = pipe
    return client


@pytest.fixture
def pipe(redis_client: MagicMock) -> MagicMock:
    return redis_client.pipeline.return_value


@pytest.fixture
def pool(redis_client: MagicMock) -> RedisCachePool:
    return RedisCachePool(redis_client, prefix="t:")


# =============================================================================
# Live Redis
# =============================================================================


@pytest.fixture
def live_pool() -> Generator[RedisCachePool, None, None]:
    """A pool under a throwaway prefix.

    Uses the Redis at ``TAGCACHE_TEST_REDIS_URL`` when set, otherwise an
    in-process fakeredis server with Lua support.
    """
    prefix = f"tagcache-test-{uuid4().hex[:8]}:"
    url = os.environ.get("TAGCACHE_TEST_REDIS_URL")
    if url:
        pool = RedisCachePool.from_url(url, prefix=prefix)
    else:
        fakeredis = pytest.importorskip("fakeredis")
        pool = RedisCachePool(fakeredis.FakeRedis(), prefix=prefix)
    yield pool
    pool.clear()
    pool.close()
