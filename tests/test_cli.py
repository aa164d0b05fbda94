"""Tests for tagcache.cli — command smoke tests via CliRunner.

The pool factory is patched so no Redis is needed. TestRealLogging leaves
configure_logging in place so log output goes through the real handler.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from tagcache import __version__
from tagcache.cli import app, make_pool
from tagcache.item import CacheItem
from tagcache.pool import RedisCachePool

runner = CliRunner()


@pytest.fixture
def mock_pool():
    pool = MagicMock()
    with patch("tagcache.cli.make_pool", return_value=pool) as factory, patch(
        "tagcache.cli.configure_logging"
    ):
        pool.factory = factory
        yield pool


def _hit(key="user.42", value="hello"):
    meta = {
        "tags": '["users"]',
        "hits": "2",
        "created_at": "1700000000",
        "last_updated": "1700000000",
        "expires_at": "",
        "config": "{}",
    }
    return CacheItem(key, value, True, meta)


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestGet:
    def test_hit(self, mock_pool):
        mock_pool.get_item.return_value = _hit()
        result = runner.invoke(app, ["get", "user.42"])
        assert result.exit_code == 0
        assert "user.42" in result.output
        assert "'hello'" in result.output
        mock_pool.get_item.assert_called_once_with("user.42")

    def test_json(self, mock_pool):
        mock_pool.get_item.return_value = _hit()
        result = runner.invoke(app, ["get", "user.42", "--json"])
        assert result.exit_code == 0
        assert '"hits": 2' in result.output

    def test_miss_exits_nonzero(self, mock_pool):
        mock_pool.get_item.return_value = CacheItem("user.42")
        result = runner.invoke(app, ["get", "user.42"])
        assert result.exit_code == 1

    def test_url_and_prefix_forwarded(self, mock_pool):
        mock_pool.get_item.return_value = _hit()
        runner.invoke(app, ["get", "user.42", "--url", "redis://other:6379/1", "--prefix", "x:"])
        mock_pool.factory.assert_called_once_with("redis://other:6379/1", "x:")


class TestTagCommands:
    def test_tags_lists_items(self, mock_pool):
        mock_pool.get_items_with_tag.return_value = [_hit("a"), _hit("b")]
        result = runner.invoke(app, ["tags", "users"])
        assert result.exit_code == 0
        mock_pool.get_items_with_tag.assert_called_once_with("users")

    def test_tags_empty(self, mock_pool):
        mock_pool.get_items_with_tag.return_value = []
        result = runner.invoke(app, ["tags", "users"])
        assert "No items" in result.output

    def test_delete_tag_untags(self, mock_pool):
        mock_pool.delete_tag.return_value = 3
        result = runner.invoke(app, ["delete-tag", "users"])
        assert result.exit_code == 0
        assert "Untagged 3" in result.output
        mock_pool.delete_items_with_tag.assert_not_called()

    def test_delete_tag_items(self, mock_pool):
        mock_pool.delete_items_with_tag.return_value = True
        result = runner.invoke(app, ["delete-tag", "users", "--items"])
        assert result.exit_code == 0
        mock_pool.delete_items_with_tag.assert_called_once_with("users")
        mock_pool.delete_tag.assert_not_called()


class TestDeleteCommands:
    def test_delete_keys(self, mock_pool):
        mock_pool.delete_items.return_value = True
        result = runner.invoke(app, ["delete", "a", "b"])
        assert result.exit_code == 0
        mock_pool.delete_items.assert_called_once_with(["a", "b"])

    def test_delete_prefix(self, mock_pool):
        result = runner.invoke(app, ["delete-prefix", "user."])
        assert result.exit_code == 0
        mock_pool.delete_items_with_prefix.assert_called_once_with("user.")

    def test_clear_requires_yes(self, mock_pool):
        result = runner.invoke(app, ["clear"])
        assert result.exit_code == 1
        mock_pool.clear.assert_not_called()

    def test_clear(self, mock_pool):
        mock_pool.clear.return_value = True
        result = runner.invoke(app, ["clear", "--yes"])
        assert result.exit_code == 0
        assert "Cleared" in result.output


class TestLockCommands:
    def test_lock_prints_token(self, mock_pool):
        mock_pool.lock_item.return_value = "abc123"
        result = runner.invoke(app, ["lock", "report", "--ttl", "60"])
        assert result.exit_code == 0
        assert "abc123" in result.output
        mock_pool.lock_item.assert_called_once_with("report", ttl=60)

    def test_lock_busy(self, mock_pool):
        mock_pool.lock_item.return_value = None
        result = runner.invoke(app, ["lock", "report"])
        assert result.exit_code == 1

    def test_unlock(self, mock_pool):
        mock_pool.unlock_item.return_value = True
        result = runner.invoke(app, ["unlock", "report", "abc123"])
        assert result.exit_code == 0
        mock_pool.unlock_item.assert_called_once_with("report", "abc123")

    def test_unlock_wrong_token(self, mock_pool):
        mock_pool.unlock_item.return_value = False
        result = runner.invoke(app, ["unlock", "report", "nope"])
        assert result.exit_code == 1

    def test_force_unlock(self, mock_pool):
        mock_pool.force_unlock_item.return_value = True
        result = runner.invoke(app, ["force-unlock", "report"])
        assert result.exit_code == 0
        mock_pool.force_unlock_item.assert_called_once_with("report")

    def test_is_locked(self, mock_pool):
        mock_pool.item_is_locked.return_value = True
        result = runner.invoke(app, ["is-locked", "report"])
        assert "locked" in result.output
        mock_pool.item_is_locked.return_value = False
        result = runner.invoke(app, ["is-locked", "report"])
        assert "unlocked" in result.output


class TestRealLogging:
    @pytest.fixture
    def real_pool(self, redis_client):
        pool = RedisCachePool(redis_client, prefix="t:")
        with patch("tagcache.cli.make_pool", return_value=pool):
            yield pool

    def test_force_unlock_logs_warning(self, real_pool, redis_client):
        redis_client.delete.return_value = 1
        result = runner.invoke(app, ["force-unlock", "report"])
        assert result.exit_code == 0, result.output
        assert "lock_force_released" in result.output
        assert "Released." in result.output

    def test_clear_logs_event(self, real_pool):
        result = runner.invoke(app, ["clear", "--yes"])
        assert result.exit_code == 0, result.output
        assert "cache_pool_cleared" in result.output

    def test_json_log_format(self, real_pool, redis_client, monkeypatch):
        monkeypatch.setenv("TAGCACHE_LOG_FORMAT", "json")
        redis_client.delete.return_value = 1
        result = runner.invoke(app, ["force-unlock", "report"])
        assert result.exit_code == 0, result.output
        record = next(
            json.loads(line) for line in result.output.splitlines() if "lock_force_released" in line
        )
        assert record["logger"] == "tagcache.locks"
        assert record["log.level"] == "warning"
        assert record["key"] == "report"


class TestMakePool:
    def test_uses_settings(self, monkeypatch):
        monkeypatch.setenv("TAGCACHE_REDIS_URL", "redis://env:6379/4")
        monkeypatch.setenv("TAGCACHE_PREFIX", "env:")
        monkeypatch.setenv("TAGCACHE_SCAN_BATCH_SIZE", "25")
        with patch("redis.from_url") as from_url:
            pool = make_pool()
        from_url.assert_called_once_with("redis://env:6379/4", decode_responses=False)
        assert pool.keys.prefix == "env:"
        assert pool.scan_batch_size == 25

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("TAGCACHE_PREFIX", "env:")
        with patch("redis.from_url") as from_url:
            pool = make_pool("redis://cli:6379/0", "cli:")
        from_url.assert_called_once_with("redis://cli:6379/0", decode_responses=False)
        assert pool.keys.prefix == "cli:"
