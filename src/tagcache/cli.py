"""
CLI: ``tagcache`` — inspect and maintain a cache pool from the shell.

Every command accepts ``--url`` and ``--prefix``; unset values come from
``TAGCACHE_*`` settings.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from tagcache import __version__
from tagcache.item import CacheItem
from tagcache.logging import configure_logging
from tagcache.pool import RedisCachePool
from tagcache.protocols import CacheItemPool
from tagcache.settings import get_settings

app = typer.Typer(
    name="tagcache",
    help="tagcache — tagged, lockable cache pools on Redis.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

UrlOption = typer.Option(None, "--url", "-u", help="Redis URL (default: TAGCACHE_REDIS_URL).")
PrefixOption = typer.Option(None, "--prefix", "-p", help="Pool key prefix (default: TAGCACHE_PREFIX).")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tagcache {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V", help="Show version and exit.", callback=_version_callback, is_eager=True
    ),
) -> None:
    """tagcache CLI — read, delete, tag, and lock cache items."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")


def make_pool(url: str | None = None, prefix: str | None = None) -> CacheItemPool:
    """Build a pool from settings, with CLI overrides applied."""
    settings = get_settings()
    options = settings.pool_options()
    if prefix is not None:
        options["prefix"] = prefix
    pool = RedisCachePool.from_url(url or settings.redis_url, **options)
    pool.scan_batch_size = settings.scan_batch_size
    return pool


def _item_dict(item: CacheItem) -> dict[str, Any]:
    return {
        "key": item.get_key(),
        "value": repr(item.get()),
        "hits": item.get_hits(),
        "tags": item.get_tags(),
        "meta": item.get_meta(),
        "created_at": item.get_created_at(),
        "last_updated": item.get_last_updated(),
        "expires_at": item.get_expiration_timestamp(),
        "config": item.get_config(),
    }


def _print_items(items: list[CacheItem], *, title: str) -> None:
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title)
    for column in ("key", "hits", "tags", "expires_at", "value"):
        table.add_column(column)
    for item in items:
        row = _item_dict(item)
        table.add_row(
            row["key"],
            str(row["hits"]),
            ", ".join(row["tags"]),
            str(row["expires_at"] or "-"),
            row["value"][:60],
        )
    console.print(table)


@app.command("get")
def get_command(
    key: str = typer.Argument(..., help="Logical key."),
    json_out: bool = typer.Option(False, "--json"),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Show one item (counts as a hit)."""
    item = make_pool(url, prefix).get_item(key)
    if not item.is_hit():
        err_console.print(f"[bold red]Miss[/bold red]: {key}")
        raise typer.Exit(code=1)
    data = _item_dict(item)
    if json_out:
        console.print_json(json.dumps(data, default=str))
        return
    for name, value in data.items():
        console.print(f"[bold]{name}[/bold]: {value}")


@app.command("tags")
def tags_command(
    tag: str = typer.Argument(..., help="Tag name."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """List items carrying a tag (stale tag members are pruned)."""
    _print_items(make_pool(url, prefix).get_items_with_tag(tag), title=f"tag: {tag}")


@app.command("delete")
def delete_command(
    keys: list[str] = typer.Argument(..., help="Logical keys."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Delete items by key."""
    deleted = make_pool(url, prefix).delete_items(keys)
    console.print("Deleted." if deleted else "[dim]Nothing to delete.[/dim]")


@app.command("delete-prefix")
def delete_prefix_command(
    key_prefix: str = typer.Argument(..., help="Logical key prefix."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Delete every item whose key starts with a prefix."""
    make_pool(url, prefix).delete_items_with_prefix(key_prefix)
    console.print("Done.")


@app.command("delete-tag")
def delete_tag_command(
    tag: str = typer.Argument(..., help="Tag name."),
    items: bool = typer.Option(False, "--items", help="Delete the tagged items instead of untagging them."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Remove a tag from all items, or delete the tagged items."""
    pool = make_pool(url, prefix)
    if items:
        deleted = pool.delete_items_with_tag(tag)
        console.print("Deleted." if deleted else "[dim]Nothing to delete.[/dim]")
        return
    count = pool.delete_tag(tag)
    console.print(f"Untagged {count} member(s).")


@app.command("lock")
def lock_command(
    key: str = typer.Argument(..., help="Logical key."),
    ttl: int | None = typer.Option(None, "--ttl", help="Lock TTL in seconds."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Acquire a lock and print its token."""
    token = make_pool(url, prefix).lock_item(key, ttl=ttl)
    if token is None:
        err_console.print(f"[bold red]Locked[/bold red]: {key}")
        raise typer.Exit(code=1)
    console.print(token)


@app.command("unlock")
def unlock_command(
    key: str = typer.Argument(..., help="Logical key."),
    token: str = typer.Argument(..., help="Token returned by 'lock'."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Release a lock held with TOKEN."""
    if not make_pool(url, prefix).unlock_item(key, token):
        err_console.print("[bold red]Not released[/bold red]: token does not own the lock.")
        raise typer.Exit(code=1)
    console.print("Released.")


@app.command("force-unlock")
def force_unlock_command(
    key: str = typer.Argument(..., help="Logical key."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Delete a lock whoever holds it."""
    err_console.print("[yellow]Warning[/yellow]: forcing a release breaks mutual exclusion for the holder.")
    released = make_pool(url, prefix).force_unlock_item(key)
    console.print("Released." if released else "[dim]No lock.[/dim]")


@app.command("is-locked")
def is_locked_command(
    key: str = typer.Argument(..., help="Logical key."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Report whether a key is locked."""
    console.print("locked" if make_pool(url, prefix).item_is_locked(key) else "unlocked")


@app.command("clear")
def clear_command(
    yes: bool = typer.Option(False, "--yes", help="Confirm the wipe."),
    url: str | None = UrlOption,
    prefix: str | None = PrefixOption,
) -> None:
    """Delete every key under the pool prefix."""
    if not yes:
        err_console.print("Refusing to clear without --yes.")
        raise typer.Exit(code=1)
    cleared = make_pool(url, prefix).clear()
    console.print("Cleared." if cleared else "[dim]Nothing cleared.[/dim]")


__all__ = ["app", "make_pool"]
