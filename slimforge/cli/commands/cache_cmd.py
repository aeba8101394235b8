"""``slimforge cache list|prune``: dependency cache management."""

from __future__ import annotations

import typer
from rich.console import Console

from slimforge.config import ForgeConfig
from slimforge.core.dependency_cache import DependencyCacheStore
from slimforge.monitor.renderer import BuildRenderer

console = Console()

cache_app = typer.Typer(no_args_is_help=True, add_completion=False)


@cache_app.command(name="list", help="List dependency cache entries.")
def list_cmd(ctx: typer.Context) -> None:
    config: ForgeConfig = ctx.obj
    store = DependencyCacheStore(config.resolved_cache_path)
    entries = store.list_entries()
    if not entries:
        console.print("[dim]Dependency cache is empty.[/dim]")
        return
    last_used = {entry.key: store.last_used(entry.key) for entry in entries}
    console.print(BuildRenderer(console=console).render_cache(entries, last_used))


@cache_app.command(name="prune", help="Evict all but the most recently used entries.")
def prune_cmd(
    ctx: typer.Context,
    keep: int = typer.Option(
        None,
        "--keep",
        "-k",
        min=0,
        help="Entries to keep (default: SLIMFORGE_CACHE_KEEP_ENTRIES).",
    ),
) -> None:
    config: ForgeConfig = ctx.obj
    keep = config.cache_keep_entries if keep is None else keep
    evicted = DependencyCacheStore(config.resolved_cache_path).prune(keep)
    for key in evicted:
        console.print(f"evicted [cyan]{key[:12]}[/cyan]")
    console.print(f"[bold]{len(evicted)}[/bold] entries evicted, keeping at most {keep}.")
