"""Main Typer application: imports and registers all CLI commands.

Entry point: ``slimforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from slimforge.cli.commands.build import build_cmd
from slimforge.cli.commands.cache_cmd import cache_app
from slimforge.cli.commands.history import history_cmd
from slimforge.cli.commands.images import images_cmd, inspect_cmd
from slimforge.cli.commands.run_cmd import run_cmd
from slimforge.config import ForgeConfig

app = typer.Typer(
    name="slimforge",
    help="slimforge: layered, cached builds packaged into minimal runtime images.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    state_dir: Path = typer.Option(
        None,
        "--state-dir",
        "-s",
        help="Directory for the cache, artifacts, images and ledger.",
    ),
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (overrides SLIMFORGE_LOG_LEVEL).",
    ),
) -> None:
    """Load configuration and set up logging for every command."""
    overrides = {}
    if state_dir is not None:
        overrides["state_dir"] = state_dir
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    config = ForgeConfig(**overrides)

    logging.basicConfig(
        level=config.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    ctx.obj = config


# Register subcommands
app.command(name="build", help="Build the project into a runtime image.")(build_cmd)
app.command(name="inspect", help="Show a published image.")(inspect_cmd)
app.command(name="images", help="List published images.")(images_cmd)
app.command(name="run", help="Launch an image's entry point locally.")(run_cmd)
app.command(name="history", help="Show build runs from the ledger.")(history_cmd)
app.add_typer(cache_app, name="cache", help="Inspect and prune the dependency cache.")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
