"""``slimforge run IMAGE``: launch an image's entry point locally.

The image's layers are unpacked into a root directory and the entry
point is executed directly with the image environment defaults,
overridden by the caller's environment and ``--env`` values.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import typer
from rich.console import Console

from slimforge.config import ForgeConfig
from slimforge.core.artifact_store import ContentAddressedStore
from slimforge.core.image_store import ImageNotFoundError, ImageStore
from slimforge.runtime.launcher import LaunchError, launch

console = Console()


def _parse_env(values: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--env")
        env[key] = value
    return env


def run_cmd(
    ctx: typer.Context,
    image_ref: str = typer.Argument(..., help="Image id or unique id prefix."),
    env: list[str] = typer.Option(
        None,
        "--env",
        "-e",
        help="Environment override KEY=VALUE (repeatable), e.g. SERVER_PORT=8080.",
    ),
    rootfs: Path = typer.Option(
        None,
        "--rootfs",
        help="Unpack the image here instead of a temporary directory.",
    ),
) -> None:
    """Launch IMAGE's entry point and exit with its exit code."""
    config: ForgeConfig = ctx.obj
    overrides = _parse_env(env or [])
    try:
        image = ImageStore(config.resolved_image_store_path).get(image_ref)
    except ImageNotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    artifacts = ContentAddressedStore(config.resolved_artifact_store_path)
    try:
        if rootfs is not None:
            code = launch(image, artifacts, rootfs, overrides=overrides)
        else:
            with tempfile.TemporaryDirectory(prefix="slimforge-rootfs-") as tmp:
                code = launch(image, artifacts, Path(tmp), overrides=overrides)
    except LaunchError as exc:
        console.print(f"[bold red]Launch failed:[/bold red] {exc}")
        raise typer.Exit(code=1)
    raise typer.Exit(code=code)
