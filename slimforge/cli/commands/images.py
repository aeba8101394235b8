"""``slimforge images`` and ``slimforge inspect IMAGE``."""

from __future__ import annotations

import typer
from rich.console import Console

from slimforge.config import ForgeConfig
from slimforge.core.image_store import ImageNotFoundError, ImageStore
from slimforge.monitor.renderer import BuildRenderer

console = Console()


def images_cmd(ctx: typer.Context) -> None:
    """List published images, newest first."""
    config: ForgeConfig = ctx.obj
    images = ImageStore(config.resolved_image_store_path).list_images()
    if not images:
        console.print("[dim]No images published yet.[/dim]")
        return
    console.print(BuildRenderer(console=console).render_images(images))


def inspect_cmd(
    ctx: typer.Context,
    image_ref: str = typer.Argument(..., help="Image id or unique id prefix."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw image record."),
) -> None:
    """Show the configuration and layers of a published image."""
    config: ForgeConfig = ctx.obj
    try:
        image = ImageStore(config.resolved_image_store_path).get(image_ref)
    except ImageNotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(image.model_dump_json())
        return
    console.print(BuildRenderer(console=console).render_image(image))
