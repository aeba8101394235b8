"""Rich terminal rendering for builds, images, cache entries and history.

Color scheme
------------
- green     : COMPLETE
- red       : FAILED
- yellow    : in-progress phase states
- dim       : IDLE
"""

from __future__ import annotations

from datetime import datetime, timezone

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from slimforge.core.errors import CompilationError
from slimforge.models.artifacts import DependencyCache
from slimforge.models.image import RuntimeImage
from slimforge.models.ledger import LedgerEntry
from slimforge.models.pipeline import BuildResult, PipelineState

_STATE_STYLES: dict[str, str] = {
    PipelineState.IDLE.value: "dim",
    PipelineState.BUILDING_DEPENDENCIES.value: "yellow",
    PipelineState.BUILDING_APPLICATION.value: "yellow",
    PipelineState.ASSEMBLING.value: "yellow",
    PipelineState.COMPLETE.value: "bold green",
    PipelineState.FAILED.value: "bold red",
}


def _short(digest: str, width: int = 12) -> str:
    return digest.removeprefix("sha256:")[:width]


def _human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


class BuildRenderer:
    """Renders slimforge models as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def render_result(self, result: BuildResult) -> Panel:
        cache = result.dependency_cache
        cache_status = "[green]hit[/green]" if cache.hit else "[yellow]rebuilt[/yellow]"
        image = result.image
        lines = [
            "[bold green]Build complete[/bold green]",
            "",
            f"[bold]Run:[/bold]               {result.run_id}",
            f"[bold]Dependency cache:[/bold]  {_short(cache.key)} ({cache_status})",
            f"[bold]Executable:[/bold]        {result.executable.name} "
            f"{_short(result.executable.content_address)} "
            f"({_human_size(result.executable.size_bytes)})",
            f"[bold]Image:[/bold]             {image.short_id} ({image.name})",
            f"[bold]Entrypoint:[/bold]        {' '.join(image.config.entrypoint)}",
            f"[bold]Exposed:[/bold]           {', '.join(image.config.exposed_ports)}",
        ]
        return Panel(
            "\n".join(lines),
            title="[bold]slimforge[/bold]",
            border_style="green",
            padding=(1, 2),
        )

    def print_failure(self, exc: Exception) -> None:
        """Print a pipeline failure, with toolchain output verbatim."""
        phase = getattr(exc, "phase", "pipeline")
        self.console.print(
            f"[bold red]{type(exc).__name__}[/bold red] in [bold]{phase}[/bold] phase:"
        )
        self.console.print(str(exc), markup=False, highlight=False)
        if isinstance(exc, CompilationError) and exc.diagnostics:
            self.console.print()
            self.console.print(exc.diagnostics, markup=False, highlight=False, end="")

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def render_image(self, image: RuntimeImage) -> Panel:
        env = Table(show_header=False, box=None, pad_edge=False)
        env.add_column("Name", style="cyan")
        env.add_column("Default")
        for key, value in sorted(image.config.env.items()):
            env.add_row(key, value)

        layers = Table(show_header=True, header_style="bold cyan", box=None)
        layers.add_column("#", justify="right", style="dim")
        layers.add_column("Layer")
        layers.add_column("Digest")
        layers.add_column("Size", justify="right")
        for i, layer in enumerate(image.layers):
            layers.add_row(
                str(i), layer.name, _short(layer.content_address), _human_size(layer.size_bytes)
            )

        summary = Text.from_markup(
            "\n".join(
                [
                    f"[bold]Image:[/bold]       {image.image_id}",
                    f"[bold]Name:[/bold]        {image.name}",
                    f"[bold]Entrypoint:[/bold]  {' '.join(image.config.entrypoint)}",
                    f"[bold]Workdir:[/bold]     {image.config.working_dir}",
                    f"[bold]Exposed:[/bold]     {', '.join(image.config.exposed_ports)}",
                    f"[bold]Deps cache:[/bold]  {_short(image.dependency_cache_key)}",
                    "",
                    "[bold]Environment defaults[/bold]",
                ]
            )
        )
        return Panel(
            Group(summary, env, Text(""), layers),
            title=f"[bold]Image {image.short_id}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def render_images(self, images: list[RuntimeImage]) -> Table:
        table = Table(title="Images", header_style="bold cyan")
        table.add_column("Image", style="cyan")
        table.add_column("Name")
        table.add_column("Executable")
        table.add_column("Deps cache")
        table.add_column("Created")
        for image in images:
            table.add_row(
                image.short_id,
                image.name,
                _short(image.executable.content_address),
                _short(image.dependency_cache_key),
                image.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    # ------------------------------------------------------------------
    # Dependency cache
    # ------------------------------------------------------------------

    def render_cache(self, entries: list[DependencyCache], last_used: dict[str, float]) -> Table:
        table = Table(title="Dependency cache", header_style="bold cyan")
        table.add_column("Key", style="cyan")
        table.add_column("Package")
        table.add_column("Locked", justify="right")
        table.add_column("Created")
        table.add_column("Last used")
        for entry in entries:
            used = datetime.fromtimestamp(last_used.get(entry.key, 0.0), tz=timezone.utc)
            table.add_row(
                _short(entry.key),
                entry.package_name,
                str(entry.locked_package_count),
                entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                used.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def render_history(self, run_id: str, entries: list[LedgerEntry]) -> Table:
        table = Table(title=f"Run {run_id}", header_style="bold cyan", expand=True)
        table.add_column("Time", style="dim", width=10)
        table.add_column("Phase", min_width=12)
        table.add_column("Transition", min_width=30)
        table.add_column("Input", width=12)
        table.add_column("Output", width=12)
        table.add_column("Detail")
        for entry in entries:
            style = _STATE_STYLES.get(entry.to_state, "")
            detail = entry.detail.splitlines()[0] if entry.detail else ""
            table.add_row(
                entry.timestamp_utc.strftime("%H:%M:%S"),
                entry.phase,
                f"[{style}]{entry.state_transition}[/{style}]" if style else entry.state_transition,
                _short(entry.input_hash),
                _short(entry.output_hash),
                Text(detail),
            )
        return table

    def render_runs(self, runs: list[tuple[str, LedgerEntry]]) -> Table:
        table = Table(title="Build runs", header_style="bold cyan")
        table.add_column("Run", style="cyan")
        table.add_column("State")
        table.add_column("Last transition")
        for run_id, latest in runs:
            style = _STATE_STYLES.get(latest.to_state, "")
            table.add_row(
                run_id,
                f"[{style}]{latest.to_state}[/{style}]" if style else latest.to_state,
                latest.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
