"""``slimforge build [PROJECT_DIR]``: run the full pipeline once.

Loads ``slimforge.toml``, runs the dependency, application and assembly
phases, publishes the image and prints its id. On failure the failing
phase's diagnostics are printed verbatim and the exit code is 1.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from slimforge.core.errors import PipelineError
from slimforge.core.orchestrator import Pipeline
from slimforge.core.project import load_pipeline_config
from slimforge.monitor.renderer import BuildRenderer

console = Console()


def build_cmd(
    ctx: typer.Context,
    project_dir: Path = typer.Argument(
        Path("."),
        help="Project directory containing the manifest, lock and sources.",
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to slimforge.toml (default: PROJECT_DIR/slimforge.toml).",
    ),
    base_layer: Path = typer.Option(
        None,
        "--base-layer",
        "-b",
        help="Base root filesystem (directory or tar), overriding the config.",
    ),
    run_id: str = typer.Option(
        None,
        "--run-id",
        help="Explicit run ID to record in the ledger.",
    ),
) -> None:
    """Build PROJECT_DIR into a minimal runtime image."""
    renderer = BuildRenderer(console=console)
    try:
        config = load_pipeline_config(project_dir, config_file)
        if base_layer is not None:
            config = config.model_copy(
                update={
                    "runtime": config.runtime.model_copy(
                        update={"base_layer": base_layer.resolve()}
                    )
                }
            )
        result = Pipeline(config, forge_config=ctx.obj).run(run_id)
    except PipelineError as exc:
        renderer.print_failure(exc)
        raise typer.Exit(code=1)

    console.print()
    console.print(renderer.render_result(result))
    console.print()

    # Print the image id plainly for scripting
    console.print(result.image.image_id, soft_wrap=True, highlight=False)
