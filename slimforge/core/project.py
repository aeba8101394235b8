"""Loading ``slimforge.toml`` project files.

Example::

    [project]
    name = "backend"
    manifest = "Cargo.toml"
    lock = "Cargo.lock"
    source = "src"

    [toolchain]
    dependency_command = ["cargo", "build", "--release"]
    application_command = ["cargo", "build", "--release"]
    output_dir = "target"
    executable = "target/release/backend"

    [toolchain.stub_files]
    "src/main.rs" = "fn main() {}"

    [runtime]
    base_layer = "rootfs/bookworm-slim.tar"
    ca_bundle = "/etc/ssl/certs/ca-certificates.crt"
    working_dir = "/app"
    bind_host = "0.0.0.0"
    bind_port = 10000

Every table and key is optional; defaults follow a Cargo project.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from slimforge.core.errors import ConfigError
from slimforge.models.config import PipelineConfig, RuntimeSpec, ToolchainSpec
from slimforge.models.image import RuntimeDefaults

PROJECT_FILE = "slimforge.toml"


def pipeline_config_from_dict(data: dict[str, Any], project_dir: Path) -> PipelineConfig:
    """Build a PipelineConfig from a decoded ``slimforge.toml`` document."""
    project = dict(data.get("project", {}))
    toolchain = dict(data.get("toolchain", {}))
    runtime = dict(data.get("runtime", {}))

    try:
        if "executable" in toolchain:
            toolchain["executable_path"] = toolchain.pop("executable")
        defaults = RuntimeDefaults(
            **{k: runtime.pop(k) for k in ("bind_host", "bind_port") if k in runtime}
        )
        runtime_spec = RuntimeSpec(**runtime, defaults=defaults)
        if runtime_spec.base_layer is not None and not runtime_spec.base_layer.is_absolute():
            runtime_spec = runtime_spec.model_copy(
                update={"base_layer": project_dir / runtime_spec.base_layer}
            )
        if not runtime_spec.ca_bundle.is_absolute():
            runtime_spec = runtime_spec.model_copy(
                update={"ca_bundle": project_dir / runtime_spec.ca_bundle}
            )

        kwargs: dict[str, Any] = {
            "project_dir": project_dir,
            "toolchain": ToolchainSpec(**toolchain),
            "runtime": runtime_spec,
        }
        for key, field in (
            ("name", "image_name"),
            ("manifest", "manifest_path"),
            ("lock", "lock_path"),
            ("source", "source_dir"),
        ):
            if key in project:
                kwargs[field] = project.pop(key)
        if project:
            raise ConfigError(f"Unknown [project] keys: {sorted(project)}")
        return PipelineConfig(**kwargs)
    except (TypeError, ValidationError) as exc:
        raise ConfigError(f"Invalid {PROJECT_FILE}: {exc}") from exc


def load_pipeline_config(project_dir: Path, config_file: Path | None = None) -> PipelineConfig:
    """Load the pipeline configuration for *project_dir*.

    Without a project file, Cargo defaults are used.
    """
    project_dir = Path(project_dir).resolve()
    path = config_file or project_dir / PROJECT_FILE
    if not path.exists():
        if config_file is not None:
            raise ConfigError(f"Config file not found: {config_file}")
        return PipelineConfig(project_dir=project_dir)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    return pipeline_config_from_dict(data, project_dir)
