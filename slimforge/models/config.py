"""Project-level pipeline configuration.

Loaded from ``slimforge.toml`` by :func:`slimforge.core.project.load_pipeline_config`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from slimforge.models.image import RuntimeDefaults

DEFAULT_CA_BUNDLE = Path("/etc/ssl/certs/ca-certificates.crt")


class ToolchainSpec(BaseModel):
    """How the external compiler is driven.

    ``stub_files`` are written into the dependency workspace in place of
    the real sources so the toolchain can fetch and compile dependencies
    without any application code.
    """

    model_config = ConfigDict(frozen=True)

    dependency_command: list[str] = ["cargo", "build", "--release"]
    application_command: list[str] = ["cargo", "build", "--release"]
    output_dir: str = "target"
    executable_path: str = ""  # defaults to target/release/<package name>
    stub_files: dict[str, str] = {"src/main.rs": "fn main() {}\n"}
    env: dict[str, str] = {}

    def resolve_executable_path(self, package_name: str) -> str:
        return self.executable_path or f"{self.output_dir}/release/{package_name}"

    def pin(self) -> dict[str, object]:
        """Fields that change what the dependency build produces."""
        return {
            "dependency_command": list(self.dependency_command),
            "output_dir": self.output_dir,
            "stub_files": dict(sorted(self.stub_files.items())),
            "env": dict(sorted(self.env.items())),
        }


class RuntimeSpec(BaseModel):
    """Runtime image assembly settings."""

    model_config = ConfigDict(frozen=True)

    base_layer: Path | None = None
    ca_bundle: Path = DEFAULT_CA_BUNDLE
    working_dir: str = "/app"
    defaults: RuntimeDefaults = RuntimeDefaults()


class PipelineConfig(BaseModel):
    """Everything needed to build one project into one image."""

    model_config = ConfigDict(frozen=True)

    project_dir: Path = Path(".")
    image_name: str = ""  # defaults to the manifest package name
    manifest_path: Path = Path("Cargo.toml")
    lock_path: Path = Path("Cargo.lock")
    source_dir: Path = Path("src")
    toolchain: ToolchainSpec = Field(default_factory=ToolchainSpec)
    runtime: RuntimeSpec = Field(default_factory=RuntimeSpec)

    def resolve(self, path: Path) -> Path:
        """Resolve *path* against the project directory."""
        return path if path.is_absolute() else self.project_dir / path
