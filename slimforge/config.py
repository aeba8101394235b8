"""Environment-driven configuration.

``ForgeConfig`` holds the tool's own settings (state locations, cache
retention, logging) and reads ``SLIMFORGE_*`` variables or a ``.env``
file. ``RuntimeSettings`` is the launch contract of a runtime image:
``SERVER_HOST`` and ``SERVER_PORT``, read once at process start.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from slimforge.models.image import DEFAULT_BIND_HOST, DEFAULT_BIND_PORT


class ForgeConfig(BaseSettings):
    """Tool configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SLIMFORGE_LOG_LEVEL=DEBUG
        export SLIMFORGE_CACHE_KEEP_ENTRIES=10
        export SLIMFORGE_STATE_DIR=/var/cache/slimforge

    Unset store paths are placed under ``state_dir``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SLIMFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Storage paths
    state_dir: Path = Path(".slimforge")
    cache_path: Path | None = None
    artifact_store_path: Path | None = None
    image_store_path: Path | None = None
    ledger_path: Path | None = None
    work_path: Path | None = None

    # Dependency cache retention: keep this many most-recently-used
    # entries after each publish. 0 keeps everything.
    cache_keep_entries: int = Field(default=5, ge=0)

    # Keep scratch workspaces after a build (for debugging toolchain issues).
    keep_workspaces: bool = False

    @property
    def resolved_cache_path(self) -> Path:
        return self.cache_path or self.state_dir / "cache"

    @property
    def resolved_artifact_store_path(self) -> Path:
        return self.artifact_store_path or self.state_dir / "artifacts"

    @property
    def resolved_image_store_path(self) -> Path:
        return self.image_store_path or self.state_dir / "images"

    @property
    def resolved_ledger_path(self) -> Path:
        return self.ledger_path or self.state_dir / "ledger.db"

    @property
    def resolved_work_path(self) -> Path:
        return self.work_path or self.state_dir / "work"


class RuntimeSettings(BaseSettings):
    """Network binding configuration of a launched runtime image.

    Field ``server_host`` reads ``SERVER_HOST`` and ``server_port`` reads
    ``SERVER_PORT``.
    """

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=False)

    server_host: str = DEFAULT_BIND_HOST
    server_port: int = Field(default=DEFAULT_BIND_PORT, ge=1, le=65535)

    @property
    def bind_address(self) -> str:
        return f"{self.server_host}:{self.server_port}"
