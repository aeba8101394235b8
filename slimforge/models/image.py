"""Runtime image models (immutable once assembled)."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from slimforge.models.artifacts import ArtifactRef

HOST_ENV_VAR = "SERVER_HOST"
PORT_ENV_VAR = "SERVER_PORT"

DEFAULT_BIND_HOST = "0.0.0.0"
DEFAULT_BIND_PORT = 10000


class RuntimeDefaults(BaseModel):
    """Network binding defaults baked into the image environment.

    These are defaults only; the launch environment may override either.
    """

    model_config = ConfigDict(frozen=True)

    bind_host: str = DEFAULT_BIND_HOST
    bind_port: int = Field(default=DEFAULT_BIND_PORT, ge=1, le=65535)

    def as_env(self) -> dict[str, str]:
        return {
            HOST_ENV_VAR: self.bind_host,
            PORT_ENV_VAR: str(self.bind_port),
        }


class BaseLayer(BaseModel):
    """A minimal root filesystem, given as a directory or a tar archive."""

    model_config = ConfigDict(frozen=True)

    path: Path
    name: str = "base"


class ImageConfig(BaseModel):
    """Process configuration of a runtime image."""

    model_config = ConfigDict(frozen=True)

    env: dict[str, str] = {}
    exposed_ports: list[str] = []  # e.g. ["10000/tcp"]
    entrypoint: list[str] = []
    working_dir: str = "/app"


class RuntimeImage(BaseModel):
    """The final deployable artifact.

    ``layers`` is ordered bottom-up: the base layer first, then the
    application layer holding the executable and the CA bundle.
    """

    model_config = ConfigDict(frozen=True)

    image_id: str  # "sha256:<hex>" of the canonical image manifest
    name: str
    config: ImageConfig
    layers: list[ArtifactRef]
    executable: ArtifactRef
    dependency_cache_key: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def short_id(self) -> str:
        return self.image_id.removeprefix("sha256:")[:12]
