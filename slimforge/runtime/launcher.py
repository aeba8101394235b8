"""Launching a runtime image as a single local process.

The image's environment defaults are layered under the launch
environment, so ``SERVER_HOST``/``SERVER_PORT`` set by the caller win.
The entry point is executed directly: no shell, no supervisor.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tarfile
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from slimforge.config import RuntimeSettings
from slimforge.core.artifact_store import ContentAddressedStore
from slimforge.core.layers import extract_layer
from slimforge.models.image import HOST_ENV_VAR, PORT_ENV_VAR, RuntimeImage

logger = logging.getLogger(__name__)


class LaunchError(RuntimeError):
    """Raised when an image cannot be materialized or started."""


def resolve_environment(
    image: RuntimeImage,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge image defaults < *environ* < *overrides*."""
    env = dict(image.config.env)
    env.update(os.environ if environ is None else environ)
    env.update(overrides or {})
    return env


def resolve_runtime_settings(
    image: RuntimeImage,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> RuntimeSettings:
    """Resolve the bind address a launched image would use."""
    env = resolve_environment(image, environ, overrides)
    values = {}
    if HOST_ENV_VAR in env:
        values["server_host"] = env[HOST_ENV_VAR]
    if PORT_ENV_VAR in env:
        values["server_port"] = env[PORT_ENV_VAR]
    try:
        return RuntimeSettings(**values)
    except ValidationError as exc:
        raise LaunchError(f"Invalid runtime configuration: {exc}") from exc


def materialize_rootfs(
    image: RuntimeImage, artifact_store: ContentAddressedStore, destination: Path
) -> Path:
    """Unpack every layer of *image*, bottom-up, into *destination*."""
    destination = Path(destination)
    for layer in image.layers:
        try:
            extract_layer(artifact_store.retrieve(layer.content_address), destination)
        except (FileNotFoundError, tarfile.TarError) as exc:
            raise LaunchError(f"Cannot unpack layer {layer.name}: {exc}") from exc
    return destination


def launch(
    image: RuntimeImage,
    artifact_store: ContentAddressedStore,
    rootfs: Path,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> int:
    """Unpack *image* into *rootfs* and run its entry point to completion.

    Returns the process exit code.
    """
    if not image.config.entrypoint:
        raise LaunchError(f"Image {image.short_id} declares no entry point")

    settings = resolve_runtime_settings(image, environ, overrides)
    env = resolve_environment(image, environ, overrides)
    materialize_rootfs(image, artifact_store, rootfs)

    entry, *args = image.config.entrypoint
    program = Path(rootfs) / entry.lstrip("/")
    workdir = Path(rootfs) / image.config.working_dir.lstrip("/")
    if not program.is_file():
        raise LaunchError(f"Entry point {entry} missing from image {image.short_id}")

    logger.info("launching %s bound to %s", entry, settings.bind_address)
    try:
        proc = subprocess.run([str(program), *args], cwd=str(workdir), env=env, check=False)
    except OSError as exc:
        raise LaunchError(f"Cannot start {entry}: {exc}") from exc
    return proc.returncode
