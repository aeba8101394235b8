"""Phase 3: Runtime Image Assembler.

Builds the deployable image from exactly three things: a minimal base
layer, the compiled executable and the CA bundle. Nothing else from the
build workspace crosses into the image.

The image is described by a canonical manifest whose SHA-256 is the
image id; the creation timestamp is not part of it, so the same inputs
always yield the same id.
"""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path, PurePosixPath

from slimforge.core.artifact_store import ContentAddressedStore
from slimforge.core.errors import AssemblyError
from slimforge.core.hasher import content_address, sha256_file, sha256_hex
from slimforge.core.layers import (
    LayerFile,
    build_layer,
    find_toolchain_files,
    layer_from_directory,
    layer_members,
)
from slimforge.models.artifacts import Executable
from slimforge.models.image import BaseLayer, ImageConfig, RuntimeDefaults, RuntimeImage
from slimforge.phases.base import BasePhase

logger = logging.getLogger(__name__)

CA_BUNDLE_PATH = "/etc/ssl/certs/ca-certificates.crt"
IMAGE_SCHEMA_VERSION = 1


class RuntimeImageAssembler(BasePhase):
    """Phase 3: assemble the runtime image.

    Parameters
    ----------
    artifact_store:
        Holds the executable and receives the image layers.
    ca_bundle:
        Host path of the root CA bundle to install.
    working_dir:
        Directory inside the image holding the executable.
    image_name:
        Human-readable name recorded on the image.
    """

    def __init__(
        self,
        artifact_store: ContentAddressedStore,
        *,
        ca_bundle: Path,
        working_dir: str = "/app",
        image_name: str = "",
    ) -> None:
        self._artifacts = artifact_store
        self._ca_bundle = Path(ca_bundle)
        self._working_dir = str(PurePosixPath("/", working_dir))
        self._image_name = image_name

    @property
    def phase_id(self) -> str:
        return "assembly"

    @property
    def display_name(self) -> str:
        return "Runtime Image Assembler"

    def input_hash(
        self, executable: Executable, base_layer: BaseLayer, config_defaults: RuntimeDefaults
    ) -> str:
        return content_address(
            {
                "executable": executable.content_address,
                "base_layer": _base_layer_digest(base_layer),
                "defaults": config_defaults.model_dump(mode="json"),
            }
        ).removeprefix("sha256:")

    def output_hash(self, output: RuntimeImage) -> str:
        return output.image_id.removeprefix("sha256:")

    def artifact_references(self, output: RuntimeImage) -> list[str]:
        return [layer.content_address for layer in output.layers]

    def assemble_image(
        self,
        executable: Executable,
        base_layer: BaseLayer,
        config_defaults: RuntimeDefaults,
    ) -> RuntimeImage:
        """Assemble the runtime image for *executable*."""
        return self.run_phase(executable, base_layer, config_defaults).output

    def execute(
        self,
        executable: Executable,
        base_layer: BaseLayer,
        config_defaults: RuntimeDefaults,
    ) -> RuntimeImage:
        base_bytes = self._load_base_layer(base_layer)
        trust_bundle = self._load_trust_bundle()
        exe_bytes = self._load_executable(executable)

        exe_path = f"{self._working_dir.rstrip('/')}/{executable.name}"
        app_layer = build_layer(
            [
                LayerFile(path=exe_path, data=exe_bytes, mode=0o755),
                LayerFile(path=CA_BUNDLE_PATH, data=trust_bundle, mode=0o644),
            ]
        )

        base_artifact = self._artifacts.store(
            base_bytes, name=f"{base_layer.name}.tar", artifact_type="layer"
        )
        app_artifact = self._artifacts.store(
            app_layer, name="app.tar", artifact_type="layer"
        )

        config = ImageConfig(
            env=config_defaults.as_env(),
            exposed_ports=[f"{config_defaults.bind_port}/tcp"],
            entrypoint=[exe_path],
            working_dir=self._working_dir,
        )
        layers = [base_artifact.to_ref(), app_artifact.to_ref()]
        manifest = {
            "schema_version": IMAGE_SCHEMA_VERSION,
            "config": config.model_dump(mode="json"),
            "layers": [layer.content_address for layer in layers],
            "executable": executable.content_address,
        }
        image = RuntimeImage(
            image_id=content_address(manifest),
            name=self._image_name or executable.name,
            config=config,
            layers=layers,
            executable=self._artifacts.make_ref(
                executable.content_address, name=executable.name, artifact_type="executable"
            ),
            dependency_cache_key=executable.dependency_cache_key,
        )
        logger.info(
            "assembled image %s: %d layers, entrypoint %s, port %s",
            image.short_id,
            len(layers),
            exe_path,
            config.exposed_ports[0],
        )
        return image

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def _load_base_layer(self, base_layer: BaseLayer) -> bytes:
        path = Path(base_layer.path)
        try:
            if path.is_dir():
                data = layer_from_directory(path)
            elif path.is_file():
                data = path.read_bytes()
            else:
                raise AssemblyError(f"Base layer not found: {path}")
            members = layer_members(data)
        except (OSError, tarfile.TarError) as exc:
            raise AssemblyError(f"Base layer {path} is unreadable: {exc}") from exc

        toolchain = find_toolchain_files(members)
        if toolchain:
            shown = ", ".join(toolchain[:5])
            more = f" (+{len(toolchain) - 5} more)" if len(toolchain) > 5 else ""
            raise AssemblyError(
                f"Base layer {path} contains build toolchain files: {shown}{more}"
            )
        return data

    def _load_trust_bundle(self) -> bytes:
        try:
            data = self._ca_bundle.read_bytes()
        except OSError as exc:
            raise AssemblyError(
                f"Cannot install CA bundle from {self._ca_bundle}: {exc}"
            ) from exc
        if b"BEGIN CERTIFICATE" not in data:
            raise AssemblyError(f"CA bundle {self._ca_bundle} contains no certificates")
        return data

    def _load_executable(self, executable: Executable) -> bytes:
        try:
            data = self._artifacts.retrieve(executable.content_address)
        except FileNotFoundError as exc:
            raise AssemblyError(str(exc)) from exc
        if sha256_hex(data) != executable.digest:
            raise AssemblyError(
                f"Executable {executable.name} does not match {executable.content_address}"
            )
        return data


def _base_layer_digest(base_layer: BaseLayer) -> str:
    """SHA-256 of the layer blob *base_layer* turns into, or "" if it is absent.

    A directory is digested as the deterministic tar it is archived to, so
    the digest equals the stored base layer blob's.
    """
    path = Path(base_layer.path)
    if path.is_dir():
        return sha256_hex(layer_from_directory(path))
    if path.is_file():
        return sha256_file(path)
    return ""
