"""Pipeline orchestrator: runs one build from manifest to runtime image.

Wires the dependency cache, artifact store, image store, build ledger and
the three phases together, and drives the linear state machine:

    idle -> building_dependencies -> building_application -> assembling -> complete

Any error moves the run to ``failed``, is recorded in the ledger and is
re-raised unchanged. A run either publishes exactly one image or
publishes nothing.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from slimforge.config import ForgeConfig
from slimforge.core.artifact_store import ContentAddressedStore
from slimforge.core.build_ledger import BuildLedger
from slimforge.core.dependency_cache import DependencyCacheStore
from slimforge.core.errors import AssemblyError, CompilationError
from slimforge.core.image_store import ImageStore
from slimforge.core.manifest import load_lockfile, load_manifest
from slimforge.core.state_machine import PipelineStateMachine
from slimforge.models.artifacts import DependencyCache, Executable, SourceTree
from slimforge.models.config import PipelineConfig
from slimforge.models.image import BaseLayer, RuntimeDefaults, RuntimeImage
from slimforge.models.ledger import LedgerEntry
from slimforge.models.manifest import Lockfile, Manifest
from slimforge.models.pipeline import BuildResult, PipelineState
from slimforge.phases.application import ApplicationBuilder, scan_source_tree
from slimforge.phases.assembly import RuntimeImageAssembler
from slimforge.phases.dependencies import DependencyLayerBuilder

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"sf-{ts}-{uuid.uuid4().hex[:6]}"


class Pipeline:
    """The build-and-package pipeline for one project.

    Parameters
    ----------
    config:
        Project configuration. Uses Cargo defaults if not provided.
    forge_config:
        Tool configuration (store locations, retention).
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        forge_config: ForgeConfig | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.forge_config = forge_config or ForgeConfig()

        self.cache = DependencyCacheStore(self.forge_config.resolved_cache_path)
        self.artifact_store = ContentAddressedStore(
            self.forge_config.resolved_artifact_store_path
        )
        self.image_store = ImageStore(self.forge_config.resolved_image_store_path)
        self.ledger = BuildLedger(self.forge_config.resolved_ledger_path)

        manifest_path = self.config.resolve(self.config.manifest_path)
        lock_path = self.config.resolve(self.config.lock_path)
        work_root = self.forge_config.resolved_work_path
        source_subdir = (
            self.config.source_dir.as_posix()
            if not self.config.source_dir.is_absolute()
            else "src"
        )

        self.dependency_builder = DependencyLayerBuilder(
            self.cache,
            self.config.toolchain,
            work_root,
            manifest_filename=manifest_path.name,
            lock_filename=lock_path.name,
            keep_entries=self.forge_config.cache_keep_entries,
            keep_workspaces=self.forge_config.keep_workspaces,
        )
        self.application_builder = ApplicationBuilder(
            self.cache,
            self.artifact_store,
            self.config.toolchain,
            work_root,
            manifest_path=manifest_path,
            lock_path=lock_path,
            source_subdir=source_subdir,
            keep_workspaces=self.forge_config.keep_workspaces,
        )
        self.assembler = RuntimeImageAssembler(
            self.artifact_store,
            ca_bundle=self.config.runtime.ca_bundle,
            working_dir=self.config.runtime.working_dir,
            image_name=self.config.image_name,
        )

    # ------------------------------------------------------------------
    # Phase contracts
    # ------------------------------------------------------------------

    def build_dependencies(self, manifest: Manifest, lock: Lockfile) -> DependencyCache:
        return self.dependency_builder.build_dependencies(manifest, lock)

    def build_application(
        self, dependency_cache: DependencyCache, source_tree: SourceTree
    ) -> Executable:
        return self.application_builder.build_application(dependency_cache, source_tree)

    def assemble_image(
        self,
        executable: Executable,
        base_layer: BaseLayer,
        config_defaults: RuntimeDefaults,
    ) -> RuntimeImage:
        return self.assembler.assemble_image(executable, base_layer, config_defaults)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def load_inputs(self) -> tuple[Manifest, Lockfile]:
        """Read the project's manifest and lockfile."""
        manifest = load_manifest(self.config.resolve(self.config.manifest_path))
        lock = load_lockfile(self.config.resolve(self.config.lock_path))
        return manifest, lock

    def base_layer(self) -> BaseLayer:
        path = self.config.runtime.base_layer
        if path is None:
            raise AssemblyError("No base layer configured ([runtime] base_layer)")
        return BaseLayer(path=path, name=Path(path).name.split(".")[0] or "base")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, run_id: str | None = None) -> BuildResult:
        """Execute one full build. Returns the published result.

        Raises the failing phase's error unchanged after recording it.
        """
        machine = PipelineStateMachine(self.ledger, run_id or new_run_id())
        logger.info("run %s: building %s", machine.run_id, self.config.project_dir)

        try:
            manifest, lock = self.load_inputs()
            machine.transition(
                PipelineState.BUILDING_DEPENDENCIES,
                input_hash=self.dependency_builder.cache_key(manifest, lock),
            )
            deps_outcome = self.dependency_builder.run_phase(manifest, lock)
            cache_entry: DependencyCache = deps_outcome.output

            source_tree = scan_source_tree(self.config.resolve(self.config.source_dir))
            machine.transition(
                PipelineState.BUILDING_APPLICATION,
                input_hash=source_tree.tree_hash,
                output_hash=deps_outcome.output_hash,
                detail="cache hit" if cache_entry.hit else "cache miss",
            )
            app_outcome = self.application_builder.run_phase(cache_entry, source_tree)
            executable: Executable = app_outcome.output

            base_layer = self.base_layer()
            defaults = self.config.runtime.defaults
            machine.transition(
                PipelineState.ASSEMBLING,
                input_hash=self.assembler.input_hash(executable, base_layer, defaults),
                output_hash=app_outcome.output_hash,
                artifact_references=app_outcome.artifact_references,
            )
            image_outcome = self.assembler.run_phase(executable, base_layer, defaults)
            image: RuntimeImage = image_outcome.output

            self.image_store.publish(image)
            machine.transition(
                PipelineState.COMPLETE,
                output_hash=image_outcome.output_hash,
                artifact_references=image_outcome.artifact_references,
            )
        except Exception as exc:
            machine.fail(_failure_detail(exc))
            logger.error("run %s failed: %s", machine.run_id, exc)
            raise

        logger.info("run %s complete: image %s", machine.run_id, image.short_id)
        return BuildResult(
            run_id=machine.run_id,
            dependency_cache=cache_entry,
            executable=executable,
            image=image,
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        return self.ledger.verify_chain(run_id)


def _failure_detail(exc: Exception) -> str:
    detail = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, CompilationError) and exc.diagnostics:
        detail = f"{detail}\n{exc.diagnostics}"
    return detail
