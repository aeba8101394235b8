"""Phase 1: Dependency-Layer Builder.

Compiles the declared dependencies with no application source present
and publishes the toolchain's output tree as a content-addressed cache
entry. The key covers only the manifest bytes, the lock bytes and the
toolchain pin, so source edits never invalidate it.

On a hit the toolchain is not invoked at all.
"""

from __future__ import annotations

import logging
from pathlib import Path

from slimforge.core.dependency_cache import DependencyCacheStore
from slimforge.core.errors import CompilationError
from slimforge.core.hasher import compute_cache_key
from slimforge.core.manifest import check_consistency
from slimforge.core.toolchain import run_toolchain
from slimforge.models.artifacts import DependencyCache
from slimforge.models.config import ToolchainSpec
from slimforge.models.manifest import Lockfile, Manifest
from slimforge.phases.base import BasePhase, scratch_workspace

logger = logging.getLogger(__name__)


class DependencyLayerBuilder(BasePhase):
    """Phase 1: build (or reuse) the compiled dependency cache.

    Parameters
    ----------
    cache:
        The dependency cache store.
    toolchain:
        How to invoke the compiler.
    work_root:
        Directory under which scratch workspaces are created.
    manifest_filename, lock_filename:
        File names the toolchain expects in the workspace root.
    keep_entries:
        Retention applied after each publish; 0 disables pruning.
    """

    def __init__(
        self,
        cache: DependencyCacheStore,
        toolchain: ToolchainSpec,
        work_root: Path,
        *,
        manifest_filename: str = "Cargo.toml",
        lock_filename: str = "Cargo.lock",
        keep_entries: int = 5,
        keep_workspaces: bool = False,
    ) -> None:
        self._cache = cache
        self._toolchain = toolchain
        self._work_root = Path(work_root)
        self._manifest_filename = manifest_filename
        self._lock_filename = lock_filename
        self._keep_entries = keep_entries
        self._keep_workspaces = keep_workspaces

    @property
    def phase_id(self) -> str:
        return "dependencies"

    @property
    def display_name(self) -> str:
        return "Dependency-Layer Builder"

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def cache_key(self, manifest: Manifest, lock: Lockfile) -> str:
        """Deterministic cache key for a manifest/lock pair."""
        return compute_cache_key(manifest.raw, lock.raw, self._toolchain.pin())

    def input_hash(self, manifest: Manifest, lock: Lockfile) -> str:
        return self.cache_key(manifest, lock)

    def output_hash(self, output: DependencyCache) -> str:
        return output.key

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def build_dependencies(self, manifest: Manifest, lock: Lockfile) -> DependencyCache:
        """Return a warm dependency cache for *manifest* and *lock*."""
        return self.run_phase(manifest, lock).output

    def execute(self, manifest: Manifest, lock: Lockfile) -> DependencyCache:
        check_consistency(manifest, lock)
        key = self.cache_key(manifest, lock)

        cached = self._cache.lookup(key)
        if cached is not None:
            logger.info("dependency cache hit %s (%s)", key[:12], manifest.package_name)
            return cached

        logger.info("dependency cache miss %s, compiling dependencies", key[:12])
        with scratch_workspace(
            self._work_root, "deps", keep=self._keep_workspaces
        ) as workspace:
            self._stage_inputs(workspace, manifest, lock)
            run_toolchain(
                self._toolchain.dependency_command,
                cwd=workspace,
                phase=self.phase_id,
                env=self._toolchain.env,
            )
            self._remove_stubs(workspace)

            output_tree = workspace / self._toolchain.output_dir
            if not output_tree.is_dir():
                raise CompilationError(
                    f"Dependency build produced no {self._toolchain.output_dir}/ directory",
                    phase=self.phase_id,
                    command=self._toolchain.dependency_command,
                )
            entry = self._cache.publish(
                key,
                output_tree,
                package_name=manifest.package_name,
                manifest_hash=manifest.content_hash,
                lock_hash=lock.content_hash,
                locked_package_count=len(lock.packages),
            )

        if self._keep_entries:
            self._cache.prune(self._keep_entries, protect={key})
        return entry

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _stage_inputs(self, workspace: Path, manifest: Manifest, lock: Lockfile) -> None:
        (workspace / self._manifest_filename).write_bytes(manifest.raw)
        (workspace / self._lock_filename).write_bytes(lock.raw)
        for rel_path, content in sorted(self._toolchain.stub_files.items()):
            stub = workspace / rel_path
            stub.parent.mkdir(parents=True, exist_ok=True)
            stub.write_text(content, encoding="utf-8")

    def _remove_stubs(self, workspace: Path) -> None:
        for rel_path in self._toolchain.stub_files:
            (workspace / rel_path).unlink(missing_ok=True)
