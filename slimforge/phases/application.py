"""Phase 2: Application Builder.

Always runs. A fresh workspace receives a copy of the cached dependency
output, the manifest and lock, and the full source tree; the toolchain
then compiles only the application on top of the warm dependencies.
The cache entry itself is only ever read.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from slimforge.core.artifact_store import ContentAddressedStore
from slimforge.core.dependency_cache import DependencyCacheStore
from slimforge.core.errors import CompilationError
from slimforge.core.hasher import compute_tree_hash, sha256_file
from slimforge.core.toolchain import run_toolchain
from slimforge.models.artifacts import DependencyCache, Executable, SourceTree
from slimforge.models.config import ToolchainSpec
from slimforge.phases.base import BasePhase, scratch_workspace

logger = logging.getLogger(__name__)


def scan_source_tree(root: Path) -> SourceTree:
    """Fingerprint the application sources under *root*."""
    root = Path(root)
    if not root.is_dir():
        raise CompilationError(f"Source tree not found: {root}", phase="application")
    tree_hash, count = compute_tree_hash(root)
    if count == 0:
        raise CompilationError(f"Source tree is empty: {root}", phase="application")
    return SourceTree(root=root, tree_hash=tree_hash, file_count=count)


class ApplicationBuilder(BasePhase):
    """Phase 2: compile the application against a warm dependency cache.

    Parameters
    ----------
    cache:
        The dependency cache store the entry must come from.
    artifact_store:
        Where the finished executable is stored.
    toolchain:
        How to invoke the compiler.
    work_root:
        Directory under which scratch workspaces are created.
    manifest_path, lock_path:
        The project's manifest and lock; copied into the workspace and
        checked against the cache entry so a stale entry is never used.
    source_subdir:
        Where the source tree lands inside the workspace.
    """

    def __init__(
        self,
        cache: DependencyCacheStore,
        artifact_store: ContentAddressedStore,
        toolchain: ToolchainSpec,
        work_root: Path,
        *,
        manifest_path: Path,
        lock_path: Path,
        source_subdir: str = "src",
        keep_workspaces: bool = False,
    ) -> None:
        self._cache = cache
        self._artifacts = artifact_store
        self._toolchain = toolchain
        self._work_root = Path(work_root)
        self._manifest_path = Path(manifest_path)
        self._lock_path = Path(lock_path)
        self._source_subdir = source_subdir
        self._keep_workspaces = keep_workspaces

    @property
    def phase_id(self) -> str:
        return "application"

    @property
    def display_name(self) -> str:
        return "Application Builder"

    def input_hash(self, dependency_cache: DependencyCache, source_tree: SourceTree) -> str:
        return source_tree.tree_hash

    def output_hash(self, output: Executable) -> str:
        return output.digest

    def artifact_references(self, output: Executable) -> list[str]:
        return [output.content_address]

    def build_application(
        self, dependency_cache: DependencyCache, source_tree: SourceTree
    ) -> Executable:
        """Compile *source_tree* into the single executable."""
        return self.run_phase(dependency_cache, source_tree).output

    def execute(self, dependency_cache: DependencyCache, source_tree: SourceTree) -> Executable:
        self._ensure_fresh(dependency_cache)

        with scratch_workspace(
            self._work_root, "app", keep=self._keep_workspaces
        ) as workspace:
            shutil.copytree(
                dependency_cache.path,
                workspace / self._toolchain.output_dir,
                symlinks=True,
            )
            shutil.copy2(self._manifest_path, workspace / self._manifest_path.name)
            shutil.copy2(self._lock_path, workspace / self._lock_path.name)
            source_dest = workspace / self._source_subdir
            shutil.copytree(source_tree.root, source_dest)
            self._mark_sources_newer(source_dest)

            run_toolchain(
                self._toolchain.application_command,
                cwd=workspace,
                phase=self.phase_id,
                env=self._toolchain.env,
            )

            rel_exe = self._toolchain.resolve_executable_path(dependency_cache.package_name)
            exe_path = workspace / rel_exe
            if not exe_path.is_file():
                raise CompilationError(
                    f"Application build produced no executable at {rel_exe}",
                    phase=self.phase_id,
                    command=self._toolchain.application_command,
                )
            artifact = self._artifacts.store_file(
                exe_path,
                artifact_type="executable",
                metadata={"source_hash": source_tree.tree_hash},
            )

        logger.info(
            "built executable %s (%d bytes) from %d source files",
            artifact.name,
            artifact.size_bytes,
            source_tree.file_count,
        )
        return Executable(
            name=artifact.name,
            content_address=artifact.content_address,
            size_bytes=artifact.size_bytes,
            source_hash=source_tree.tree_hash,
            dependency_cache_key=dependency_cache.key,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_fresh(self, dependency_cache: DependencyCache) -> None:
        """Reject cache entries that are unpublished or built from other inputs."""
        if not self._cache.contains(dependency_cache.key) or not dependency_cache.path.is_dir():
            raise CompilationError(
                f"Dependency cache {dependency_cache.key[:12]} is not published",
                phase=self.phase_id,
            )
        if (
            sha256_file(self._manifest_path) != dependency_cache.manifest_hash
            or sha256_file(self._lock_path) != dependency_cache.lock_hash
        ):
            raise CompilationError(
                f"Dependency cache {dependency_cache.key[:12]} is stale: manifest or "
                f"lock changed since it was built",
                phase=self.phase_id,
            )

    @staticmethod
    def _mark_sources_newer(root: Path) -> None:
        # Sources must be newer than the cached stub-build artifacts.
        for path in root.rglob("*"):
            if path.is_file():
                os.utime(path, None)
