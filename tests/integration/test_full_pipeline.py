"""Integration tests: full builds from manifest to published runtime image.

Every test drives ``Pipeline.run()`` against a real project directory
and the fake toolchain, then inspects the stores and the ledger.
"""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from slimforge.core.errors import CompilationError, ManifestError
from slimforge.core.layers import find_toolchain_files, layer_members
from slimforge.core.orchestrator import Pipeline
from slimforge.models.pipeline import PipelineState
from slimforge.runtime.launcher import resolve_runtime_settings

EDITED_MAIN_RS = """\
fn main() {
    println!("hello, world");
}
"""


def _transitions(pipeline: Pipeline, run_id: str) -> list[str]:
    return [e.state_transition for e in pipeline.get_run_entries(run_id)]


class TestFullPipeline:
    def test_successful_build(self, pipeline: Pipeline):
        result = pipeline.run("sf-first")

        assert result.cache_hit is False
        assert pipeline.image_store.count() == 1
        assert pipeline.image_store.get(result.image.image_id) == result.image
        assert _transitions(pipeline, "sf-first") == [
            "idle->building_dependencies",
            "building_dependencies->building_application",
            "building_application->assembling",
            "assembling->complete",
        ]
        assert pipeline.verify_chain("sf-first")

    def test_image_holds_one_executable_and_no_toolchain(self, pipeline: Pipeline):
        image = pipeline.run().image
        members: list[str] = []
        executables: list[str] = []
        for layer in image.layers:
            blob = pipeline.artifact_store.retrieve(layer.content_address)
            members.extend(layer_members(blob))
            with tarfile.open(fileobj=io.BytesIO(blob)) as tar:
                executables.extend(
                    m.name for m in tar.getmembers() if m.isfile() and m.mode & 0o111
                )
        assert executables == ["app/backend"]
        assert find_toolchain_files(members) == []
        assert "etc/ssl/certs/ca-certificates.crt" in members
        assert not any(m.startswith(("target", "src")) for m in members)

    def test_default_binding(self, pipeline: Pipeline):
        image = pipeline.run().image
        settings = resolve_runtime_settings(image, environ={})
        assert settings.bind_address == "0.0.0.0:10000"
        assert image.config.exposed_ports == ["10000/tcp"]

    def test_ledger_records_cache_status(self, pipeline: Pipeline):
        pipeline.run("sf-cold")
        pipeline.run("sf-warm")
        cold = pipeline.get_run_entries("sf-cold")[1]
        warm = pipeline.get_run_entries("sf-warm")[1]
        assert cold.detail == "cache miss"
        assert warm.detail == "cache hit"
        assert cold.output_hash == warm.output_hash


class TestIncrementalBuilds:
    def test_source_edit_reuses_dependency_cache(
        self, pipeline: Pipeline, project_dir: Path, toolchain_calls
    ):
        first = pipeline.run("sf-b1")
        (project_dir / "src" / "main.rs").write_text(EDITED_MAIN_RS)
        second = pipeline.run("sf-b2")

        assert second.cache_hit is True
        assert second.dependency_cache.key == first.dependency_cache.key
        assert second.image.dependency_cache_key == first.image.dependency_cache_key
        assert second.executable.content_address != first.executable.content_address
        assert second.image.image_id != first.image.image_id
        assert toolchain_calls() == ["deps", "app", "app"]
        assert pipeline.image_store.count() == 2

    def test_unchanged_rebuild_is_reproducible(self, pipeline: Pipeline):
        first = pipeline.run()
        second = pipeline.run()
        assert second.executable.content_address == first.executable.content_address
        assert second.image.image_id == first.image.image_id
        assert pipeline.image_store.count() == 1

    def test_manifest_change_rebuilds_dependencies(
        self, pipeline: Pipeline, project_dir: Path, toolchain_calls
    ):
        first = pipeline.run()
        manifest_path = project_dir / "Cargo.toml"
        manifest_path.write_text(manifest_path.read_text().replace('tokio = "1"', 'tokio = "1.40"'))
        second = pipeline.run()

        assert second.cache_hit is False
        assert second.dependency_cache.key != first.dependency_cache.key
        assert toolchain_calls() == ["deps", "app", "deps", "app"]
        assert len(pipeline.cache.list_entries()) == 2

    def test_lock_change_rebuilds_dependencies(
        self, pipeline: Pipeline, project_dir: Path, toolchain_calls
    ):
        first = pipeline.run()
        lock_path = project_dir / "Cargo.lock"
        lock_path.write_text(lock_path.read_text().replace("1.40.0", "1.41.0"))
        second = pipeline.run()
        assert second.dependency_cache.key != first.dependency_cache.key
        assert toolchain_calls().count("deps") == 2

    def test_retention_keeps_most_recent_entries(
        self, pipeline_config, forge_config, project_dir: Path
    ):
        pipeline = Pipeline(
            pipeline_config, forge_config=forge_config.model_copy(update={"cache_keep_entries": 2})
        )
        lock_path = project_dir / "Cargo.lock"
        original = lock_path.read_text()
        keys = []
        for patch in ("1.40.0", "1.40.1", "1.40.2"):
            lock_path.write_text(original.replace("1.40.0", patch))
            keys.append(pipeline.run().dependency_cache.key)
        remaining = {entry.key for entry in pipeline.cache.list_entries()}
        assert remaining == set(keys[1:])


class TestFailures:
    def test_compile_failure_publishes_no_image(
        self, pipeline: Pipeline, project_dir: Path
    ):
        first = pipeline.run("sf-good")
        (project_dir / "src" / "main.rs").write_text('fn main() {\n    compile_error!("x");\n}\n')

        with pytest.raises(CompilationError) as excinfo:
            pipeline.run("sf-bad")

        assert "error[E0425]" in excinfo.value.diagnostics
        assert pipeline.image_store.count() == 1
        entry = pipeline.cache.lookup(first.dependency_cache.key)
        assert entry is not None
        assert (entry.path / "release" / "deps" / "libserde-1.0.210.rlib").exists()

        latest = pipeline.ledger.get_latest("sf-bad")
        assert latest is not None
        assert latest.state_transition == "building_application->failed"
        assert "error[E0425]" in latest.detail
        assert pipeline.verify_chain("sf-bad")

    def test_compile_failure_on_cold_cache_keeps_dependencies(
        self, pipeline: Pipeline, project_dir: Path
    ):
        (project_dir / "src" / "main.rs").write_text('fn main() {\n    compile_error!("x");\n}\n')
        with pytest.raises(CompilationError):
            pipeline.run()
        assert len(pipeline.cache.list_entries()) == 1
        assert pipeline.image_store.count() == 0

    def test_inconsistent_manifest_fails_before_compiling(
        self, pipeline: Pipeline, project_dir: Path, toolchain_calls
    ):
        manifest_path = project_dir / "Cargo.toml"
        manifest_path.write_text(manifest_path.read_text() + 'anyhow = "1"\n')
        with pytest.raises(ManifestError):
            pipeline.run("sf-inconsistent")
        assert toolchain_calls() == []
        latest = pipeline.ledger.get_latest("sf-inconsistent")
        assert latest is not None
        assert latest.to_state == PipelineState.FAILED.value
        assert latest.phase == "dependencies"

    def test_unreadable_manifest_fails_from_idle(self, pipeline: Pipeline, project_dir: Path):
        (project_dir / "Cargo.toml").unlink()
        with pytest.raises(ManifestError):
            pipeline.run("sf-missing")
        assert _transitions(pipeline, "sf-missing") == ["idle->failed"]

    def test_recovery_is_a_new_run(self, pipeline: Pipeline, project_dir: Path):
        main_rs = project_dir / "src" / "main.rs"
        good = main_rs.read_text()
        main_rs.write_text('fn main() {\n    compile_error!("x");\n}\n')
        with pytest.raises(CompilationError):
            pipeline.run("sf-r1")
        main_rs.write_text(good)
        result = pipeline.run("sf-r2")
        assert result.cache_hit is True
        assert pipeline.ledger.get_latest("sf-r1").to_state == "failed"
        assert pipeline.ledger.get_latest("sf-r2").to_state == "complete"
