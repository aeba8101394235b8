"""Unit tests for the BuildRenderer."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from slimforge.core.errors import CompilationError, ManifestError
from slimforge.models.artifacts import ArtifactRef, DependencyCache
from slimforge.models.image import ImageConfig, RuntimeImage
from slimforge.models.ledger import LedgerEntry
from slimforge.monitor.renderer import BuildRenderer, _human_size


def _console() -> Console:
    return Console(record=True, width=160, color_system=None)


def _render(renderable) -> str:
    console = _console()
    console.print(renderable)
    return console.export_text()


def _image() -> RuntimeImage:
    exe = ArtifactRef(name="backend", content_address="sha256:" + "e" * 64, size_bytes=2048)
    return RuntimeImage(
        image_id="sha256:" + "a" * 64,
        name="backend",
        config=ImageConfig(
            env={"SERVER_HOST": "0.0.0.0", "SERVER_PORT": "10000"},
            exposed_ports=["10000/tcp"],
            entrypoint=["/app/backend"],
        ),
        layers=[
            ArtifactRef(name="rootfs.tar", content_address="sha256:" + "b" * 64, size_bytes=4096),
            exe,
        ],
        executable=exe,
        dependency_cache_key="c" * 64,
    )


class TestBuildRenderer:
    def test_render_image(self):
        panel = BuildRenderer(_console()).render_image(_image())
        assert isinstance(panel, Panel)
        text = _render(panel)
        assert "/app/backend" in text
        assert "SERVER_PORT" in text
        assert "rootfs.tar" in text
        assert "aaaaaaaaaaaa" in text

    def test_render_images(self):
        table = BuildRenderer(_console()).render_images([_image()])
        assert isinstance(table, Table)
        assert table.row_count == 1

    def test_render_cache(self):
        entry = DependencyCache(
            key="d" * 64,
            path=Path("/cache/entries/d/output"),
            package_name="backend",
            manifest_hash="m" * 64,
            lock_hash="l" * 64,
            locked_package_count=42,
        )
        table = BuildRenderer(_console()).render_cache([entry], {entry.key: 0.0})
        text = _render(table)
        assert "dddddddddddd" in text
        assert "42" in text

    def test_render_history(self):
        entries = [
            LedgerEntry(
                run_id="sf-1",
                phase="dependencies",
                state_transition="idle->building_dependencies",
                pipeline_version="0.1.0",
                timestamp_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
            ),
            LedgerEntry(
                run_id="sf-1",
                phase="dependencies",
                state_transition="building_dependencies->failed",
                pipeline_version="0.1.0",
                detail="ManifestError: bad lock\nsecond line",
            ),
        ]
        text = _render(BuildRenderer(_console()).render_history("sf-1", entries))
        assert "building_dependencies->failed" in text
        assert "ManifestError: bad lock" in text
        assert "second line" not in text

    def test_print_failure_keeps_diagnostics_verbatim(self):
        console = _console()
        err = CompilationError(
            "application build failed with exit code 101",
            phase="application",
            returncode=101,
            diagnostics="error[E0425]: cannot find value `x` in this scope\n",
        )
        BuildRenderer(console).print_failure(err)
        text = console.export_text()
        assert "CompilationError in application phase" in text
        assert "error[E0425]: cannot find value `x` in this scope" in text

    def test_print_failure_without_diagnostics(self):
        console = _console()
        BuildRenderer(console).print_failure(ManifestError("serde is not in the lockfile"))
        text = console.export_text()
        assert "ManifestError in dependencies phase" in text
        assert "serde is not in the lockfile" in text

    def test_chain_verification(self):
        console = _console()
        renderer = BuildRenderer(console)
        renderer.print_chain_verification("sf-1", True)
        renderer.print_chain_verification("sf-2", False)
        text = console.export_text()
        assert "valid" in text
        assert "BROKEN" in text

    def test_human_size(self):
        assert _human_size(512) == "512 B"
        assert _human_size(2048) == "2.0 KiB"
        assert _human_size(3 * 1024 * 1024) == "3.0 MiB"
