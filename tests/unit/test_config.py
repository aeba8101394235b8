"""Tests for ForgeConfig, RuntimeSettings and slimforge.toml loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from slimforge.config import ForgeConfig, RuntimeSettings
from slimforge.core.errors import ConfigError
from slimforge.core.project import load_pipeline_config, pipeline_config_from_dict


class TestForgeConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("SLIMFORGE_STATE_DIR", raising=False)
        monkeypatch.delenv("SLIMFORGE_CACHE_KEEP_ENTRIES", raising=False)
        config = ForgeConfig(_env_file=None)
        assert config.state_dir == Path(".slimforge")
        assert config.cache_keep_entries == 5
        assert config.resolved_cache_path == Path(".slimforge/cache")
        assert config.resolved_ledger_path == Path(".slimforge/ledger.db")

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_dir: Path):
        monkeypatch.setenv("SLIMFORGE_STATE_DIR", str(tmp_dir))
        monkeypatch.setenv("SLIMFORGE_CACHE_KEEP_ENTRIES", "10")
        monkeypatch.setenv("SLIMFORGE_LOG_LEVEL", "DEBUG")
        config = ForgeConfig(_env_file=None)
        assert config.resolved_artifact_store_path == tmp_dir / "artifacts"
        assert config.cache_keep_entries == 10
        assert config.log_level == "DEBUG"

    def test_explicit_store_path_wins(self, tmp_dir: Path):
        config = ForgeConfig(_env_file=None, state_dir=tmp_dir, cache_path=tmp_dir / "shared")
        assert config.resolved_cache_path == tmp_dir / "shared"

    def test_negative_retention_rejected(self):
        with pytest.raises(ValueError):
            ForgeConfig(_env_file=None, cache_keep_entries=-1)

    def test_unknown_settings_ignored(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SLIMFORGE_ENVIRONMENT", "production")
        config = ForgeConfig(_env_file=None)
        assert "environment" not in ForgeConfig.model_fields
        assert not hasattr(config, "environment")


class TestRuntimeSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("SERVER_HOST", raising=False)
        monkeypatch.delenv("SERVER_PORT", raising=False)
        settings = RuntimeSettings()
        assert settings.server_host == "0.0.0.0"
        assert settings.server_port == 10000
        assert settings.bind_address == "0.0.0.0:10000"

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SERVER_HOST", "127.0.0.1")
        monkeypatch.setenv("SERVER_PORT", "8080")
        assert RuntimeSettings().bind_address == "127.0.0.1:8080"

    @pytest.mark.parametrize("port", ["0", "65536", "http"])
    def test_invalid_port(self, monkeypatch: pytest.MonkeyPatch, port: str):
        monkeypatch.setenv("SERVER_PORT", port)
        with pytest.raises(ValueError):
            RuntimeSettings()


class TestProjectFile:
    def test_defaults_without_project_file(self, tmp_dir: Path):
        config = load_pipeline_config(tmp_dir)
        assert config.project_dir == tmp_dir.resolve()
        assert config.toolchain.dependency_command == ["cargo", "build", "--release"]
        assert config.toolchain.stub_files == {"src/main.rs": "fn main() {}\n"}
        assert config.toolchain.resolve_executable_path("backend") == "target/release/backend"
        assert config.runtime.defaults.bind_host == "0.0.0.0"
        assert config.runtime.defaults.bind_port == 10000
        assert config.runtime.base_layer is None

    def test_loads_project_file(self, project_dir: Path, base_layer_dir: Path):
        config = load_pipeline_config(project_dir)
        assert config.toolchain.dependency_command[-2] == "deps"
        assert config.toolchain.application_command[-2] == "app"
        assert config.runtime.base_layer == base_layer_dir
        assert config.resolve(config.manifest_path) == project_dir.resolve() / "Cargo.toml"

    def test_relative_runtime_paths_resolve_against_project(self, tmp_dir: Path):
        config = pipeline_config_from_dict(
            {"runtime": {"base_layer": "rootfs.tar", "ca_bundle": "certs/ca.crt"}}, tmp_dir
        )
        assert config.runtime.base_layer == tmp_dir / "rootfs.tar"
        assert config.runtime.ca_bundle == tmp_dir / "certs" / "ca.crt"

    def test_runtime_bind_defaults(self, tmp_dir: Path):
        config = pipeline_config_from_dict(
            {"runtime": {"bind_host": "127.0.0.1", "bind_port": 8080}}, tmp_dir
        )
        assert config.runtime.defaults.as_env() == {
            "SERVER_HOST": "127.0.0.1",
            "SERVER_PORT": "8080",
        }

    def test_executable_alias(self, tmp_dir: Path):
        config = pipeline_config_from_dict(
            {"toolchain": {"executable": "target/release/server"}}, tmp_dir
        )
        assert config.toolchain.resolve_executable_path("backend") == "target/release/server"

    def test_project_keys(self, tmp_dir: Path):
        config = pipeline_config_from_dict(
            {"project": {"name": "api", "source": "app/src"}}, tmp_dir
        )
        assert config.image_name == "api"
        assert config.source_dir == Path("app/src")

    def test_unknown_project_key(self, tmp_dir: Path):
        with pytest.raises(ConfigError, match="Unknown"):
            pipeline_config_from_dict({"project": {"colour": "blue"}}, tmp_dir)

    def test_invalid_port(self, tmp_dir: Path):
        with pytest.raises(ConfigError):
            pipeline_config_from_dict({"runtime": {"bind_port": 70000}}, tmp_dir)

    def test_unparseable_file(self, tmp_dir: Path):
        (tmp_dir / "slimforge.toml").write_text("[toolchain\n")
        with pytest.raises(ConfigError, match="Cannot read"):
            load_pipeline_config(tmp_dir)

    def test_explicit_missing_config_file(self, tmp_dir: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_pipeline_config(tmp_dir, tmp_dir / "other.toml")
