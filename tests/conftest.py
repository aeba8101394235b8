"""Shared test fixtures for slimforge.

The toolchain is a small Python script standing in for ``cargo``: in
``deps`` mode it "compiles" every locked package into ``target/``, in
``app`` mode it turns ``src/`` into a runnable Python executable. Every
invocation is appended to a log so tests can tell whether a phase ran.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from slimforge.config import ForgeConfig
from slimforge.core.artifact_store import ContentAddressedStore
from slimforge.core.build_ledger import BuildLedger
from slimforge.core.dependency_cache import DependencyCacheStore
from slimforge.core.orchestrator import Pipeline
from slimforge.core.project import load_pipeline_config
from slimforge.models.config import PipelineConfig

FAKE_CARGO = '''\
import hashlib
import os
import pathlib
import sys
import tomllib

mode, log = sys.argv[1], sys.argv[2]
with open(log, "a", encoding="utf-8") as fh:
    fh.write(mode + "\\n")

manifest = tomllib.loads(pathlib.Path("Cargo.toml").read_text())
lock = tomllib.loads(pathlib.Path("Cargo.lock").read_text())
name = manifest["package"]["name"]
deps = pathlib.Path("target/release/deps")

if mode == "deps":
    deps.mkdir(parents=True, exist_ok=True)
    for pkg in lock.get("package", []):
        if pkg["name"] == name:
            continue
        if pkg["name"] == "broken":
            sys.stderr.write("error: failed to compile `broken v0.1.0`\\n")
            sys.exit(101)
        print(f"   Compiling {pkg['name']} v{pkg['version']}")
        (deps / f"lib{pkg['name']}-{pkg['version']}.rlib").write_text(
            f"{pkg['name']} {pkg['version']}\\n"
        )
    sys.exit(0)

if not deps.is_dir():
    sys.stderr.write("error: dependencies were not compiled\\n")
    sys.exit(101)

source = "".join(p.read_text() for p in sorted(pathlib.Path("src").rglob("*.rs")))
if "compile_error!" in source:
    sys.stderr.write("error[E0425]: cannot find value `oops` in this scope\\n")
    sys.stderr.write(" --> src/main.rs:2:5\\n")
    sys.exit(101)

digest = hashlib.sha256(source.encode()).hexdigest()
print(f"   Compiling {name} v{manifest['package']['version']}")
out = pathlib.Path("target/release") / name
out.write_text(
    f"#!{sys.executable}\\n"
    "import os, sys\\n"
    "report = os.environ.get('BIND_REPORT')\\n"
    "if report:\\n"
    "    with open(report, 'w') as fh:\\n"
    "        fh.write(os.environ['SERVER_HOST'] + ':' + os.environ['SERVER_PORT'])\\n"
    "sys.exit(int(os.environ.get('EXIT_CODE', '0')))\\n"
    f"# source {digest}\\n"
)
os.chmod(out, 0o755)
'''

MANIFEST = """\
[package]
name = "backend"
version = "0.1.0"
edition = "2021"

[dependencies]
serde = { version = "1.0", features = ["derive"] }
tokio = "1"
"""

LOCK = """\
version = 3

[[package]]
name = "backend"
version = "0.1.0"
dependencies = ["serde", "tokio"]

[[package]]
name = "serde"
version = "1.0.210"
dependencies = ["serde_derive"]

[[package]]
name = "serde_derive"
version = "1.0.210"

[[package]]
name = "tokio"
version = "1.40.0"
"""

MAIN_RS = """\
fn main() {
    println!("hello");
}
"""

CA_BUNDLE = """\
-----BEGIN CERTIFICATE-----
MIIBszCCAVmgAwIBAgIUTestOnlyCertificateBundle0000000000wCgYIKoZIzj0E
-----END CERTIFICATE-----
"""


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def toolchain_log(tmp_dir: Path) -> Path:
    return tmp_dir / "toolchain.log"


@pytest.fixture
def toolchain_calls(toolchain_log: Path):
    """Return a callable listing the toolchain invocations so far."""

    def _calls() -> list[str]:
        if not toolchain_log.exists():
            return []
        return toolchain_log.read_text(encoding="utf-8").split()

    return _calls


@pytest.fixture
def base_layer_dir(tmp_dir: Path) -> Path:
    """A minimal root filesystem without any build toolchain."""
    root = tmp_dir / "rootfs"
    (root / "etc").mkdir(parents=True)
    (root / "etc" / "os-release").write_text('PRETTY_NAME="Test Slim"\n')
    (root / "usr" / "lib").mkdir(parents=True)
    (root / "usr" / "lib" / "libc.so.6").write_bytes(b"\x7fELF-fake-libc")
    (root / "usr" / "bin").mkdir(parents=True)
    (root / "usr" / "bin" / "env").write_bytes(b"\x7fELF-fake-env")
    return root


@pytest.fixture
def ca_bundle(tmp_dir: Path) -> Path:
    path = tmp_dir / "ca-certificates.crt"
    path.write_text(CA_BUNDLE)
    return path


@pytest.fixture
def project_dir(tmp_dir: Path, toolchain_log: Path, base_layer_dir: Path, ca_bundle: Path) -> Path:
    """A buildable project wired to the fake toolchain."""
    project = tmp_dir / "project"
    (project / "src").mkdir(parents=True)
    (project / "Cargo.toml").write_text(MANIFEST)
    (project / "Cargo.lock").write_text(LOCK)
    (project / "src" / "main.rs").write_text(MAIN_RS)

    script = tmp_dir / "fake_cargo.py"
    script.write_text(FAKE_CARGO)
    deps_cmd = [sys.executable, str(script), "deps", str(toolchain_log)]
    app_cmd = [sys.executable, str(script), "app", str(toolchain_log)]

    (project / "slimforge.toml").write_text(
        "\n".join(
            [
                "[project]",
                'manifest = "Cargo.toml"',
                'lock = "Cargo.lock"',
                'source = "src"',
                "",
                "[toolchain]",
                f"dependency_command = {json.dumps(deps_cmd)}",
                f"application_command = {json.dumps(app_cmd)}",
                'output_dir = "target"',
                "",
                "[runtime]",
                f"base_layer = {json.dumps(str(base_layer_dir))}",
                f"ca_bundle = {json.dumps(str(ca_bundle))}",
                'working_dir = "/app"',
                "",
            ]
        )
    )
    return project


@pytest.fixture
def forge_config(tmp_dir: Path) -> ForgeConfig:
    return ForgeConfig(_env_file=None, state_dir=tmp_dir / "state", cache_keep_entries=5)


@pytest.fixture
def pipeline_config(project_dir: Path) -> PipelineConfig:
    return load_pipeline_config(project_dir)


@pytest.fixture
def pipeline(pipeline_config: PipelineConfig, forge_config: ForgeConfig) -> Pipeline:
    return Pipeline(pipeline_config, forge_config=forge_config)


@pytest.fixture
def ledger(tmp_dir: Path) -> BuildLedger:
    return BuildLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def cache_store(tmp_dir: Path) -> DependencyCacheStore:
    return DependencyCacheStore(tmp_dir / "cache")


@pytest.fixture
def run_id() -> str:
    return "sf-test-run-001"
