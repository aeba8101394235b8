"""Manifest and lockfile loading plus consistency checking.

Manifests and lockfiles are TOML in the Cargo layout::

    # manifest
    [package]
    name = "backend"
    version = "0.1.0"

    [dependencies]
    serde = "1.0"
    tokio = { version = "1", features = ["full"] }

    # lock
    [[package]]
    name = "serde"
    version = "1.0.210"
    dependencies = ["serde_derive"]

Version requirements follow Cargo semantics: a bare or ``^`` requirement
is caret-compatible, ``~`` is tilde-compatible, ``=`` is exact (prefix
match for partial versions), ``*`` and ``1.*`` are wildcards, and
``>``/``>=``/``<``/``<=`` compare. Comma-separated comparators must all
hold. Pre-release versions (``1.0.0-alpha``) sort before their release and
only match requirements that name a pre-release of the same version.

A renamed dependency (``json = { package = "serde_json", version = "1" }``)
is looked up in the lock under its package name.
"""

from __future__ import annotations

import logging
import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from slimforge.core.errors import ManifestError
from slimforge.core.hasher import sha256_hex
from slimforge.models.manifest import DependencySpec, LockedPackage, Lockfile, Manifest

logger = logging.getLogger(__name__)

_DEPENDENCY_TABLES: dict[str, str] = {
    "dependencies": "normal",
    "build-dependencies": "build",
    "dev-dependencies": "dev",
}

_COMPARATOR_RE = re.compile(r"^(>=|<=|>|<|=|\^|~)?\s*([0-9][0-9A-Za-z.*+-]*|\*)$")

Version = tuple[int, int, int]

_RELEASE: tuple[Any, ...] = (1,)
_LOWEST_PRE: tuple[Any, ...] = (0,)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_toml(path: Path, what: str) -> tuple[bytes, dict[str, Any]]:
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise ManifestError(f"Cannot read {what} {path}: {exc}") from exc
    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ManifestError(f"Invalid {what} {path}: {exc}") from exc
    return raw, data


def parse_manifest(raw: bytes, data: dict[str, Any]) -> Manifest:
    """Build a Manifest from raw bytes and their decoded TOML document."""
    package = data.get("package")
    if not isinstance(package, dict) or not package.get("name"):
        raise ManifestError("Manifest has no [package] table with a name")

    deps: list[DependencySpec] = []
    for table, kind in _DEPENDENCY_TABLES.items():
        for name, value in sorted(data.get(table, {}).items()):
            renamed_from = None
            if isinstance(value, str):
                requirement = value
            elif isinstance(value, dict):
                if "path" in value or "git" in value:
                    raise ManifestError(
                        f"Dependency {name!r} uses a path/git source; only "
                        f"registry dependencies pinned by the lock are supported"
                    )
                requirement = str(value.get("version", "*"))
                renamed_from = value.get("package")
                if renamed_from is not None and not isinstance(renamed_from, str):
                    raise ManifestError(
                        f"Dependency {name!r} has a non-string package name: {renamed_from!r}"
                    )
            else:
                raise ManifestError(
                    f"Dependency {name!r} in [{table}] has an unsupported "
                    f"declaration: {value!r}"
                )
            deps.append(
                DependencySpec(
                    name=name, requirement=requirement, kind=kind, package=renamed_from
                )
            )

    try:
        return Manifest(
            package_name=str(package["name"]),
            package_version=str(package.get("version", "0.0.0")),
            dependencies=deps,
            raw=raw,
            content_hash=sha256_hex(raw),
        )
    except ValidationError as exc:
        raise ManifestError(f"Invalid manifest: {exc}") from exc


def parse_lockfile(raw: bytes, data: dict[str, Any]) -> Lockfile:
    """Build a Lockfile from raw bytes and their decoded TOML document."""
    entries = data.get("package", [])
    if not isinstance(entries, list):
        raise ManifestError("Lockfile [[package]] entries must be an array of tables")
    try:
        packages = [LockedPackage(**entry) for entry in entries]
        return Lockfile(
            version=data.get("version"),
            packages=packages,
            raw=raw,
            content_hash=sha256_hex(raw),
        )
    except (TypeError, ValidationError) as exc:
        raise ManifestError(f"Invalid lockfile entry: {exc}") from exc


def load_manifest(path: Path) -> Manifest:
    """Read and parse a manifest file."""
    raw, data = _read_toml(path, "manifest")
    return parse_manifest(raw, data)


def load_lockfile(path: Path) -> Lockfile:
    """Read and parse a lockfile."""
    raw, data = _read_toml(path, "lockfile")
    return parse_lockfile(raw, data)


# ---------------------------------------------------------------------------
# Version requirements
# ---------------------------------------------------------------------------


def parse_version(text: str) -> Version:
    """Parse the ``MAJOR.MINOR.PATCH`` core of *text*.

    Pre-release and build suffixes are not part of the result; see
    ``_split_suffixes``.
    """
    core, _ = _split_suffixes(text)
    parts = core.split(".")
    if not 1 <= len(parts) <= 3 or not all(p.isdigit() for p in parts):
        raise ManifestError(f"Invalid version: {text!r}")
    nums = [int(p) for p in parts] + [0] * (3 - len(parts))
    return nums[0], nums[1], nums[2]


def _split_suffixes(text: str) -> tuple[str, str]:
    """Split *text* into its core and pre-release tag; build metadata is dropped."""
    core, _, pre = text.strip().split("+", 1)[0].partition("-")
    return core, pre


def _pre_key(pre: str) -> tuple[Any, ...]:
    # A release sorts after every pre-release of the same core. Numeric
    # identifiers sort before alphanumeric ones.
    if not pre:
        return _RELEASE
    return (0, *((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre.split(".")))


def _partial(text: str) -> list[int]:
    parts = [p for p in text.split(".") if p not in ("*", "x", "X")]
    if not parts or len(parts) > 3 or not all(p.isdigit() for p in parts):
        raise ManifestError(f"Invalid version requirement component: {text!r}")
    return [int(p) for p in parts]


def _pad(parts: list[int]) -> Version:
    nums = list(parts) + [0] * (3 - len(parts))
    return nums[0], nums[1], nums[2]


def _caret_upper(parts: list[int]) -> Version:
    for idx, value in enumerate(parts):
        if value != 0:
            return _pad(parts[:idx] + [value + 1])
    return _pad(parts[:-1] + [parts[-1] + 1])


def _tilde_upper(parts: list[int]) -> Version:
    if len(parts) >= 2:
        return (parts[0], parts[1] + 1, 0)
    return (parts[0] + 1, 0, 0)


def _prefix_upper(parts: list[int]) -> Version:
    return _pad(parts[:-1] + [parts[-1] + 1])


def _parse_comparator(comparator: str) -> tuple[str, str]:
    match = _COMPARATOR_RE.match(comparator.strip())
    if not match:
        raise ManifestError(f"Unsupported version requirement: {comparator!r}")
    return match.group(1) or "", match.group(2)


def _comparator_matches(comparator: str, key: tuple[Any, ...]) -> bool:
    op, text = _parse_comparator(comparator)
    if text == "*":
        return True
    wildcard = "*" in text or text.endswith((".x", ".X"))
    core, pre = _split_suffixes(text)
    parts = _partial(core)
    bound = (*_pad(parts), _pre_key(pre))

    if op in (">", ">=", "<", "<="):
        return {
            ">": key > bound,
            ">=": key >= bound,
            "<": key < bound,
            "<=": key <= bound,
        }[op]

    if op == "=" or wildcard:
        if len(parts) == 3:
            return key == bound
        upper = _prefix_upper(parts)
    elif op == "~":
        upper = _tilde_upper(parts)
    else:
        upper = _caret_upper(parts)
    # Pre-releases of the upper bound are excluded too.
    return bound <= key < (*upper, _LOWEST_PRE)


def _opts_into_prerelease(comparator: str, core: Version) -> bool:
    _, text = _parse_comparator(comparator)
    if text == "*":
        return False
    comparator_core, pre = _split_suffixes(text)
    return bool(pre) and _pad(_partial(comparator_core)) == core


def version_satisfies(version: str, requirement: str) -> bool:
    """Return True when *version* satisfies the Cargo-style *requirement*.

    A pre-release version only matches when some comparator names a
    pre-release of the same ``MAJOR.MINOR.PATCH``, as Cargo resolves it.
    """
    core = parse_version(version)
    _, pre = _split_suffixes(version)
    comparators = [c for c in requirement.split(",") if c.strip()] or ["*"]
    if pre and not any(_opts_into_prerelease(c, core) for c in comparators):
        return False
    key = (*core, _pre_key(pre))
    return all(_comparator_matches(c, key) for c in comparators)


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


def check_consistency(manifest: Manifest, lock: Lockfile) -> None:
    """Verify that *lock* fully resolves *manifest*.

    Checks that every declared dependency has a locked version satisfying
    its requirement, and that every locked package's own dependencies are
    themselves present in the lock. Raises ``ManifestError`` listing every
    problem found.
    """
    problems: list[str] = []

    for dep in manifest.dependencies:
        locked = lock.versions_of(dep.lock_name)
        if not locked:
            problems.append(
                f"{dep.display_name} ({dep.requirement}) is not in the lockfile"
            )
            continue
        try:
            if not any(version_satisfies(v, dep.requirement) for v in locked):
                problems.append(
                    f"{dep.display_name}: no locked version satisfies {dep.requirement!r} "
                    f"(locked: {', '.join(locked)})"
                )
        except ManifestError as exc:
            problems.append(f"{dep.display_name}: {exc}")

    for package in lock.packages:
        for ref in package.dependencies:
            # "name", "name version" or "name version (source)"
            fields = ref.split()
            if not fields:
                continue
            name = fields[0]
            version = fields[1] if len(fields) > 1 else ""
            candidates = lock.versions_of(name)
            if not candidates or (version and version not in candidates):
                problems.append(
                    f"{package.name} {package.version} depends on {ref!r}, "
                    f"which the lockfile does not pin"
                )

    if problems:
        raise ManifestError(
            "Manifest and lockfile are inconsistent:\n  - " + "\n  - ".join(problems)
        )

    logger.debug(
        "manifest %s consistent with %d locked packages",
        manifest.package_name,
        len(lock.packages),
    )
