"""Dependency manifest and lockfile models.

Both models keep the raw bytes they were parsed from. The cache key is
derived from those bytes, never from the parsed structure, so that two
byte-identical files always produce the same key.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class DependencySpec(BaseModel):
    """A single declared dependency: name plus version requirement.

    ``name`` is the key used in the manifest. A renamed dependency
    (``json = { package = "serde_json" }``) is pinned in the lock under
    ``package`` instead.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    requirement: str = "*"
    kind: str = "normal"  # normal | build | dev
    package: str | None = None

    @property
    def lock_name(self) -> str:
        return self.package or self.name

    @property
    def display_name(self) -> str:
        if self.package and self.package != self.name:
            return f"{self.name} ({self.package})"
        return self.name


class Manifest(BaseModel):
    """Parsed manifest (``Cargo.toml``-style)."""

    model_config = ConfigDict(frozen=True)

    package_name: str
    package_version: str = "0.0.0"
    dependencies: list[DependencySpec] = []
    raw: bytes = b""
    content_hash: str = ""  # SHA-256 of raw


class LockedPackage(BaseModel):
    """One resolved package pinned by the lockfile."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    source: str | None = None
    checksum: str | None = None
    dependencies: list[str] = []  # "name" or "name version"


class Lockfile(BaseModel):
    """Parsed lockfile (``Cargo.lock``-style)."""

    model_config = ConfigDict(frozen=True)

    version: int | None = None
    packages: list[LockedPackage] = []
    raw: bytes = b""
    content_hash: str = ""  # SHA-256 of raw

    def versions_of(self, name: str) -> list[str]:
        """Return every locked version of *name*."""
        return [p.version for p in self.packages if p.name == name]
