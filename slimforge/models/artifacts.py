"""Build artifact models: cache entries, executables, source trees."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ArtifactRef(BaseModel):
    """Pointer to a blob in the artifact store, as recorded on images."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    artifact_type: str = "generic"
    size_bytes: int = 0


class ContentAddressedArtifact(BaseModel):
    """What the artifact store returns after a write."""

    model_config = ConfigDict(frozen=True)

    content_address: str  # "sha256:<hex>"
    artifact_type: str
    name: str
    size_bytes: int
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    metadata: dict[str, Any] = {}

    def to_ref(self) -> ArtifactRef:
        return ArtifactRef(
            name=self.name,
            content_address=self.content_address,
            artifact_type=self.artifact_type,
            size_bytes=self.size_bytes,
        )


class SourceTree(BaseModel):
    """The application source directory and its content fingerprint.

    The tree hash identifies a build's inputs for the ledger. It is
    never part of the dependency cache key.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    tree_hash: str = ""
    file_count: int = 0


class DependencyCache(BaseModel):
    """A published, content-addressed dependency cache entry.

    ``hit`` is True when the entry was reused rather than built by the
    current invocation.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    path: Path  # the cached output tree (e.g. a copy of target/)
    package_name: str
    manifest_hash: str
    lock_hash: str
    locked_package_count: int = 0
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    hit: bool = False


class Executable(BaseModel):
    """The single compiled binary produced by the application build."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    size_bytes: int
    source_hash: str
    dependency_cache_key: str

    @property
    def digest(self) -> str:
        return self.content_address.removeprefix("sha256:")
