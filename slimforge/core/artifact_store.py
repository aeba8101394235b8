"""Blob store for executables and image layers, keyed by SHA-256.

Layout::

    {base}/sha256/{digest[:2]}/{digest}

Blobs are written to a hidden temporary file beside their final name and
renamed into place, so a reader never sees a half-written blob. Nothing
is ever overwritten or removed.
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any

from slimforge.core.errors import PipelineError
from slimforge.core.hasher import sha256_file, sha256_hex
from slimforge.models.artifacts import ArtifactRef, ContentAddressedArtifact

_PREFIX = "sha256:"


class ArtifactIntegrityError(PipelineError):
    """Raised when stored bytes no longer hash to their address."""


def _digest_of(address: str) -> str:
    return address.removeprefix(_PREFIX)


class ContentAddressedStore:
    """Immutable, idempotent blob storage.

    Parameters
    ----------
    base_path:
        Store root. Created by the first write.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base

    def path_of(self, content_address: str) -> Path:
        """On-disk location for *content_address* (``sha256:<hex>`` or bare hex)."""
        digest = _digest_of(content_address)
        return self._base / "sha256" / digest[:2] / digest

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def store(
        self,
        data: bytes,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> ContentAddressedArtifact:
        """Add *data* to the store and describe it.

        Storing bytes that are already present only re-verifies the copy on
        disk; a corrupted copy raises ArtifactIntegrityError.
        """
        digest = sha256_hex(data)
        target = self.path_of(digest)
        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            staging = target.parent / f".{digest}.{uuid.uuid4().hex}"
            staging.write_bytes(data)
            os.replace(staging, target)
        elif not self.verify(digest):
            raise ArtifactIntegrityError(f"Stored blob {digest[:12]} is corrupt")

        return ContentAddressedArtifact(
            content_address=_PREFIX + digest,
            artifact_type=artifact_type,
            name=name or digest[:16],
            size_bytes=len(data),
            metadata=metadata or {},
        )

    def store_file(
        self,
        source: Path,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> ContentAddressedArtifact:
        """Add the contents of *source*, named after the file by default."""
        source = Path(source)
        return self.store(
            source.read_bytes(),
            name=name or source.name,
            artifact_type=artifact_type,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def retrieve(self, content_address: str) -> bytes:
        path = self.path_of(content_address)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise FileNotFoundError(f"Artifact not found: {content_address}") from None

    def exists(self, content_address: str) -> bool:
        return self.path_of(content_address).is_file()

    def verify(self, content_address: str) -> bool:
        """True when the blob exists and still hashes to its address."""
        path = self.path_of(content_address)
        return path.is_file() and sha256_file(path) == _digest_of(content_address)

    def make_ref(
        self,
        content_address: str,
        name: str = "",
        artifact_type: str = "generic",
    ) -> ArtifactRef:
        """Reference a stored blob, filling in its size from disk."""
        digest = _digest_of(content_address)
        path = self.path_of(digest)
        return ArtifactRef(
            name=name or digest[:16],
            content_address=_PREFIX + digest,
            artifact_type=artifact_type,
            size_bytes=path.stat().st_size if path.is_file() else 0,
        )
