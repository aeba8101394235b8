"""Published runtime image records.

Image blobs (layers) live in the content-addressed artifact store; this
store only holds the image records, one JSON document per image id.
A record is written to a temporary file and renamed into place, so an
image is either fully published or absent.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

from slimforge.models.image import RuntimeImage

logger = logging.getLogger(__name__)


class ImageNotFoundError(LookupError):
    """Raised when no published image matches a reference."""


class ImageStore:
    """Directory of immutable image records keyed by image digest."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _record_path(self, image_id: str) -> Path:
        return self._root / f"{image_id.removeprefix('sha256:')}.json"

    def publish(self, image: RuntimeImage) -> Path:
        """Publish *image*. Re-publishing an identical id is a no-op."""
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._record_path(image.image_id)
        if path.exists():
            logger.info("image %s already published", image.short_id)
            return path
        tmp = self._root / f".{uuid.uuid4().hex}.tmp"
        tmp.write_text(image.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
        logger.info("published image %s (%s)", image.short_id, image.name)
        return path

    def get(self, reference: str) -> RuntimeImage:
        """Look up an image by full id or unique id prefix."""
        digest = reference.removeprefix("sha256:")
        exact = self._root / f"{digest}.json"
        if exact.is_file():
            return RuntimeImage.model_validate_json(exact.read_text(encoding="utf-8"))

        matches = (
            sorted(self._root.glob(f"{digest}*.json")) if digest and self._root.is_dir() else []
        )
        if not matches:
            raise ImageNotFoundError(f"No image matches {reference!r}")
        if len(matches) > 1:
            raise ImageNotFoundError(f"Image reference {reference!r} is ambiguous")
        return RuntimeImage.model_validate_json(matches[0].read_text(encoding="utf-8"))

    def list_images(self) -> list[RuntimeImage]:
        """Return all published images, newest first."""
        if not self._root.is_dir():
            return []
        images = [
            RuntimeImage.model_validate_json(p.read_text(encoding="utf-8"))
            for p in self._root.glob("*.json")
        ]
        images.sort(key=lambda img: img.created_at, reverse=True)
        return images

    def count(self) -> int:
        return len(list(self._root.glob("*.json"))) if self._root.is_dir() else 0
