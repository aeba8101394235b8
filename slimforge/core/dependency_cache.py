"""Content-addressed, append-only dependency cache store.

Layout::

    {root}/entries/{key}/entry.json    cache entry metadata
    {root}/entries/{key}/output/       the cached compiler output tree
    {root}/access/{key}                last-used marker (mtime)
    {root}/tmp/                        private staging for writers

An entry is never modified once published. Writers stage the complete
entry in ``tmp/`` and publish it with a single directory rename, so a
reader either sees a complete entry or nothing. When two builds race on
the same key, the first rename wins and the loser discards its copy.

Retention keeps the N most recently used entries. Evicted entries are
first renamed out of ``entries/`` and only then deleted.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from slimforge.core.errors import CacheIntegrityError
from slimforge.models.artifacts import DependencyCache

logger = logging.getLogger(__name__)

_ENTRY_FILE = "entry.json"
_OUTPUT_DIR = "output"


class DependencyCacheStore:
    """Append-only key → compiled-dependency-tree map on the filesystem.

    The store is initialised lazily: nothing is created on disk until the
    first publish.

    Parameters
    ----------
    root:
        Root directory of the cache store.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def _entries(self) -> Path:
        return self._root / "entries"

    @property
    def _access(self) -> Path:
        return self._root / "access"

    @property
    def _tmp(self) -> Path:
        return self._root / "tmp"

    def _ensure_layout(self) -> None:
        for directory in (self._entries, self._access, self._tmp):
            directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def contains(self, key: str) -> bool:
        return (self._entries / key / _ENTRY_FILE).is_file()

    def lookup(self, key: str) -> DependencyCache | None:
        """Return the published entry for *key*, or None on a miss.

        A hit refreshes the entry's last-used marker.
        """
        entry = self._read_entry(key)
        if entry is None:
            return None
        self._touch(key)
        return entry.model_copy(update={"hit": True})

    def _read_entry(self, key: str) -> DependencyCache | None:
        entry_dir = self._entries / key
        meta = entry_dir / _ENTRY_FILE
        if not meta.is_file():
            return None
        try:
            entry = DependencyCache.model_validate_json(meta.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise CacheIntegrityError(f"Unreadable cache entry {key}: {exc}") from exc
        if entry.key != key:
            raise CacheIntegrityError(
                f"Cache entry {key} records mismatched key {entry.key}"
            )
        output = entry_dir / _OUTPUT_DIR
        if not output.is_dir():
            raise CacheIntegrityError(f"Cache entry {key} has no output tree")
        return entry.model_copy(update={"path": output})

    def list_entries(self) -> list[DependencyCache]:
        """Return all published entries, most recently used first."""
        if not self._entries.is_dir():
            return []
        entries = []
        for entry_dir in self._entries.iterdir():
            entry = self._read_entry(entry_dir.name)
            if entry is not None:
                entries.append(entry)
        entries.sort(key=lambda e: self.last_used(e.key), reverse=True)
        return entries

    def last_used(self, key: str) -> float:
        """Timestamp of the last publish or hit for *key*."""
        marker = self._access / key
        if marker.exists():
            return marker.stat().st_mtime
        meta = self._entries / key / _ENTRY_FILE
        return meta.stat().st_mtime if meta.exists() else 0.0

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def publish(
        self,
        key: str,
        output_tree: Path,
        *,
        package_name: str,
        manifest_hash: str,
        lock_hash: str,
        locked_package_count: int = 0,
    ) -> DependencyCache:
        """Copy *output_tree* into the store under *key* and publish it.

        Returns the published entry. If another writer published the same
        key first, that entry is returned and this copy is discarded.
        """
        self._ensure_layout()
        staging = self._tmp / f"{key}.{uuid.uuid4().hex}"
        try:
            shutil.copytree(output_tree, staging / _OUTPUT_DIR, symlinks=True)
            entry = DependencyCache(
                key=key,
                path=self._entries / key / _OUTPUT_DIR,
                package_name=package_name,
                manifest_hash=manifest_hash,
                lock_hash=lock_hash,
                locked_package_count=locked_package_count,
                created_at=datetime.now(timezone.utc),
            )
            (staging / _ENTRY_FILE).write_text(
                entry.model_dump_json(indent=2), encoding="utf-8"
            )
            try:
                os.rename(staging, self._entries / key)
            except OSError:
                if not self.contains(key):
                    raise
                logger.info("cache entry %s already published by another build", key[:12])
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        self._touch(key)
        logger.info("published dependency cache entry %s", key[:12])
        published = self._read_entry(key)
        if published is None:
            raise CacheIntegrityError(f"Cache entry {key} vanished after publish")
        return published

    def _touch(self, key: str) -> None:
        self._access.mkdir(parents=True, exist_ok=True)
        (self._access / key).touch()

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune(self, keep: int, *, protect: set[str] | None = None) -> list[str]:
        """Evict all but the *keep* most recently used entries.

        Keys in *protect* are never evicted. Returns the evicted keys.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        protect = protect or set()
        evicted: list[str] = []
        for entry in self.list_entries()[keep:]:
            if entry.key in protect:
                continue
            self._evict(entry.key)
            evicted.append(entry.key)
        if evicted:
            logger.info("evicted %d dependency cache entries", len(evicted))
        return evicted

    def _evict(self, key: str) -> None:
        self._ensure_layout()
        doomed = self._tmp / f"evict-{key}.{uuid.uuid4().hex}"
        os.rename(self._entries / key, doomed)
        (self._access / key).unlink(missing_ok=True)
        shutil.rmtree(doomed)
        logger.debug("evicted cache entry %s", key[:12])
