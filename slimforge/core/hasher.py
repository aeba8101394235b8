"""Canonical hashing helpers for cache keys and content addressing."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

_CHUNK = 1 << 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes with sorted keys and compact separators."""
    text = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return text.encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Hex SHA-256 of *data*."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """``sha256:<hex>`` address of *obj* in canonical JSON form."""
    return "sha256:" + sha256_hex(canonical_json_bytes(obj))


def compute_cache_key(
    manifest_bytes: bytes,
    lock_bytes: bytes,
    toolchain_pin: dict[str, Any] | None = None,
) -> str:
    """SHA-256 of canonical(manifest hash + lock hash + toolchain pin).

    Depends only on the manifest/lock bytes and the toolchain pin, never
    on the application sources.
    """
    payload = {
        "manifest": sha256_hex(manifest_bytes),
        "lock": sha256_hex(lock_bytes),
        "toolchain": toolchain_pin or {},
    }
    return sha256_hex(canonical_json_bytes(payload))


def compute_tree_hash(root: Path) -> tuple[str, int]:
    """Fingerprint a directory tree.

    Hashes sorted POSIX relative paths together with each file's digest.
    Returns ``(hex_digest, file_count)``.
    """
    root = Path(root)
    entries: list[list[str]] = []
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        rel = path.relative_to(root).as_posix()
        entries.append([rel, sha256_file(path)])
    return sha256_hex(canonical_json_bytes(entries)), len(entries)


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself)."""
    sealed_fields = dict(entry_dict)
    sealed_fields.pop("entry_hash", None)
    return sha256_hex(canonical_json_bytes(sealed_fields))
