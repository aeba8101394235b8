"""Deterministic tar layers for runtime images.

Layers are plain (uncompressed) tar archives with sorted members, zeroed
timestamps and root ownership, so identical inputs always produce
byte-identical layers and therefore identical content addresses.
"""

from __future__ import annotations

import fnmatch
import io
import os
import tarfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

# Build toolchain material that must never reach a runtime image.
TOOLCHAIN_PATTERNS: tuple[str, ...] = (
    "usr/bin/gcc*",
    "usr/bin/g++*",
    "usr/bin/cc",
    "usr/bin/c++",
    "usr/bin/clang*",
    "usr/bin/ld",
    "usr/bin/ld.*",
    "usr/bin/as",
    "usr/bin/make",
    "usr/bin/cmake",
    "usr/bin/cargo",
    "usr/bin/rustc",
    "usr/bin/rustup",
    "usr/bin/go",
    "usr/local/bin/cargo",
    "usr/local/bin/rustc",
    "usr/local/bin/rustup",
    "usr/local/cargo/*",
    "usr/local/rustup/*",
    "usr/local/go/*",
    "root/.cargo/*",
    "root/.rustup/*",
    "usr/include/*",
    "usr/local/include/*",
    "usr/lib/gcc/*",
    "usr/libexec/gcc/*",
)


@dataclass(frozen=True)
class LayerFile:
    """A regular file to place in a layer."""

    path: str  # absolute path inside the image, e.g. "/app/backend"
    data: bytes
    mode: int = 0o644


def _normalize(path: str) -> str:
    return str(PurePosixPath("/", path)).lstrip("/")


def _dir_info(name: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.mtime = 0
    return info


def _file_info(name: str, size: int, mode: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.size = size
    info.mode = mode
    info.mtime = 0
    return info


def build_layer(files: Iterable[LayerFile]) -> bytes:
    """Build a deterministic tar layer from in-memory files.

    Parent directories are added implicitly.
    """
    by_name = {_normalize(f.path): f for f in files}
    dirs: set[str] = set()
    for name in by_name:
        for parent in PurePosixPath(name).parents:
            if str(parent) != ".":
                dirs.add(str(parent))

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name in sorted(dirs | set(by_name)):
            if name in by_name:
                item = by_name[name]
                tar.addfile(_file_info(name, len(item.data), item.mode), io.BytesIO(item.data))
            else:
                tar.addfile(_dir_info(name))
    return buf.getvalue()


def layer_from_directory(root: Path) -> bytes:
    """Archive a root filesystem directory as a deterministic tar layer."""
    root = Path(root)
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for path in sorted(root.rglob("*")):
            name = path.relative_to(root).as_posix()
            if path.is_symlink():
                info = tarfile.TarInfo(name)
                info.type = tarfile.SYMTYPE
                info.linkname = os.readlink(path)
                info.mtime = 0
                tar.addfile(info)
            elif path.is_dir():
                tar.addfile(_dir_info(name))
            elif path.is_file():
                data = path.read_bytes()
                mode = path.stat().st_mode & 0o777
                tar.addfile(_file_info(name, len(data), mode), io.BytesIO(data))
    return buf.getvalue()


def layer_members(layer: bytes) -> list[str]:
    """Return the normalized member paths of a tar layer."""
    with tarfile.open(fileobj=io.BytesIO(layer), mode="r:*") as tar:
        return [_normalize(m.name) for m in tar.getmembers()]


def find_toolchain_files(paths: Iterable[str]) -> list[str]:
    """Return the paths that look like build toolchain material."""
    hits = []
    for path in paths:
        name = _normalize(path)
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in TOOLCHAIN_PATTERNS):
            hits.append(name)
    return sorted(hits)


def _rootfs_member(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
    # Root filesystems carry absolute symlinks (etc/localtime, etc/alternatives)
    # that must survive; members still may not land outside dest_path.
    # Device nodes need privileges an unpacked rootfs never uses.
    if member.isdev():
        return None
    return tarfile.tar_filter(member, dest_path)


def extract_layer(layer: bytes, destination: Path) -> None:
    """Unpack a tar layer into *destination*, refusing members that escape it."""
    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(layer), mode="r:*") as tar:
        tar.extractall(destination, filter=_rootfs_member)
