"""
spec-coordinator - filesystem utilities

File: src/spec_coordinator/utils/fs.py

Purpose
- Atomic writes for session files and reports.
- Bounded, deterministic tree listing used for preflight and prompt context.
- Age-based pruning for the ``clean`` command.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "is_within",
    "list_tree_files",
    "looks_like_text",
    "prune_files_older_than",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        Path(child).resolve().relative_to(Path(parent).resolve())
    except ValueError:
        return False
    return True


def list_tree_files(
    root: PathLike,
    *,
    ignored_dirs: Iterable[str] = (),
    limit: int | None = None,
) -> list[Path]:
    """List regular files under ``root`` in sorted order, skipping ignored dirs.

    Hidden directories are skipped as well. Stops after ``limit`` files.
    """

    base = Path(root)
    ignored = frozenset(ignored_dirs)
    found: list[Path] = []
    for current, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(
            name for name in dirnames if name not in ignored and not name.startswith(".")
        )
        for filename in sorted(filenames):
            candidate = Path(current) / filename
            if not candidate.is_file() or candidate.is_symlink():
                continue
            found.append(candidate)
            if limit is not None and len(found) >= limit:
                return found
    return found


def looks_like_text(content: str, *, sample_size: int = 4000) -> bool:
    """Heuristic: reject NUL bytes and samples with >=20% non-printable chars."""

    if "\x00" in content:
        return False
    sample = content[:sample_size]
    if not sample:
        return False
    non_printable = sum(
        1 for char in sample if char not in "\t\n\r" and (ord(char) < 32 or ord(char) > 126)
    )
    return non_printable / len(sample) < 0.2


def prune_files_older_than(
    directory: PathLike,
    *,
    max_age_seconds: float,
    now: float | None = None,
) -> list[Path]:
    """Delete regular files directly inside ``directory`` older than the cutoff."""

    base = Path(directory)
    if not base.is_dir():
        return []
    cutoff = (time.time() if now is None else now) - max_age_seconds
    removed: list[Path] = []
    for entry in sorted(base.iterdir()):
        if not entry.is_file() or entry.is_symlink():
            continue
        if entry.stat().st_mtime < cutoff:
            entry.unlink()
            removed.append(entry)
    return removed


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
