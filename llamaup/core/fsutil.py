"""Filesystem helpers shared by the build and install paths."""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755


def remove_path(path: Path) -> bool:
    """Delete a file, symlink, or directory tree.  Returns True if removed."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


@contextmanager
def removing_on_failure(*paths: Path) -> Iterator[None]:
    """Remove *paths* if the block raises, including on KeyboardInterrupt.

    Wraps any step that writes partial output so an interrupted download,
    package, or extraction never leaves a half-written file behind.
    """
    try:
        yield
    except BaseException:
        for path in paths:
            if remove_path(path):
                logger.warning("Removed partial output: %s", path)
        raise


@contextmanager
def exclusive_lock(lock_path: Path) -> Iterator[None]:
    """Hold an advisory exclusive lock on *lock_path* for the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def make_executable(path: Path) -> None:
    path.chmod(EXECUTABLE_MODE)


def chmod_tree_files(directory: Path, mode: int = EXECUTABLE_MODE) -> list[Path]:
    """chmod every regular file directly under *directory*."""
    changed: list[Path] = []
    if not directory.is_dir():
        return changed
    for entry in sorted(directory.iterdir()):
        if entry.is_file() and not entry.is_symlink():
            entry.chmod(mode)
            changed.append(entry)
    return changed


def ensure_writable_dir(path: Path) -> None:
    """Create *path* if needed and fail with a clear message if not writable."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PermissionError(f"Cannot create directory {path}: {exc}") from exc
    if not os.access(path, os.W_OK):
        raise PermissionError(f"Directory is not writable: {path}")
