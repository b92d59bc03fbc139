"""tar.gz packaging, structural verification, and safe extraction."""

from __future__ import annotations

import logging
import os
import tarfile
import zlib
from pathlib import Path, PurePosixPath

from llamaup.core.fsutil import removing_on_failure

logger = logging.getLogger(__name__)


class ArchiveIntegrityError(RuntimeError):
    """Raised when an archive is empty or not a readable tar.gz."""


class UnsafeArchiveError(ArchiveIntegrityError):
    """Raised when a member would land outside the extraction directory."""


_READ_ERRORS = (tarfile.TarError, EOFError, OSError, zlib.error)


def create_archive(src_dir: Path, dest: Path) -> Path:
    """Pack *src_dir* as ``<basename>/...`` into *dest* (gzip).

    Writes to ``<dest>.partial`` first and renames on success, so *dest*
    either exists complete or not at all.
    """
    if not src_dir.is_dir():
        raise ArchiveIntegrityError(f"Nothing to package: {src_dir} is not a directory")
    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + ".partial")
    with removing_on_failure(partial):
        with tarfile.open(partial, "w:gz") as tar:
            tar.add(src_dir, arcname=src_dir.name)
        os.replace(partial, dest)
    logger.info("Packaged %s (%d bytes)", dest.name, dest.stat().st_size)
    return dest


def check_archive(path: Path) -> None:
    """Raise ``ArchiveIntegrityError`` unless *path* is a readable, non-empty tar.gz.

    Reads every member header through to the end of the stream, which also
    exercises the gzip CRC.
    """
    if not path.is_file():
        raise ArchiveIntegrityError(f"{path.name} does not exist")
    if path.stat().st_size == 0:
        raise ArchiveIntegrityError(f"{path.name} is empty")
    try:
        with tarfile.open(path, "r:gz") as tar:
            count = 0
            for member in tar:
                count += 1
                if member.isfile():
                    fh = tar.extractfile(member)
                    if fh is not None:
                        while fh.read(1024 * 1024):
                            pass
    except _READ_ERRORS as exc:
        raise ArchiveIntegrityError(f"{path.name} is not a valid tar.gz: {exc}") from exc
    if count == 0:
        raise ArchiveIntegrityError(f"{path.name} contains no members")


def _strip(name: str, components: int) -> str | None:
    parts = PurePosixPath(name).parts
    if len(parts) <= components:
        return None
    return str(PurePosixPath(*parts[components:]))


def _is_unsafe(name: str) -> bool:
    p = PurePosixPath(name)
    return p.is_absolute() or ".." in p.parts


def extract_archive(path: Path, dest: Path, *, strip_components: int = 1) -> list[str]:
    """Extract *path* into *dest*, dropping the leading path components.

    Members that are absolute or climb out with ``..`` (after stripping)
    raise ``UnsafeArchiveError`` before anything is written.  Returns the
    relative names extracted.
    """
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(path, "r:gz") as tar:
            members: list[tarfile.TarInfo] = []
            for member in tar.getmembers():
                if _is_unsafe(member.name):
                    raise UnsafeArchiveError(f"Refusing unsafe member path: {member.name}")
                stripped = _strip(member.name, strip_components)
                if stripped is None:
                    continue
                if _is_unsafe(stripped):
                    raise UnsafeArchiveError(f"Refusing unsafe member path: {member.name}")
                if member.islnk():
                    link = _strip(member.linkname, strip_components)
                    if link is None or _is_unsafe(member.linkname) or _is_unsafe(link):
                        raise UnsafeArchiveError(
                            f"Refusing hard link outside archive: {member.linkname}"
                        )
                    member = member.replace(name=stripped, linkname=link, deep=False)
                else:
                    member = member.replace(name=stripped, deep=False)
                members.append(member)
            tar.extractall(dest, members=members, filter="data")
    except UnsafeArchiveError:
        raise
    except tarfile.FilterError as exc:
        raise UnsafeArchiveError(str(exc)) from exc
    except _READ_ERRORS as exc:
        raise ArchiveIntegrityError(f"Failed to extract {path.name}: {exc}") from exc
    return [m.name for m in members]
