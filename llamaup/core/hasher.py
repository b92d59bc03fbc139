"""SHA-256 helpers for artifacts and their ``.sha256`` sidecars.

Sidecar format is the one ``sha256sum`` writes: ``"<hex>  <filename>\\n"``.
Only the first token is significant when reading.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")
_CHUNK = 1024 * 1024


class ChecksumFormatError(ValueError):
    """Raised when a sidecar does not start with a 64-char hex digest."""


class ChecksumMismatchError(RuntimeError):
    """Raised when a computed digest differs from the published one."""

    def __init__(self, path: Path, expected: str, actual: str) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"SHA256 mismatch for {path.name}: expected {expected}, got {actual}"
        )


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Stream a file through SHA-256 and return the hex digest."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def format_checksum_line(digest: str, filename: str) -> str:
    return f"{digest}  {filename}\n"


def parse_checksum_line(text: str) -> str:
    """Extract the digest from sidecar content, lower-cased."""
    tokens = text.split()
    if not tokens or not _HEX64.match(tokens[0]):
        raise ChecksumFormatError(
            f"Not a SHA256 checksum line: {text.strip()[:80]!r}"
        )
    return tokens[0].lower()


def write_sidecar(archive_path: Path) -> str:
    """Hash *archive_path* and write ``<archive>.sha256`` beside it."""
    digest = sha256_file(archive_path)
    sidecar = archive_path.with_name(archive_path.name + ".sha256")
    sidecar.write_text(format_checksum_line(digest, archive_path.name), encoding="utf-8")
    return digest


def verify_file(path: Path, expected: str) -> str:
    """Compare the digest of *path* against *expected*.

    Returns the actual digest on match; raises ``ChecksumMismatchError``
    otherwise.  The file is left in place: callers decide whether to delete.
    """
    actual = sha256_file(path)
    if actual != expected.lower():
        raise ChecksumMismatchError(path, expected.lower(), actual)
    return actual
