"""Local output directory of packaged archives, keyed by artifact name.

Layout: ``{base_path}/{archive_name}`` plus ``{base_path}/{archive_name}.sha256``.

Unlike a content-addressed store the key is the deterministic artifact name,
so the build path can ask "does this exact (version, CUDA, SM) archive
already exist, and is it intact?" before compiling anything.
"""

from __future__ import annotations

import logging
from pathlib import Path

from llamaup.core.archive import ArchiveIntegrityError, check_archive
from llamaup.core.hasher import (
    ChecksumFormatError,
    parse_checksum_line,
    sha256_file,
    write_sidecar,
)
from llamaup.models.artifacts import (
    ArtifactIdentity,
    ArtifactVerification,
    BuiltArtifact,
    NamingScheme,
)

logger = logging.getLogger(__name__)


class LocalArtifactStore:
    """Name-keyed archive store with sidecar checksums.

    Parameters
    ----------
    base_path:
        Output directory for archives (created on first use).
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)

    @property
    def base_path(self) -> Path:
        return self._base

    def path_for(self, name: str) -> Path:
        return self._base / name

    def checksum_path_for(self, name: str) -> Path:
        return self._base / NamingScheme.checksum_name(name)

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def verify(self, name: str) -> ArtifactVerification:
        """Check a cached archive before it may be reused.

        Non-empty, a structurally valid tar.gz, and if a sidecar is present
        its digest must match the file.  A missing sidecar is not a failure;
        an unreadable one is.
        """
        path = self.path_for(name)
        try:
            check_archive(path)
        except ArchiveIntegrityError as exc:
            return ArtifactVerification(ok=False, reason=str(exc))

        sidecar = self.checksum_path_for(name)
        if not sidecar.is_file():
            return ArtifactVerification(ok=True, reason="no sidecar", has_sidecar=False)

        try:
            expected = parse_checksum_line(sidecar.read_text(encoding="utf-8"))
        except ChecksumFormatError as exc:
            return ArtifactVerification(ok=False, reason=str(exc), has_sidecar=True)

        actual = sha256_file(path)
        if actual != expected:
            return ArtifactVerification(
                ok=False,
                reason="checksum mismatch",
                expected_sha256=expected,
                actual_sha256=actual,
                has_sidecar=True,
            )
        return ArtifactVerification(
            ok=True, expected_sha256=expected, actual_sha256=actual, has_sidecar=True
        )

    # ------------------------------------------------------------------
    # Mutate
    # ------------------------------------------------------------------

    def write_checksum(self, name: str) -> str:
        """(Re)write the sidecar for *name* and return the digest."""
        digest = write_sidecar(self.path_for(name))
        logger.info("SHA256 %s  %s", digest, name)
        return digest

    def discard(self, name: str) -> None:
        """Delete an archive and its sidecar if present."""
        for path in (self.path_for(name), self.checksum_path_for(name)):
            if path.exists():
                path.unlink()
                logger.warning("Removed stale artifact file %s", path)

    def describe(self, name: str, identity: ArtifactIdentity) -> BuiltArtifact:
        """Build the ``BuiltArtifact`` record for an archive with a sidecar."""
        path = self.path_for(name)
        sidecar = self.checksum_path_for(name)
        return BuiltArtifact(
            name=name,
            identity=identity,
            path=path,
            checksum_path=sidecar,
            sha256=parse_checksum_line(sidecar.read_text(encoding="utf-8")),
            size_bytes=path.stat().st_size,
        )
