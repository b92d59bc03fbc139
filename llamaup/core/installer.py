"""Installer: fetch, verify and install one (version, SM) archive.

Each pair installs to its own directory (``llama-{version}-sm{sm}`` beside
the configured install dir), so coexisting versions never collide and the
"already installed" check is a single ``is_dir``.  The steps are:

1. Idempotency check (before any network call for explicit versions)
2. Release lookup and SM asset selection
3. Download to a scratch file (any previous partial file is discarded)
4. SHA-256 verification against the published sidecar
5. Extraction into a hidden sibling, then an atomic rename into place
6. Forwarding wrappers for the entry points in the shared parent directory
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from llamaup.core.archive import extract_archive
from llamaup.core.fsutil import (
    chmod_tree_files,
    ensure_writable_dir,
    exclusive_lock,
    make_executable,
    remove_path,
    removing_on_failure,
)
from llamaup.core.hasher import ChecksumMismatchError, verify_file
from llamaup.core.registry import LATEST, ProgressCallback
from llamaup.core.release_client import ReleaseStoreClient
from llamaup.models.artifacts import Release, ReleaseAsset
from llamaup.models.install import InstallLayout, InstallPlan, InstallResult

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_POINTS = ("llama-cli", "llama-server", "llama-bench")

_WRAPPER = """\
#!/usr/bin/env bash
# Generated by llamaup: sets LD_LIBRARY_PATH for this install
INSTALL_DIR="{install_dir}"
export LD_LIBRARY_PATH="{ld_path}${{LD_LIBRARY_PATH:+:$LD_LIBRARY_PATH}}"
exec "$INSTALL_DIR/bin/{binary}" "$@"
"""


def render_wrapper(install_dir: Path, binary: str) -> str:
    """Bash forwarding wrapper for ``install_dir/bin/<binary>``."""
    parts = [
        f"$INSTALL_DIR/{sub}" for sub in ("lib", "bin") if (install_dir / sub).is_dir()
    ]
    return _WRAPPER.format(install_dir=install_dir, ld_path=":".join(parts), binary=binary)


class Installer:
    """Install release artifacts into a per-(version, SM) layout.

    Parameters
    ----------
    client:
        Release store client used for lookup, sidecar fetch and download.
    layout:
        Local installation layout.
    entry_points:
        Binaries under ``bin/`` that get a wrapper in the shared parent.
    download_dir:
        Scratch directory for the downloaded archive (system temp by default).
    """

    def __init__(
        self,
        client: ReleaseStoreClient,
        layout: InstallLayout,
        *,
        entry_points: tuple[str, ...] | list[str] = DEFAULT_ENTRY_POINTS,
        download_dir: Path | None = None,
    ) -> None:
        self._client = client
        self._layout = layout
        self._entry_points = tuple(entry_points)
        self._download_dir = Path(download_dir or tempfile.gettempdir())

    @property
    def layout(self) -> InstallLayout:
        return self._layout

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def plan(self, sm: str, version: str = LATEST) -> InstallPlan:
        target = self._layout.path_for(version, sm)
        return InstallPlan(
            repo=self._client.repo,
            version=version,
            sm=sm,
            install_dir=target,
            steps=[
                f"Fetch release info for {version} from GitHub",
                f"Find asset matching sm{sm} + linux",
                f"Download to {self._download_dir}",
                "Verify SHA256 against the published .sha256 sidecar",
                f"Extract to {target}",
                f"Write wrappers for {', '.join(self._entry_points)} in {self._layout.bin_dir}",
                "Set executable permissions (chmod 755) on installed binaries",
            ],
        )

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(
        self,
        sm: str,
        version: str = LATEST,
        *,
        force: bool = False,
        progress: ProgressCallback | None = None,
    ) -> InstallResult:
        """Install the *sm* binary of release *version*.

        Returns an ``InstallResult`` with ``already_installed=True`` and no
        download when the keyed directory exists and *force* is not set.
        Raises ``ChecksumMismatchError`` (after deleting the download) if the
        archive does not match its published digest.
        """
        if version != LATEST and not force and self._layout.is_installed(version, sm):
            return self._already_installed(version, sm)

        release = self._client.fetch_release(version)
        tag = release.tag
        if version == LATEST:
            logger.info("Latest release is %s", tag)
            if not force and self._layout.is_installed(tag, sm):
                return self._already_installed(tag, sm)

        asset = self._client.require_asset(release, sm)
        ensure_writable_dir(self._layout.bin_dir)

        with exclusive_lock(self._layout.lock_path_for(tag, sm)):
            # Another process may have finished the same pair while we waited.
            if not force and self._layout.is_installed(tag, sm):
                return self._already_installed(tag, sm)
            return self._fetch_and_install(release, asset, sm, progress)

    def _already_installed(self, version: str, sm: str) -> InstallResult:
        path = self._layout.path_for(version, sm)
        logger.info("Already installed at %s (use --force to reinstall)", path)
        return InstallResult(version=version, sm=sm, path=path, already_installed=True)

    def _fetch_and_install(
        self,
        release: Release,
        asset: ReleaseAsset,
        sm: str,
        progress: ProgressCallback | None,
    ) -> InstallResult:
        tag = release.tag
        target = self._layout.path_for(tag, sm)
        download = self._download_dir / asset.name

        if remove_path(download):
            logger.warning("Discarded partial download %s", download)

        with removing_on_failure(download):
            logger.info("Downloading %s", asset.name)
            self._client.registry.download(asset.url, download, progress)
            digest = self._verify(release, asset, download)
            self._extract_into_place(download, target)
        download.unlink()

        wrappers = self._write_wrappers(target)
        logger.info("Installed %s to %s", asset.name, target)
        return InstallResult(
            version=tag,
            sm=sm,
            path=target,
            asset_name=asset.name,
            sha256=digest,
            wrappers=wrappers,
        )

    def _verify(self, release: Release, asset: ReleaseAsset, download: Path) -> str:
        expected = self._client.fetch_expected_checksum(release, asset)
        try:
            actual = verify_file(download, expected)
        except ChecksumMismatchError as exc:
            logger.error(
                "SHA256 mismatch for %s: expected %s, actual %s",
                asset.name,
                exc.expected,
                exc.actual,
            )
            raise
        logger.info("SHA256 verified: %s", actual)
        return actual

    def _extract_into_place(self, archive: Path, target: Path) -> None:
        staging = target.with_name(f".{target.name}.partial")
        remove_path(staging)
        with removing_on_failure(staging):
            extract_archive(archive, staging, strip_components=1)
            chmod_tree_files(staging / "bin")
            if remove_path(target):
                logger.warning("Replaced existing install at %s", target)
            os.replace(staging, target)

    def _write_wrappers(self, target: Path) -> list[Path]:
        written: list[Path] = []
        for binary in self._entry_points:
            if not (target / "bin" / binary).is_file():
                continue
            wrapper = self._layout.bin_dir / binary
            if wrapper.is_symlink():
                wrapper.unlink()
            wrapper.write_text(render_wrapper(target, binary), encoding="utf-8")
            make_executable(wrapper)
            written.append(wrapper)
            logger.info("Installed wrapper %s -> %s", wrapper, target / "bin" / binary)
        return written
