"""Release store client: release lookup, SM asset selection, pair publishing."""

from __future__ import annotations

import logging
from pathlib import Path

from llamaup.core.hasher import parse_checksum_line
from llamaup.core.registry import (
    LATEST,
    PublishError,
    Registry,
    RegistryError,
    ReleaseNotFoundError,
)
from llamaup.models.artifacts import NamingScheme, Release, ReleaseAsset, ReleaseRow
from llamaup.models.gpu import PatternTable

logger = logging.getLogger(__name__)


class AssetNotFoundError(LookupError):
    """No binary for the requested SM exists in the release."""

    def __init__(self, release: Release, sm: str, available: list[str]) -> None:
        self.release = release
        self.sm = sm
        self.available = available
        super().__init__(f"No binary for SM {sm} in release {release.tag}")

    @property
    def hint(self) -> str:
        if not self.available:
            return "The release has no binaries yet. Build one with 'llamaup build --upload'."
        return "Available: " + ", ".join(self.available)


class ReleaseStoreClient:
    """Read and publish artifacts through a ``Registry``.

    Parameters
    ----------
    registry:
        The registry capability (GitHub or a fake).
    naming:
        Naming scheme used to recognise and parse artifact names.
    """

    def __init__(self, registry: Registry, naming: NamingScheme | None = None) -> None:
        self._registry = registry
        self._naming = naming or NamingScheme()

    @property
    def repo(self) -> str:
        return self._registry.repo

    @property
    def registry(self) -> Registry:
        return self._registry

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_release(self, version: str = LATEST) -> Release:
        """Return the release for *version* (or the most recent one)."""
        release = self._registry.get_release(version)
        logger.debug(
            "Release %s has %d assets", release.tag, len(release.assets)
        )
        return release

    def fetch_releases(self, limit: int = 10) -> list[Release]:
        return self._registry.list_releases(limit)

    def select_asset(self, release: Release, sm: str) -> ReleaseAsset | None:
        """Pick the binary for *sm*: full delimited arch tag plus platform,
        never a ``.sha256`` sidecar."""
        for asset in release.assets:
            if asset.is_checksum:
                continue
            if self._naming.matches_arch(asset.name, sm) and self._naming.matches_platform(
                asset.name
            ):
                return asset
        return None

    def require_asset(self, release: Release, sm: str) -> ReleaseAsset:
        asset = self.select_asset(release, sm)
        if asset is None:
            raise AssetNotFoundError(release, sm, [a.name for a in release.binaries])
        return asset

    def checksum_url(self, release: Release, asset: ReleaseAsset) -> str:
        """URL of the sidecar: the release's own asset if listed, else ``url.sha256``."""
        sidecar = release.asset_named(NamingScheme.checksum_name(asset.name))
        if sidecar is not None:
            return sidecar.url
        return NamingScheme.checksum_name(asset.url)

    def fetch_expected_checksum(self, release: Release, asset: ReleaseAsset) -> str:
        """Fetch and parse the published digest for *asset*."""
        return parse_checksum_line(
            self._registry.fetch_text(self.checksum_url(release, asset))
        )

    def rows(
        self,
        releases: list[Release],
        table: PatternTable | None = None,
        sm_filter: str | None = None,
    ) -> list[ReleaseRow]:
        """Flatten releases into listing rows, one per parsed binary."""
        out: list[ReleaseRow] = []
        for release in releases:
            for asset in release.binaries:
                identity = self._naming.parse(asset.name)
                if identity is None:
                    continue
                if sm_filter is not None and identity.sm != sm_filter:
                    continue
                family = table.family_for(identity.sm) if table is not None else None
                out.append(
                    ReleaseRow(
                        release_tag=release.tag,
                        name=asset.name,
                        url=asset.url,
                        identity=identity,
                        architecture=family.architecture if family else "unknown",
                        size=asset.size,
                        published_at=asset.published_at or release.published_at,
                    )
                )
        return out

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def check_publish_access(self) -> None:
        self._registry.check_auth()

    def ensure_release(self, tag: str, title: str = "", notes: str = "") -> Release:
        try:
            return self._registry.get_release(tag)
        except ReleaseNotFoundError:
            logger.info("Release %s not found on %s, creating it", tag, self.repo)
            return self._registry.create_release(tag, title=title, notes=notes)

    def publish(
        self,
        tag: str,
        archive: Path,
        checksum: Path,
        *,
        title: str = "",
        notes: str = "",
    ) -> Release:
        """Upload *archive* and its *checksum* sidecar to release *tag*.

        The pair is published as a unit: if either upload fails, both asset
        names are removed from the release before ``PublishError`` is raised,
        so the release never lists a binary without its digest (or the other
        way round).  An interrupt rolls back the same way and propagates
        unchanged.
        """
        release = self.ensure_release(tag, title=title, notes=notes)
        try:
            self._registry.upload_asset(release, archive)
            self._registry.upload_asset(release, checksum)
        except (RegistryError, OSError) as exc:
            self._rollback(release, [archive.name, checksum.name])
            raise PublishError(
                f"Failed to publish {archive.name} to {self.repo}@{tag}: {exc}",
                hint=getattr(exc, "hint", "") or "Re-run the build with --upload to retry.",
            ) from exc
        except BaseException:
            # Ctrl-C between the two uploads: drop the pair, keep the interrupt.
            self._rollback(release, [archive.name, checksum.name])
            raise
        return self._registry.get_release(tag)

    def _rollback(self, release: Release, names: list[str]) -> None:
        for name in names:
            try:
                if self._registry.delete_asset(release, name):
                    logger.warning("Rolled back partial upload: %s", name)
            except RegistryError as exc:
                logger.error(
                    "Could not remove %s from %s during rollback: %s",
                    name,
                    release.tag,
                    exc,
                )
