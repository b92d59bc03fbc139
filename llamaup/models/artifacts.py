"""Artifact naming and release models.

An artifact name is a pure function of (version, toolchain version, SM) under
a naming scheme::

    {project}-{version}-{platform}-{toolchain_prefix}{toolchain}-{arch_prefix}{sm}-{abi}.{ext}

e.g. ``llama-b4200-linux-cuda12.4-sm89-x64.tar.gz``.  The same name is the
key for the build-or-skip check and for release asset selection.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

CHECKSUM_SUFFIX = ".sha256"


class ArtifactIdentity(BaseModel):
    """The attributes encoded in an artifact file name."""

    model_config = ConfigDict(frozen=True)

    version: str
    toolchain_version: str
    sm: str
    platform: str = "linux"
    abi: str = "x64"


class NamingScheme(BaseModel):
    """Deterministic artifact naming and matching rules."""

    model_config = ConfigDict(frozen=True)

    project: str = "llama"
    platform: str = "linux"
    abi: str = "x64"
    archive_ext: str = "tar.gz"
    toolchain_prefix: str = "cuda"
    arch_prefix: str = "sm"

    def arch_tag(self, sm: str) -> str:
        return f"{self.arch_prefix}{sm}"

    def name_for(self, version: str, toolchain_version: str, sm: str) -> str:
        return (
            f"{self.project}-{version}-{self.platform}-"
            f"{self.toolchain_prefix}{toolchain_version}-"
            f"{self.arch_tag(sm)}-{self.abi}.{self.archive_ext}"
        )

    def identity_for(self, version: str, toolchain_version: str, sm: str) -> ArtifactIdentity:
        return ArtifactIdentity(
            version=version,
            toolchain_version=toolchain_version,
            sm=sm,
            platform=self.platform,
            abi=self.abi,
        )

    @staticmethod
    def checksum_name(archive_name: str) -> str:
        return f"{archive_name}{CHECKSUM_SUFFIX}"

    @staticmethod
    def is_checksum(name: str) -> bool:
        return name.endswith(CHECKSUM_SUFFIX)

    def parse(self, name: str) -> ArtifactIdentity | None:
        """Recover the identity from a file name, or ``None`` if it does not
        follow this scheme."""
        pattern = (
            rf"^{re.escape(self.project)}-(?P<version>[^-]+)-(?P<platform>[^-]+)-"
            rf"{re.escape(self.toolchain_prefix)}(?P<toolchain>[^-]+)-"
            rf"{re.escape(self.arch_prefix)}(?P<sm>[0-9A-Za-z]+)-"
            rf"(?P<abi>[^.]+)\.{re.escape(self.archive_ext)}$"
        )
        m = re.match(pattern, name)
        if m is None:
            return None
        return ArtifactIdentity(
            version=m["version"],
            toolchain_version=m["toolchain"],
            sm=m["sm"],
            platform=m["platform"],
            abi=m["abi"],
        )

    def matches_arch(self, name: str, sm: str) -> bool:
        """True if *name* carries the full, delimited architecture tag.

        ``sm75`` must not match inside ``sm750``: the tag has to be bounded
        by a delimiter or the ends of the name.
        """
        tag = re.escape(self.arch_tag(sm))
        return re.search(rf"(?:^|[-_.]){tag}(?:[-_.]|$)", name) is not None

    def matches_platform(self, name: str) -> bool:
        return self.platform.lower() in name.lower()


class ReleaseAsset(BaseModel):
    """A named, URL-addressable file attached to a release."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str  # browser download URL
    size: int = 0
    asset_id: int | None = None
    published_at: datetime | None = None

    @property
    def is_checksum(self) -> bool:
        return NamingScheme.is_checksum(self.name)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ReleaseAsset:
        return cls(
            name=payload["name"],
            url=payload.get("browser_download_url", ""),
            size=int(payload.get("size") or 0),
            asset_id=payload.get("id"),
            published_at=payload.get("updated_at") or payload.get("created_at"),
        )


class Release(BaseModel):
    """A tag and the artifacts published under it."""

    model_config = ConfigDict(frozen=True)

    tag: str
    name: str = ""
    release_id: int | None = None
    html_url: str = ""
    upload_url: str = ""
    published_at: datetime | None = None
    assets: tuple[ReleaseAsset, ...] = ()

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Release:
        return cls(
            tag=payload["tag_name"],
            name=payload.get("name") or "",
            release_id=payload.get("id"),
            html_url=payload.get("html_url") or "",
            upload_url=payload.get("upload_url") or "",
            published_at=payload.get("published_at"),
            assets=tuple(ReleaseAsset.from_api(a) for a in payload.get("assets", [])),
        )

    def asset_named(self, name: str) -> ReleaseAsset | None:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None

    @property
    def binaries(self) -> list[ReleaseAsset]:
        return [a for a in self.assets if not a.is_checksum]


class BuiltArtifact(BaseModel):
    """A packaged archive on local disk together with its sidecar."""

    model_config = ConfigDict(frozen=True)

    name: str
    identity: ArtifactIdentity
    path: Path
    checksum_path: Path
    sha256: str
    size_bytes: int


class ArtifactVerification(BaseModel):
    """Result of checking a cached archive before reuse."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: str = ""
    expected_sha256: str | None = None
    actual_sha256: str | None = None
    has_sidecar: bool = False


class ReleaseRow(BaseModel):
    """One line of the ``list`` table: a parsed binary asset."""

    model_config = ConfigDict(frozen=True)

    release_tag: str
    name: str
    url: str
    identity: ArtifactIdentity | None = None
    architecture: str = "unknown"
    size: int = 0
    published_at: datetime | None = None

    @property
    def size_mb(self) -> str:
        return f"{self.size / 1048576:.0f} MB"

    def as_json(self) -> dict[str, Any]:
        return {
            "version": self.release_tag,
            "name": self.name,
            "url": self.url,
            "size": self.size,
            "published": self.published_at.isoformat() if self.published_at else None,
        }

