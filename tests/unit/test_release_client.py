"""Tests for ReleaseStoreClient: asset selection, sidecars, listing, publishing."""

from __future__ import annotations

from pathlib import Path

import pytest

from llamaup.core.hasher import sha256_hex
from llamaup.core.registry import PublishError, ReleaseNotFoundError
from llamaup.core.release_client import AssetNotFoundError, ReleaseStoreClient
from llamaup.models.artifacts import Release, ReleaseAsset


def _release(*names: str) -> Release:
    return Release(
        tag="b4200",
        assets=tuple(ReleaseAsset(name=n, url=f"https://dl.test/{n}") for n in names),
    )


class TestSelectAsset:
    def test_selects_matching_sm(self, client: ReleaseStoreClient):
        release = _release(
            "llama-b4200-linux-cuda12.4-sm86-x64.tar.gz",
            "llama-b4200-linux-cuda12.4-sm89-x64.tar.gz",
        )
        assert client.select_asset(release, "89").name.endswith("sm89-x64.tar.gz")

    def test_never_selects_sidecar(self, client: ReleaseStoreClient):
        release = _release("llama-b4200-linux-cuda12.4-sm89-x64.tar.gz.sha256")
        assert client.select_asset(release, "89") is None

    def test_requires_platform(self, client: ReleaseStoreClient):
        release = _release("llama-b4200-windows-cuda12.4-sm89-x64.zip")
        assert client.select_asset(release, "89") is None

    def test_require_asset_lists_available(self, client: ReleaseStoreClient):
        release = _release(
            "llama-b4200-linux-cuda12.4-sm86-x64.tar.gz",
            "llama-b4200-linux-cuda12.4-sm86-x64.tar.gz.sha256",
        )
        with pytest.raises(AssetNotFoundError) as exc_info:
            client.require_asset(release, "89")
        assert exc_info.value.available == ["llama-b4200-linux-cuda12.4-sm86-x64.tar.gz"]
        assert "sm86" in exc_info.value.hint


class TestChecksum:
    def test_sidecar_asset_preferred(self, client: ReleaseStoreClient, publish_archive, registry):
        name, data = publish_archive()
        release = registry.get_release("b4200")
        asset = release.asset_named(name)
        assert client.checksum_url(release, asset) == registry.url_for("b4200", name + ".sha256")
        assert client.fetch_expected_checksum(release, asset) == sha256_hex(data)

    def test_falls_back_to_url_suffix(self, client: ReleaseStoreClient):
        release = _release("a-linux-sm89.tar.gz")
        assert client.checksum_url(release, release.assets[0]) == "https://dl.test/a-linux-sm89.tar.gz.sha256"


class TestRows:
    def test_rows_parse_names(self, client: ReleaseStoreClient, publish_archive, registry, table):
        publish_archive(sm="89")
        publish_archive(sm="86")
        rows = client.rows(client.fetch_releases(), table)
        assert {r.identity.sm for r in rows} == {"86", "89"}
        assert {r.architecture for r in rows} == {"Ampere", "Ada Lovelace"}

    def test_rows_filter_sm(self, client: ReleaseStoreClient, publish_archive, table):
        publish_archive(sm="89")
        publish_archive(sm="86")
        rows = client.rows(client.fetch_releases(), table, sm_filter="86")
        assert [r.identity.sm for r in rows] == ["86"]

    def test_rows_skip_foreign_assets(self, client: ReleaseStoreClient, registry):
        registry.add_release("b1", {"README.md": b"hi"})
        assert client.rows(client.fetch_releases()) == []


class TestPublish:
    def _pair(self, tmp_dir: Path) -> tuple[Path, Path]:
        archive = tmp_dir / "llama-b1-linux-cuda12.4-sm89-x64.tar.gz"
        archive.write_bytes(b"archive")
        checksum = tmp_dir / (archive.name + ".sha256")
        checksum.write_text(f"{sha256_hex(b'archive')}  {archive.name}\n")
        return archive, checksum

    def test_creates_release_and_uploads_pair(self, client: ReleaseStoreClient, registry, tmp_dir: Path):
        archive, checksum = self._pair(tmp_dir)
        release = client.publish("b1", archive, checksum)
        assert registry.count("create_release") == 1
        assert [a.name for a in release.assets] == [archive.name, checksum.name]

    def test_existing_release_reused(self, client: ReleaseStoreClient, registry, tmp_dir: Path):
        registry.add_release("b1")
        archive, checksum = self._pair(tmp_dir)
        client.publish("b1", archive, checksum)
        assert registry.count("create_release") == 0

    def test_sidecar_failure_rolls_back_archive(self, client: ReleaseStoreClient, registry, tmp_dir: Path):
        archive, checksum = self._pair(tmp_dir)
        registry.fail_upload = {checksum.name}
        with pytest.raises(PublishError):
            client.publish("b1", archive, checksum)
        assert registry.asset_names("b1") == []

    def test_archive_failure_uploads_nothing(self, client: ReleaseStoreClient, registry, tmp_dir: Path):
        archive, checksum = self._pair(tmp_dir)
        registry.fail_upload = {archive.name}
        with pytest.raises(PublishError):
            client.publish("b1", archive, checksum)
        assert registry.asset_names("b1") == []
        assert registry.count("upload_asset") == 1


class TestFetch:
    def test_missing_release(self, client: ReleaseStoreClient):
        with pytest.raises(ReleaseNotFoundError):
            client.fetch_release("b404")
