"""Tests for Installer: idempotency, verification, layout, wrappers."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from llamaup.core.hasher import ChecksumMismatchError, sha256_hex
from llamaup.core.installer import Installer, render_wrapper
from llamaup.core.release_client import AssetNotFoundError
from llamaup.models.install import InstallLayout


class TestInstall:
    def test_installs_into_keyed_dir(self, installer: Installer, publish_archive, layout: InstallLayout):
        name, data = publish_archive()
        result = installer.install("89", "b4200")
        assert result.path == layout.path_for("b4200", "89")
        assert (result.path / "bin" / "llama-cli").is_file()
        assert result.sha256 == sha256_hex(data)
        assert result.asset_name == name
        assert result.already_installed is False

    def test_bin_files_are_0755(self, installer: Installer, publish_archive):
        publish_archive()
        result = installer.install("89", "b4200")
        mode = stat.S_IMODE((result.path / "bin" / "llama-cli").stat().st_mode)
        assert mode == 0o755

    def test_wrappers_written_for_present_entry_points(
        self, installer: Installer, publish_archive, layout: InstallLayout
    ):
        publish_archive()
        result = installer.install("89", "b4200")
        # the default archive ships llama-cli and llama-server, not llama-bench
        assert sorted(w.name for w in result.wrappers) == ["llama-cli", "llama-server"]
        wrapper = layout.bin_dir / "llama-cli"
        text = wrapper.read_text()
        assert f'INSTALL_DIR="{result.path}"' in text
        assert "LD_LIBRARY_PATH" in text
        assert 'exec "$INSTALL_DIR/bin/llama-cli" "$@"' in text
        assert os.access(wrapper, os.X_OK)

    def test_download_removed_after_install(self, installer: Installer, publish_archive, tmp_dir: Path):
        name, _ = publish_archive()
        installer.install("89", "b4200")
        assert not (tmp_dir / "downloads" / name).exists()

    def test_latest_keyed_by_resolved_tag(self, installer: Installer, publish_archive, layout: InstallLayout):
        publish_archive(tag="b4100")
        publish_archive(tag="b4200")
        result = installer.install("89")
        assert result.version == "b4200"
        assert result.path == layout.path_for("b4200", "89")

    def test_coexisting_versions(self, installer: Installer, publish_archive, layout: InstallLayout):
        publish_archive(tag="b4100")
        publish_archive(tag="b4200")
        installer.install("89", "b4100")
        installer.install("89", "b4200")
        assert layout.is_installed("b4100", "89")
        assert layout.is_installed("b4200", "89")

    def test_asset_missing_for_sm(self, installer: Installer, publish_archive):
        publish_archive(sm="86")
        with pytest.raises(AssetNotFoundError):
            installer.install("89", "b4200")


class TestIdempotency:
    def test_explicit_version_makes_no_network_call(
        self, installer: Installer, publish_archive, registry, layout: InstallLayout
    ):
        publish_archive()
        layout.path_for("b4200", "89").mkdir(parents=True)
        registry.calls.clear()
        result = installer.install("89", "b4200")
        assert result.already_installed is True
        assert registry.calls == []

    def test_latest_makes_one_lookup_only(
        self, installer: Installer, publish_archive, registry, layout: InstallLayout
    ):
        publish_archive()
        layout.path_for("b4200", "89").mkdir(parents=True)
        registry.calls.clear()
        result = installer.install("89")
        assert result.already_installed is True
        assert registry.calls == [("get_release", "latest")]

    def test_force_reinstalls(self, installer: Installer, publish_archive, registry, layout: InstallLayout):
        publish_archive()
        target = layout.path_for("b4200", "89")
        target.mkdir(parents=True)
        (target / "stale").write_text("old")
        result = installer.install("89", "b4200", force=True)
        assert result.already_installed is False
        assert registry.count("download") == 1
        assert not (target / "stale").exists()
        assert (target / "bin" / "llama-cli").exists()


class TestVerification:
    def test_mismatch_deletes_download_and_installs_nothing(
        self, installer: Installer, publish_archive, layout: InstallLayout, tmp_dir: Path
    ):
        name, data = publish_archive(digest="f" * 64)
        with pytest.raises(ChecksumMismatchError) as exc_info:
            installer.install("89", "b4200")
        assert exc_info.value.expected == "f" * 64
        assert exc_info.value.actual == sha256_hex(data)
        assert not (tmp_dir / "downloads" / name).exists()
        assert not layout.is_installed("b4200", "89")

    def test_previous_partial_download_discarded(
        self, installer: Installer, publish_archive, tmp_dir: Path
    ):
        name, data = publish_archive()
        partial = tmp_dir / "downloads" / name
        partial.parent.mkdir(parents=True)
        partial.write_bytes(b"half")
        result = installer.install("89", "b4200")
        assert result.sha256 == sha256_hex(data)

    def test_progress_callback(self, installer: Installer, publish_archive):
        _, data = publish_archive()
        seen: list[tuple[int, int | None]] = []
        installer.install("89", "b4200", progress=lambda d, t: seen.append((d, t)))
        assert seen[-1] == (len(data), len(data))


class TestPlan:
    def test_plan_has_no_side_effects(self, installer: Installer, registry, layout: InstallLayout):
        plan = installer.plan("89", "b4200")
        assert plan.install_dir == layout.path_for("b4200", "89")
        assert plan.repo == "acme/llamaup"
        assert registry.calls == []
        assert not layout.bin_dir.exists()


class TestWrapper:
    def test_only_existing_lib_dirs_on_path(self, tmp_dir: Path):
        target = tmp_dir / "llama-b1-sm89"
        (target / "bin").mkdir(parents=True)
        text = render_wrapper(target, "llama-cli")
        assert 'LD_LIBRARY_PATH="$INSTALL_DIR/bin' in text
        assert "$INSTALL_DIR/lib" not in text
