"""Adversarial tests: tampered downloads, sidecars and cached archives.

A mismatch must never install anything, must delete the download, and must
report both digests.  A cached archive that fails verification is rebuilt,
never reused.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from llamaup.core.hasher import (
    ChecksumFormatError,
    ChecksumMismatchError,
    format_checksum_line,
    sha256_file,
    sha256_hex,
)
from llamaup.core.installer import Installer
from llamaup.models.build import BuildRequest, BuildState

CACHED = "llama-b4200-linux-cuda12.4-sm89-x64.tar.gz"


class TestTamperedDownload:
    def test_bytes_altered_in_transit(
        self, installer: Installer, publish_archive, registry, layout, tmp_dir: Path
    ):
        name, data = publish_archive()
        real_download = registry.download

        def tampered(url, dest, progress=None):
            size = real_download(url, dest, progress)
            dest.write_bytes(dest.read_bytes() + b"\x00injected")
            return size

        registry.download = tampered
        with pytest.raises(ChecksumMismatchError) as exc_info:
            installer.install("89", "b4200")

        assert exc_info.value.expected == sha256_hex(data)
        assert exc_info.value.actual == sha256_hex(data + b"\x00injected")
        assert not (tmp_dir / "downloads" / name).exists()
        assert not layout.is_installed("b4200", "89")
        assert not (layout.bin_dir / "llama-cli").exists()

    def test_malformed_sidecar(
        self, installer: Installer, publish_archive, registry, naming, layout, tmp_dir: Path
    ):
        name, _ = publish_archive(with_sidecar=False)
        registry.add_release("b4200", {naming.checksum_name(name): b"<html>rate limited</html>"})
        with pytest.raises(ChecksumFormatError):
            installer.install("89", "b4200")
        assert not (tmp_dir / "downloads" / name).exists()
        assert not layout.is_installed("b4200", "89")

    def test_sidecar_for_other_file(self, installer: Installer, publish_archive, layout):
        publish_archive(digest=sha256_hex(b"some other archive"))
        with pytest.raises(ChecksumMismatchError):
            installer.install("89", "b4200")
        assert not layout.is_installed("b4200", "89")

    def test_existing_install_survives_failed_force(
        self, installer: Installer, publish_archive, layout
    ):
        publish_archive()
        installer.install("89", "b4200")
        publish_archive(digest="e" * 64)
        with pytest.raises(ChecksumMismatchError):
            installer.install("89", "b4200", force=True)
        assert (layout.path_for("b4200", "89") / "bin" / "llama-cli").is_file()


class TestCorruptCache:
    @pytest.fixture
    def built(self, orchestrator, tmp_dir: Path, store):
        request = BuildRequest(sm="89", src_dir=tmp_dir / "src", jobs=2)
        orchestrator.run(request)
        return request

    def test_flipped_byte_triggers_rebuild(self, orchestrator, built, store, toolchain):
        path = store.path_for(CACHED)
        raw = bytearray(path.read_bytes())
        raw[len(raw) // 2] ^= 0xFF
        path.write_bytes(bytes(raw))

        result = orchestrator.run(built)
        assert result.skipped is False
        assert toolchain.compile_calls == 2
        assert store.verify(CACHED).ok

    def test_truncated_with_matching_sidecar_triggers_rebuild(
        self, orchestrator, built, store, toolchain
    ):
        # Digest agrees with the file, but the tar.gz stream is cut short.
        path = store.path_for(CACHED)
        path.write_bytes(path.read_bytes()[:40])
        store.checksum_path_for(CACHED).write_text(
            format_checksum_line(sha256_file(path), CACHED), encoding="utf-8"
        )

        result = orchestrator.run(built)
        assert BuildState.COMPILE in result.states
        assert toolchain.compile_calls == 2

    def test_zero_byte_archive_triggers_rebuild(self, orchestrator, built, store, toolchain):
        store.path_for(CACHED).write_bytes(b"")
        store.checksum_path_for(CACHED).unlink()
        result = orchestrator.run(built)
        assert result.skipped is False
        assert result.artifact.size_bytes > 0

    def test_garbage_sidecar_triggers_rebuild(self, orchestrator, built, store, toolchain):
        store.checksum_path_for(CACHED).write_text("garbage\n")
        result = orchestrator.run(built)
        assert result.skipped is False
        assert toolchain.compile_calls == 2
