"""Shared test fixtures for llamaup.

The Registry, Toolchain and HardwareInventory capabilities are replaced by
in-memory fakes so nothing here touches the network, git, CMake or a GPU.
"""

from __future__ import annotations

import io
import shutil
import tarfile
from collections.abc import Callable
from itertools import count
from pathlib import Path

import pytest

from llamaup.core.artifact_store import LocalArtifactStore
from llamaup.core.builder import BuildOrchestrator
from llamaup.core.hasher import format_checksum_line, sha256_hex
from llamaup.core.installer import Installer
from llamaup.core.registry import (
    LATEST,
    ReleaseNotFoundError,
    RegistryAuthError,
    RegistryNetworkError,
)
from llamaup.core.release_client import ReleaseStoreClient
from llamaup.core.resolver import load_pattern_table
from llamaup.core.toolchain import ToolchainError
from llamaup.models.artifacts import NamingScheme, Release, ReleaseAsset
from llamaup.models.gpu import PatternTable
from llamaup.models.install import InstallLayout

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRegistry:
    """In-memory release store.  Every method call is recorded in ``calls``."""

    def __init__(self, repo: str = "acme/llamaup") -> None:
        self.repo = repo
        self.calls: list[tuple[str, str]] = []
        self.fail_upload: set[str] = set()
        self.auth_error: Exception | None = None
        self._order: list[str] = []
        self._assets: dict[str, dict[str, bytes]] = {}
        self._ids: dict[tuple[str, str], int] = {}
        self._next_id = count(1)

    # -- test helpers -------------------------------------------------------

    def url_for(self, tag: str, name: str) -> str:
        return f"https://downloads.example.test/{self.repo}/{tag}/{name}"

    def add_release(self, tag: str, files: dict[str, bytes] | None = None) -> None:
        if tag not in self._assets:
            self._order.append(tag)
            self._assets[tag] = {}
        for name, data in (files or {}).items():
            self._put(tag, name, data)

    def asset_names(self, tag: str) -> list[str]:
        return sorted(self._assets.get(tag, {}))

    def asset_bytes(self, tag: str, name: str) -> bytes:
        return self._assets[tag][name]

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    def _put(self, tag: str, name: str, data: bytes) -> None:
        self._assets[tag][name] = data
        self._ids[(tag, name)] = next(self._next_id)

    def _release(self, tag: str) -> Release:
        return Release(
            tag=tag,
            name=f"llama.cpp {tag}",
            release_id=self._order.index(tag) + 1,
            html_url=f"https://github.com/{self.repo}/releases/tag/{tag}",
            upload_url=f"https://uploads.example.test/{self.repo}/{tag}/assets{{?name,label}}",
            assets=tuple(
                ReleaseAsset(
                    name=name,
                    url=self.url_for(tag, name),
                    size=len(data),
                    asset_id=self._ids[(tag, name)],
                )
                for name, data in sorted(self._assets[tag].items())
            ),
        )

    def _lookup_url(self, url: str) -> bytes | None:
        for tag, files in self._assets.items():
            for name, data in files.items():
                if self.url_for(tag, name) == url:
                    return data
        return None

    # -- Registry protocol --------------------------------------------------

    def get_release(self, tag: str) -> Release:
        self.calls.append(("get_release", tag))
        if tag == LATEST:
            if not self._order:
                raise ReleaseNotFoundError(self.repo, tag)
            return self._release(self._order[-1])
        if tag not in self._assets:
            raise ReleaseNotFoundError(self.repo, tag)
        return self._release(tag)

    def list_releases(self, limit: int = 10) -> list[Release]:
        self.calls.append(("list_releases", str(limit)))
        return [self._release(tag) for tag in reversed(self._order)][:limit]

    def check_auth(self) -> None:
        self.calls.append(("check_auth", ""))
        if self.auth_error is not None:
            raise self.auth_error

    def create_release(self, tag: str, title: str = "", notes: str = "") -> Release:
        self.calls.append(("create_release", tag))
        self.add_release(tag)
        return self._release(tag)

    def upload_asset(self, release: Release, path: Path) -> None:
        self.calls.append(("upload_asset", path.name))
        if path.name in self.fail_upload:
            raise RegistryNetworkError(f"upload of {path.name} reset by peer")
        self._put(release.tag, path.name, path.read_bytes())

    def delete_asset(self, release: Release, name: str) -> bool:
        self.calls.append(("delete_asset", name))
        return self._assets.get(release.tag, {}).pop(name, None) is not None

    def download(self, url: str, dest: Path, progress=None) -> int:
        self.calls.append(("download", url))
        data = self._lookup_url(url)
        if data is None:
            raise RegistryNetworkError(f"Not found: {url}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        if progress is not None:
            progress(len(data), len(data))
        return len(data)

    def fetch_text(self, url: str) -> str:
        self.calls.append(("fetch_text", url))
        data = self._lookup_url(url)
        if data is None:
            raise RegistryNetworkError(f"Not found: {url}")
        return data.decode("utf-8")


class FakeToolchain:
    """Writes a tiny install tree instead of compiling."""

    def __init__(self, version: str = "12.4") -> None:
        self.version = version
        self.compile_calls = 0
        self.detect_calls = 0
        self.prepared: list[str] = []
        self.cleaned: list[str] = []
        self.fail_compile = False
        self.interrupt_compile = False

    def detect_version(self) -> str:
        self.detect_calls += 1
        return self.version

    def prepare_source(self, version: str, src_dir: Path) -> None:
        src_dir.mkdir(parents=True, exist_ok=True)
        self.prepared.append(version)

    def clean(self, src_dir: Path, sm: str) -> bool:
        build_dir = src_dir / f"build-sm{sm}"
        self.cleaned.append(sm)
        if build_dir.is_dir():
            shutil.rmtree(build_dir)
            return True
        return False

    def compile(self, src_dir: Path, sm: str, jobs: int, install_dir: Path) -> None:
        self.compile_calls += 1
        (src_dir / f"build-sm{sm}").mkdir(parents=True, exist_ok=True)
        if self.interrupt_compile:
            (install_dir / "bin").mkdir(parents=True, exist_ok=True)
            raise KeyboardInterrupt
        if self.fail_compile:
            raise ToolchainError(
                "cmake build failed (exit 1)",
                output="ggml-cuda.cu(42): error: identifier undefined",
            )
        (install_dir / "bin").mkdir(parents=True, exist_ok=True)
        (install_dir / "lib").mkdir(parents=True, exist_ok=True)
        for binary in ("llama-cli", "llama-server", "llama-bench"):
            (install_dir / "bin" / binary).write_text(f"#!/bin/sh\necho {binary} sm{sm}\n")
        (install_dir / "lib" / "libggml-cuda.so").write_bytes(b"\x7fELF" + sm.encode())


class FakeInventory:
    def __init__(self, names: list[str] | None = None, driver: str = "550.54.15") -> None:
        self.names = names if names is not None else ["NVIDIA GeForce RTX 4090"]
        self.driver = driver

    def descriptors(self) -> list[str]:
        return list(self.names)

    def driver_version(self) -> str | None:
        return self.driver


def make_archive_bytes(
    top: str = "llamaup-install-sm89",
    files: dict[str, bytes] | None = None,
) -> bytes:
    """Build a tar.gz in memory with every file under ``top/``."""
    files = files or {
        "bin/llama-cli": b"#!/bin/sh\necho cli\n",
        "bin/llama-server": b"#!/bin/sh\necho server\n",
        "lib/libggml-cuda.so": b"\x7fELF",
    }
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for rel, data in files.items():
            info = tarfile.TarInfo(f"{top}/{rel}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def table() -> PatternTable:
    """The bundled GPU pattern table."""
    return load_pattern_table()


@pytest.fixture
def naming() -> NamingScheme:
    return NamingScheme()


@pytest.fixture
def registry() -> FakeRegistry:
    """Release store registry with no releases yet."""
    return FakeRegistry()


@pytest.fixture
def upstream() -> FakeRegistry:
    """Source project registry with two tags, b4200 being latest."""
    reg = FakeRegistry("ggerganov/llama.cpp")
    reg.add_release("b4100")
    reg.add_release("b4200")
    return reg


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def store(tmp_dir: Path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_dir / "dist")


@pytest.fixture
def client(registry: FakeRegistry, naming: NamingScheme) -> ReleaseStoreClient:
    return ReleaseStoreClient(registry, naming)


@pytest.fixture
def orchestrator(
    table: PatternTable,
    toolchain: FakeToolchain,
    store: LocalArtifactStore,
    naming: NamingScheme,
    inventory: FakeInventory,
    upstream: FakeRegistry,
    client: ReleaseStoreClient,
    tmp_dir: Path,
) -> BuildOrchestrator:
    """BuildOrchestrator wired entirely to fakes."""
    return BuildOrchestrator(
        table,
        toolchain,
        store,
        naming=naming,
        work_dir=tmp_dir / "work",
        inventory=inventory,
        upstream=upstream,
        client=client,
    )


@pytest.fixture
def layout(tmp_dir: Path) -> InstallLayout:
    return InstallLayout(install_dir=tmp_dir / "home" / ".local" / "bin" / "llama")


@pytest.fixture
def installer(client: ReleaseStoreClient, layout: InstallLayout, tmp_dir: Path) -> Installer:
    return Installer(client, layout, download_dir=tmp_dir / "downloads")


@pytest.fixture
def publish_archive(
    registry: FakeRegistry, naming: NamingScheme
) -> Callable[..., tuple[str, bytes]]:
    """Publish an archive plus matching sidecar; returns (name, bytes).

    ``digest`` overrides the sidecar content to simulate a bad publish.
    """

    def _publish(
        tag: str = "b4200",
        sm: str = "89",
        cuda: str = "12.4",
        data: bytes | None = None,
        digest: str | None = None,
        with_sidecar: bool = True,
    ) -> tuple[str, bytes]:
        payload = data if data is not None else make_archive_bytes(f"llamaup-install-sm{sm}")
        name = naming.name_for(tag, cuda, sm)
        files = {name: payload}
        if with_sidecar:
            line = format_checksum_line(digest or sha256_hex(payload), name)
            files[naming.checksum_name(name)] = line.encode("utf-8")
        registry.add_release(tag, files)
        return name, payload

    return _publish


@pytest.fixture
def auth_denied() -> RegistryAuthError:
    return RegistryAuthError("Token has no push access to acme/llamaup", hint="Use a token")


@pytest.fixture
def archive_bytes() -> Callable[..., bytes]:
    """Factory for in-memory tar.gz archives laid out like a build output."""
    return make_archive_bytes
