"""Local installation layout and install results."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class InstallLayout(BaseModel):
    """Maps a (version, SM) pair to its own directory.

    ``install_dir`` is the user-facing base (default ``~/.local/bin/llama``);
    each pair installs to the sibling ``llama-{version}-sm{sm}`` and entry
    point wrappers go in the shared parent (``~/.local/bin``).
    """

    model_config = ConfigDict(frozen=True)

    install_dir: Path
    arch_prefix: str = "sm"

    @property
    def bin_dir(self) -> Path:
        return self.install_dir.parent

    def path_for(self, version: str, sm: str) -> Path:
        return self.bin_dir / f"{self.install_dir.name}-{version}-{self.arch_prefix}{sm}"

    def lock_path_for(self, version: str, sm: str) -> Path:
        target = self.path_for(version, sm)
        return target.parent / f".{target.name}.lock"

    def is_installed(self, version: str, sm: str) -> bool:
        return self.path_for(version, sm).is_dir()


class InstallPlan(BaseModel):
    """Dry-run description of a pull."""

    model_config = ConfigDict(frozen=True)

    repo: str
    version: str
    sm: str
    install_dir: Path
    steps: list[str] = Field(default_factory=list)


class InstallResult(BaseModel):
    """Outcome of an install request."""

    model_config = ConfigDict(frozen=True)

    version: str
    sm: str
    path: Path
    already_installed: bool = False
    asset_name: str = ""
    sha256: str = ""
    wrappers: list[Path] = Field(default_factory=list)
