"""Build state machine models.

The build path is a fixed sequence of states::

    RESOLVE_INPUTS -> CHECK_EXISTING -> {SKIP | CLEAN_AND_BUILD}
        -> COMPILE -> PACKAGE -> HASH -> (PUBLISH) -> DONE

Any non-terminal state may fall through to FAILED.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from llamaup.models.artifacts import BuiltArtifact


class BuildState(str, Enum):
    RESOLVE_INPUTS = "resolve_inputs"
    CHECK_EXISTING = "check_existing"
    SKIP = "skip"
    CLEAN_AND_BUILD = "clean_and_build"
    COMPILE = "compile"
    PACKAGE = "package"
    HASH = "hash"
    PUBLISH = "publish"
    DONE = "done"
    FAILED = "failed"


# Terminal states (DONE, FAILED) have no outgoing transitions.
VALID_TRANSITIONS: dict[BuildState, set[BuildState]] = {
    BuildState.RESOLVE_INPUTS: {BuildState.CHECK_EXISTING, BuildState.FAILED},
    BuildState.CHECK_EXISTING: {
        BuildState.SKIP,
        BuildState.CLEAN_AND_BUILD,
        BuildState.FAILED,
    },
    BuildState.SKIP: {BuildState.PUBLISH, BuildState.DONE, BuildState.FAILED},
    BuildState.CLEAN_AND_BUILD: {BuildState.COMPILE, BuildState.FAILED},
    BuildState.COMPILE: {BuildState.PACKAGE, BuildState.FAILED},
    BuildState.PACKAGE: {BuildState.HASH, BuildState.FAILED},
    BuildState.HASH: {BuildState.PUBLISH, BuildState.DONE, BuildState.FAILED},
    BuildState.PUBLISH: {BuildState.DONE, BuildState.FAILED},
    BuildState.DONE: set(),
    BuildState.FAILED: set(),
}


class BuildTransition(BaseModel):
    """A single recorded state change."""

    model_config = ConfigDict(frozen=True)

    from_state: BuildState
    to_state: BuildState
    detail: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BuildRequest(BaseModel):
    """What the caller asked to build.

    ``version`` may be the ``"latest"`` sentinel; ``sm`` and
    ``toolchain_version`` are detected when omitted.
    """

    model_config = ConfigDict(frozen=True)

    version: str = "latest"
    sm: str | None = None
    toolchain_version: str | None = None
    jobs: int = Field(default_factory=lambda: os.cpu_count() or 4, ge=1)
    src_dir: Path = Path("/tmp/llamaup-src")
    publish: bool = False


class BuildInputs(BaseModel):
    """Fully resolved inputs produced by RESOLVE_INPUTS."""

    model_config = ConfigDict(frozen=True)

    version: str
    sm: str
    toolchain_version: str
    archive_name: str
    descriptor: str = ""  # GPU name the SM was detected from, if any


class BuildPlan(BaseModel):
    """Dry-run description of a build; unresolved inputs are placeholders."""

    model_config = ConfigDict(frozen=True)

    version: str
    sm: str
    toolchain_version: str
    src_dir: Path
    jobs: int
    output_dir: Path
    archive_name: str
    publish_repo: str | None = None
    steps: list[str] = Field(default_factory=list)


class BuildResult(BaseModel):
    """Outcome of a build-or-skip run."""

    model_config = ConfigDict(frozen=True)

    inputs: BuildInputs
    artifact: BuiltArtifact
    skipped: bool = False
    published: bool = False
    release_url: str = ""
    history: list[BuildTransition] = Field(default_factory=list)

    @property
    def states(self) -> list[BuildState]:
        """Visited states in order, starting with RESOLVE_INPUTS."""
        if not self.history:
            return []
        return [self.history[0].from_state] + [t.to_state for t in self.history]
