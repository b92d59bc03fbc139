"""Pydantic models for the llamaup pipeline.

All models are frozen: a resolved target, an artifact, or a release is never
mutated after creation.
"""

from llamaup.models.artifacts import (
    ArtifactIdentity,
    ArtifactVerification,
    BuiltArtifact,
    NamingScheme,
    Release,
    ReleaseAsset,
    ReleaseRow,
)
from llamaup.models.build import (
    VALID_TRANSITIONS,
    BuildInputs,
    BuildPlan,
    BuildRequest,
    BuildResult,
    BuildState,
    BuildTransition,
)
from llamaup.models.gpu import (
    ArchitectureFamily,
    DetectReport,
    GpuReport,
    PatternOverlap,
    PatternTable,
    ResolvedTarget,
)
from llamaup.models.install import InstallLayout, InstallPlan, InstallResult

__all__ = [
    "ArchitectureFamily",
    "ArtifactIdentity",
    "ArtifactVerification",
    "BuildInputs",
    "BuildPlan",
    "BuildRequest",
    "BuildResult",
    "BuildState",
    "BuildTransition",
    "BuiltArtifact",
    "DetectReport",
    "GpuReport",
    "InstallLayout",
    "InstallPlan",
    "InstallResult",
    "NamingScheme",
    "PatternOverlap",
    "PatternTable",
    "Release",
    "ReleaseAsset",
    "ReleaseRow",
    "ResolvedTarget",
    "VALID_TRANSITIONS",
]
