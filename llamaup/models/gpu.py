"""Architecture family and pattern table models.

The pattern table (``gpu_map.json``) maps each SM version to a display name,
a minimum CUDA version, and the GPU name substrings that identify it.  It is
loaded once per process and never mutated afterwards.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ArchitectureFamily(BaseModel):
    """One hardware generation: an SM code plus its identifying patterns."""

    model_config = ConfigDict(frozen=True)

    key: str = ""  # family key in the table, e.g. "ada"
    sm: str
    architecture: str
    cuda_min: str
    gpus: tuple[str, ...] = ()


class PatternTable(BaseModel):
    """Immutable GPU pattern table.

    Family order is preserved from the source file; it is the tie-break
    order used by the resolver when two patterns of equal length match.
    """

    model_config = ConfigDict(frozen=True)

    families: tuple[ArchitectureFamily, ...] = ()

    @model_validator(mode="after")
    def _unique_sm(self) -> PatternTable:
        seen: dict[str, str] = {}
        for family in self.families:
            if family.sm in seen:
                raise ValueError(
                    f"SM {family.sm} is declared by both "
                    f"'{seen[family.sm]}' and '{family.key}'"
                )
            seen[family.sm] = family.key
        return self

    @classmethod
    def from_mapping(cls, data: dict) -> PatternTable:
        """Build a table from the parsed ``gpu_map.json`` document."""
        raw = data.get("gpu_families")
        if not isinstance(raw, dict):
            raise ValueError("pattern table has no 'gpu_families' object")
        families = [
            ArchitectureFamily(key=key, **entry) for key, entry in raw.items()
        ]
        return cls(families=tuple(families))

    @property
    def sm_versions(self) -> list[str]:
        """All SM codes, numerically sorted."""
        return sorted(
            (f.sm for f in self.families),
            key=lambda sm: (not sm.isdigit(), int(sm) if sm.isdigit() else 0, sm),
        )

    def family_for(self, sm: str) -> ArchitectureFamily | None:
        for family in self.families:
            if family.sm == sm:
                return family
        return None

    def patterns(self) -> list[tuple[str, ArchitectureFamily]]:
        """Flatten the table into ``(pattern, family)`` pairs in table order."""
        return [(gpu, family) for family in self.families for gpu in family.gpus]


class ResolvedTarget(BaseModel):
    """Outcome of resolving one hardware descriptor.

    ``sm`` is ``None`` for the explicit "no match" state.
    """

    model_config = ConfigDict(frozen=True)

    descriptor: str
    sm: str | None = None
    family: ArchitectureFamily | None = None
    matched_pattern: str | None = None
    explicit: bool = False  # True when the SM came from the caller, not detection

    @property
    def is_known(self) -> bool:
        return self.sm is not None


class PatternOverlap(BaseModel):
    """A pattern that is a substring of a pattern in a different family."""

    model_config = ConfigDict(frozen=True)

    shorter: str
    shorter_sm: str
    longer: str
    longer_sm: str

    def describe(self) -> str:
        return (
            f"'{self.shorter}' (SM {self.shorter_sm}) is a substring of "
            f"'{self.longer}' (SM {self.longer_sm})"
        )


class GpuReport(BaseModel):
    """Per-device line of the ``detect`` report."""

    model_config = ConfigDict(frozen=True)

    name: str
    sm: str = ""
    architecture: str = "unknown"
    cuda_min: str = "unknown"


class DetectReport(BaseModel):
    """Full ``detect`` report: devices plus toolkit and driver versions."""

    model_config = ConfigDict(frozen=True)

    gpus: list[GpuReport] = Field(default_factory=list)
    cuda_toolkit: str = "not found"
    driver: str = "not found"

    @property
    def all_known(self) -> bool:
        return all(g.sm for g in self.gpus)
