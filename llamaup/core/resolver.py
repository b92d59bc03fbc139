"""Architecture resolver: GPU name -> CUDA SM code.

Resolution is longest-match over case-insensitive substring containment.
A more specific pattern ("RTX 4090 D") always beats a shorter one it
contains ("RTX 4090"), regardless of where either sits in the table.  On
an exact length tie the first pattern in table order wins.

All functions here are pure over an explicitly passed ``PatternTable``.
"""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path

from pydantic import ValidationError

from llamaup.models.gpu import PatternOverlap, PatternTable, ResolvedTarget

logger = logging.getLogger(__name__)

_BUNDLED_TABLE = "gpu_map.json"


class PatternTableError(ValueError):
    """Raised when the pattern table cannot be read or is malformed."""


class UnknownArchitectureError(ValueError):
    """Raised when an explicitly requested SM is not in the table."""

    def __init__(self, sm: str, valid: list[str]) -> None:
        self.sm = sm
        self.valid = valid
        super().__init__(
            f"Unknown SM version '{sm}'. Valid values: {', '.join(valid)}"
        )


class ResolutionError(LookupError):
    """Raised when a descriptor matches no pattern and a target is required."""

    def __init__(self, descriptor: str) -> None:
        self.descriptor = descriptor
        self.suggestion = (
            "Pass --sm <version> to choose the architecture manually, or add "
            "the GPU name to gpu_map.json."
        )
        super().__init__(f"GPU '{descriptor}' is not in the pattern table")


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------


def load_pattern_table(path: Path | None = None) -> PatternTable:
    """Load and validate a pattern table.

    Parameters
    ----------
    path:
        A ``gpu_map.json`` file.  ``None`` loads the table bundled with the
        package.
    """
    try:
        if path is None:
            raw = (
                resources.files("llamaup.data")
                .joinpath(_BUNDLED_TABLE)
                .read_text(encoding="utf-8")
            )
            source = f"<bundled {_BUNDLED_TABLE}>"
        else:
            raw = Path(path).read_text(encoding="utf-8")
            source = str(path)
    except OSError as exc:
        raise PatternTableError(f"Cannot read pattern table {path}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PatternTableError(f"{source} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PatternTableError(f"{source}: top level must be a JSON object")

    try:
        table = PatternTable.from_mapping(data)
    except (ValidationError, ValueError, TypeError) as exc:
        raise PatternTableError(f"{source}: {exc}") from exc

    logger.debug(
        "Loaded pattern table %s (%d families, %d patterns)",
        source,
        len(table.families),
        len(table.patterns()),
    )
    return table


# ------------------------------------------------------------------
# Resolution
# ------------------------------------------------------------------


def resolve(descriptor: str, table: PatternTable) -> ResolvedTarget:
    """Resolve one hardware descriptor against *table*.

    Returns a ``ResolvedTarget`` whose ``sm`` is ``None`` when nothing
    matches; callers that need a concrete target use ``require``.
    """
    needle = descriptor.lower()
    best_len = 0
    best: ResolvedTarget | None = None

    for pattern, family in table.patterns():
        if not pattern:
            continue
        # Strict ">" keeps the earliest pattern on equal length.
        if pattern.lower() in needle and len(pattern) > best_len:
            best_len = len(pattern)
            best = ResolvedTarget(
                descriptor=descriptor,
                sm=family.sm,
                family=family,
                matched_pattern=pattern,
            )

    if best is None:
        return ResolvedTarget(descriptor=descriptor)
    return best


def require(descriptor: str, table: PatternTable) -> ResolvedTarget:
    """Like ``resolve`` but raise ``ResolutionError`` on no match."""
    target = resolve(descriptor, table)
    if not target.is_known:
        raise ResolutionError(descriptor)
    return target


def resolve_explicit(sm: str, table: PatternTable) -> ResolvedTarget:
    """Validate a caller-supplied SM code and bind it to its family."""
    family = table.family_for(sm)
    if family is None:
        raise UnknownArchitectureError(sm, table.sm_versions)
    return ResolvedTarget(
        descriptor=f"sm{sm}", sm=sm, family=family, explicit=True
    )


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def validate_patterns(table: PatternTable) -> list[PatternOverlap]:
    """Report every cross-family pair where one pattern contains the other.

    Same-family overlap is harmless and ignored.  Each finding is logged at
    WARNING; nothing is raised.
    """
    flat = table.patterns()
    overlaps: list[PatternOverlap] = []

    for i, (p1, f1) in enumerate(flat):
        for p2, f2 in flat[i + 1 :]:
            if f1.sm == f2.sm:
                continue
            a, b = p1.lower(), p2.lower()
            if a == b or a in b:
                overlaps.append(
                    PatternOverlap(shorter=p1, shorter_sm=f1.sm, longer=p2, longer_sm=f2.sm)
                )
            elif b in a:
                overlaps.append(
                    PatternOverlap(shorter=p2, shorter_sm=f2.sm, longer=p1, longer_sm=f1.sm)
                )

    for overlap in overlaps:
        logger.warning("Ambiguous GPU pattern: %s", overlap.describe())
    return overlaps
