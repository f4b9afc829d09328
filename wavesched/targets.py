"""
wavesched — Target Selection

Ranks candidate targets when none is named explicitly. A target is
usable when it is rooted, has a positive maximum value and its
required skill level is within reach; usable targets are ordered by
maximum value (highest first), then by name.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TargetCandidate:
    name: str
    max_value: float
    required_level: int = 0
    rooted: bool = True


def is_usable(candidate: TargetCandidate, skill_level: int) -> bool:
    return (
        candidate.rooted
        and candidate.max_value > 0
        and candidate.required_level <= skill_level
    )


def rank_targets(
    candidates: list[TargetCandidate],
    skill_level: int,
) -> list[TargetCandidate]:
    usable = [c for c in candidates if is_usable(c, skill_level)]
    return sorted(usable, key=lambda c: (-c.max_value, c.name))


def pick_target(
    candidates: list[TargetCandidate],
    skill_level: int,
) -> str | None:
    ranked = rank_targets(candidates, skill_level)
    return ranked[0].name if ranked else None
