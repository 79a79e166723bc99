"""Candidate scoring: hard checks exclude, weighted features rank."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class HardCheck:
    """Returns a failure reason, or None when the candidate passes."""

    name: str
    check: Callable[[Any, Any], Optional[str]]


@dataclass(frozen=True)
class Feature:
    """
    Graded feature: `grade` returns (grade in [0, 1], reason).

    The contribution is weight * grade; the reason is reported only when the
    grade is positive.
    """

    name: str
    weight: float
    grade: Callable[[Any, Any], Tuple[float, str]]


@dataclass
class ScoredCandidate(Generic[T]):
    key: Any
    item: T
    score: float
    feasible: bool = True
    reasons: List[str] = field(default_factory=list)
    features: Dict[str, float] = field(default_factory=dict)


def rank(
    candidates: Iterable[T],
    features: Sequence[Union[HardCheck, Feature]],
    context: Any = None,
    key: Callable[[T], Any] = lambda item: item,
    limit: Optional[int] = None,
    include_infeasible: bool = False,
) -> List[ScoredCandidate[T]]:
    """
    Score candidates against hard checks and weighted features.

    Args:
        candidates: Items to score
        features: HardCheck and Feature definitions, applied in order
        context: Passed unchanged to every check and feature
        key: Derives the reported key from an item
        limit: Keep only the top N feasible candidates
        include_infeasible: Append excluded candidates (score 0, feasible=False)
            after the ranked ones

    Returns:
        Candidates sorted by score descending; ties keep input order
    """
    checks = [f for f in features if isinstance(f, HardCheck)]
    graded = [f for f in features if isinstance(f, Feature)]

    feasible: List[ScoredCandidate[T]] = []
    excluded: List[ScoredCandidate[T]] = []
    for item in candidates:
        failures = [reason for reason in (c.check(item, context) for c in checks) if reason]
        if failures:
            excluded.append(ScoredCandidate(key(item), item, 0.0, False, failures, {}))
            continue

        score = 0.0
        reasons: List[str] = []
        contributions: Dict[str, float] = {}
        for feature in graded:
            grade, reason = feature.grade(item, context)
            grade = min(max(float(grade), 0.0), 1.0)
            contribution = feature.weight * grade
            contributions[feature.name] = contribution
            score += contribution
            if grade > 0 and reason:
                reasons.append(reason)
        feasible.append(ScoredCandidate(key(item), item, score, True, reasons, contributions))

    feasible.sort(key=lambda c: -c.score)
    if limit is not None:
        feasible = feasible[:limit]
    if include_infeasible:
        return feasible + excluded
    return feasible


def binary(condition: bool) -> float:
    return 1.0 if condition else 0.0
