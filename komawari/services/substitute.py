"""Substitute-teacher suggestions for a cancelled lesson occurrence."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set

from komawari.config import SubstitutePolicy
from komawari.domain.models import (
    Availability,
    DailyChange,
    LessonBlock,
    Placement,
    SubstituteRequest,
    Teacher,
)
from komawari.domain.snapshot import DomainSnapshot
from komawari.errors import InvalidInputError

from .scoring import Feature, HardCheck, ScoredCandidate, binary, rank


@dataclass
class _Context:
    snapshot: DomainSnapshot
    request: SubstituteRequest
    block: LessonBlock
    policy: SubstitutePolicy
    absent: Set[str]
    teaching: Set[str]
    substituting: Set[str]
    day_load: Counter = field(default_factory=Counter)
    avg_load: float = 0.0
    sub_counts: Counter = field(default_factory=Counter)
    avg_subs: float = 0.0
    grades: Set[str] = field(default_factory=set)


def _average(counter: Counter) -> float:
    values = [v for v in counter.values() if v > 0]
    return sum(values) / len(values) if values else 0.0


def _build_context(snapshot, placements, request, changes, policy) -> _Context:
    block = snapshot.block_by_id.get(request.block_id)
    if block is None:
        raise InvalidInputError(f"Substitute request references unknown block {request.block_id}")

    day_load: Counter = Counter()
    teaching: Set[str] = set()
    for placement in placements:
        if placement.day != request.day:
            continue
        other = snapshot.block_by_id.get(placement.block_id)
        if other is None:
            continue
        for tid in other.teacher_ids:
            day_load[tid] += 1
            if placement.period == request.period:
                teaching.add(tid)

    sub_counts: Counter = Counter()
    substituting: Set[str] = set()
    for change in changes:
        if not change.substitute_teacher_id:
            continue
        sub_counts[change.substitute_teacher_id] += 1
        if change.day == request.day and change.period == request.period:
            substituting.add(change.substitute_teacher_id)

    grades = {g for g in (snapshot.grade_of_class(c) for c in block.class_ids) if g is not None}

    return _Context(
        snapshot=snapshot,
        request=request,
        block=block,
        policy=policy,
        absent=set(request.absent_teacher_ids or block.teacher_ids),
        teaching=teaching,
        substituting=substituting,
        day_load=day_load,
        avg_load=_average(day_load),
        sub_counts=sub_counts,
        avg_subs=_average(sub_counts),
        grades=grades,
    )


def _hard_checks() -> List[HardCheck]:
    def absent(t: Teacher, ctx: _Context):
        return "欠勤" if t.id in ctx.absent else None

    def unavailable(t: Teacher, ctx: _Context):
        status = t.status_at(ctx.request.day, ctx.request.period)
        return "不可の時間帯" if status == Availability.UNAVAILABLE else None

    def on_duty(t: Teacher, ctx: _Context):
        duty = ctx.snapshot.duty_slots.get(t.id, {}).get((ctx.request.day, ctx.request.period))
        return f"校務 ({duty.name})" if duty is not None else None

    def teaching(t: Teacher, ctx: _Context):
        return "授業あり" if t.id in ctx.teaching else None

    def substituting(t: Teacher, ctx: _Context):
        return "補欠済み" if t.id in ctx.substituting else None

    def qualified(t: Teacher, ctx: _Context):
        if ctx.policy.require_subject_match and not t.can_teach(ctx.block.subject_id):
            return "担当外の教科"
        return None

    return [
        HardCheck("absent", absent),
        HardCheck("unavailable", unavailable),
        HardCheck("duty", on_duty),
        HardCheck("teaching", teaching),
        HardCheck("substituting", substituting),
        HardCheck("subject", qualified),
    ]


def _features(policy: SubstitutePolicy) -> List[Feature]:
    def same_subject(t: Teacher, ctx: _Context):
        subject = ctx.block.subject_id
        if t.main_subject_id == subject:
            return 1.0, "同教科"
        if subject in t.subject_ids:
            return 0.5, "同教科"
        return 0.0, ""

    def low_load(t: Teacher, ctx: _Context):
        load = ctx.day_load[t.id]
        return binary(load < ctx.avg_load), "現在の負荷"

    def fairness(t: Teacher, ctx: _Context):
        return binary(ctx.sub_counts[t.id] <= ctx.avg_subs), "補欠回数"

    def same_grade(t: Teacher, ctx: _Context):
        taught = ctx.snapshot.grades_taught_by(t.id)
        return binary(bool(ctx.grades & taught)), "同学年"

    return [
        Feature("available", policy.available_weight, lambda t, ctx: (1.0, "対応可能")),
        Feature("same_subject", policy.same_subject_weight, same_subject),
        Feature("low_load", policy.low_load_weight, low_load),
        Feature("fairness", policy.fairness_weight, fairness),
        Feature("same_grade", policy.same_grade_weight, same_grade),
    ]


def suggest_substitutes(
    snapshot: DomainSnapshot,
    placements: Iterable[Placement],
    request: SubstituteRequest,
    changes: Sequence[DailyChange] = (),
    policy: Optional[SubstitutePolicy] = None,
    limit: Optional[int] = None,
) -> List[ScoredCandidate[Teacher]]:
    """
    Rank teachers who could cover a lesson occurrence.

    Args:
        snapshot: Domain snapshot
        placements: The adopted timetable
        request: Cancelled occurrence; absent teachers default to the block's
        changes: Substitutions already decided (same day)
        policy: Scoring weights and the subject-match rule
        limit: Keep only the top N

    Returns:
        ScoredCandidate list keyed by teacher id, best first

    Raises:
        InvalidInputError: If the request references an unknown block
    """
    policy = policy or SubstitutePolicy()
    ctx = _build_context(snapshot, list(placements), request, changes, policy)
    return rank(
        snapshot.teachers,
        _hard_checks() + _features(policy),
        ctx,
        key=lambda t: t.id,
        limit=limit,
    )
