"""Exam-supervisor suggestions and greedy assignment over an exam plan."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from komawari.domain.models import Availability, ExamAssignment, ExamSlot, Teacher
from komawari.domain.snapshot import DomainSnapshot

from .scoring import Feature, HardCheck, ScoredCandidate, binary, rank

AVAILABLE_WEIGHT = 20.0
CLASS_SUBJECT_WEIGHT = 50.0
SAME_SUBJECT_WEIGHT = 30.0
BALANCE_WEIGHT = 20.0


@dataclass
class _Context:
    slot: ExamSlot
    busy: Set[str]
    class_teachers: Set[str]
    subject_teachers: Set[str]
    counts: Counter
    avg_count: float


def _build_context(snapshot: DomainSnapshot, slot: ExamSlot, assignments: Sequence[ExamAssignment]) -> _Context:
    counts = Counter(a.supervisor_id for a in assignments)
    avg_count = sum(counts.values()) / len(counts) if counts else 0.0
    busy = {a.supervisor_id for a in assignments if a.date == slot.date and a.period == slot.period}

    class_teachers: Set[str] = set()
    subject_teachers: Set[str] = set()
    for block in snapshot.lesson_blocks:
        if block.subject_id != slot.subject_id:
            continue
        subject_teachers.update(block.teacher_ids)
        if slot.class_id in block.class_ids:
            class_teachers.update(block.teacher_ids)

    return _Context(slot, busy, class_teachers, subject_teachers, counts, avg_count)


def _checks_and_features() -> list:
    def busy(t: Teacher, ctx: _Context):
        return "監督中" if t.id in ctx.busy else None

    def unavailable(t: Teacher, ctx: _Context):
        if ctx.slot.day is None:
            return None
        if t.status_at(ctx.slot.day, ctx.slot.period) == Availability.UNAVAILABLE:
            return "不可の時間帯"
        return None

    def class_subject(t: Teacher, ctx: _Context):
        return binary(t.id in ctx.class_teachers), "担当教科"

    def same_subject(t: Teacher, ctx: _Context):
        return binary(t.id in ctx.subject_teachers and t.id not in ctx.class_teachers), "同教科"

    def balance(t: Teacher, ctx: _Context):
        return binary(ctx.counts[t.id] <= ctx.avg_count), "監督回数"

    return [
        HardCheck("busy", busy),
        HardCheck("unavailable", unavailable),
        Feature("available", AVAILABLE_WEIGHT, lambda t, ctx: (1.0, "対応可能")),
        Feature("class_subject", CLASS_SUBJECT_WEIGHT, class_subject),
        Feature("same_subject", SAME_SUBJECT_WEIGHT, same_subject),
        Feature("balance", BALANCE_WEIGHT, balance),
    ]


def suggest_supervisors(
    snapshot: DomainSnapshot,
    slot: ExamSlot,
    assignments: Sequence[ExamAssignment] = (),
    limit: Optional[int] = None,
) -> List[ScoredCandidate[Teacher]]:
    """
    Rank teachers for supervising one exam sitting.

    Args:
        snapshot: Domain snapshot (teachers and lesson blocks)
        slot: The exam sitting
        assignments: Supervisor assignments made so far
        limit: Keep only the top N

    Returns:
        ScoredCandidate list keyed by teacher id, best first
    """
    ctx = _build_context(snapshot, slot, assignments)
    return rank(snapshot.teachers, _checks_and_features(), ctx, key=lambda t: t.id, limit=limit)


def auto_assign_supervisors(
    snapshot: DomainSnapshot,
    exam_slots: Sequence[ExamSlot],
    assignments: Sequence[ExamAssignment] = (),
) -> List[ExamAssignment]:
    """
    Give every unassigned exam sitting its top-ranked supervisor.

    Sittings are processed in order; each new assignment feeds the busy set
    and the load balance of the next ones. Sittings with no eligible teacher
    are left unassigned.

    Returns:
        Existing assignments followed by the new ones
    """
    result = list(assignments)
    assigned = {(a.date, a.period, a.class_id) for a in result}
    for slot in exam_slots:
        slot_key = (slot.date, slot.period, slot.class_id)
        if slot_key in assigned:
            continue
        candidates = suggest_supervisors(snapshot, slot, result, limit=1)
        if not candidates:
            continue
        result.append(
            ExamAssignment(
                date=slot.date,
                period=slot.period,
                subject_id=slot.subject_id,
                class_id=slot.class_id,
                supervisor_id=candidates[0].key,
                assigned_by="auto",
            )
        )
        assigned.add(slot_key)
    return result
