"""Constraint evaluation for placements, in full and incremental form."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from komawari.config import ConstraintFamily, ConstraintLevel, ConstraintSet, SoftWeights
from komawari.domain.models import Availability, LessonBlock, Placement, Slot
from komawari.domain.snapshot import DomainSnapshot
from komawari.errors import InvalidInputError


@dataclass(frozen=True)
class Violation:
    """One broken rule, with the entities involved and a human-readable reason."""

    family: ConstraintFamily
    level: ConstraintLevel
    reason: str
    block_id: Optional[str] = None
    day: Optional[int] = None
    period: Optional[int] = None
    teacher_id: Optional[str] = None
    class_id: Optional[str] = None
    room_id: Optional[str] = None
    weight: float = 0.0

    @property
    def is_hard(self) -> bool:
        return self.level == ConstraintLevel.HARD


@dataclass(frozen=True)
class Evaluation:
    hard_violations: Tuple[Violation, ...]
    soft_violations: Tuple[Violation, ...]
    soft_penalty: float
    breakdown: Mapping[str, float] = field(default_factory=dict)

    @property
    def feasible(self) -> bool:
        return not self.hard_violations


class ScheduleState:
    """
    Occupancy maps for a partial timetable.

    `check` reports the violations that placing a unit would introduce, so the
    search never rescans the whole timetable per node. `place` / `remove`
    keep the maps in sync; both are exact inverses.
    """

    def __init__(
        self,
        snapshot: DomainSnapshot,
        rules: Optional[ConstraintSet] = None,
        weights: Optional[SoftWeights] = None,
    ):
        self.snapshot = snapshot
        self.rules = rules or ConstraintSet()
        self.weights = weights or SoftWeights()
        self.teacher_at: Dict[str, Dict[Slot, str]] = defaultdict(dict)
        self.class_at: Dict[str, Dict[Slot, str]] = defaultdict(dict)
        self.room_at: Dict[str, Dict[Slot, List[str]]] = defaultdict(lambda: defaultdict(list))
        self.teacher_day: Counter = Counter()
        self.teacher_week: Counter = Counter()
        self.room_day: Counter = Counter()
        self.block_day: Counter = Counter()
        self.lessons: Counter = Counter()  # (class_id, subject_id, day) -> lessons
        self.placed: Counter = Counter()  # Placement -> multiplicity

    # ------------------------------------------------------------------ #
    # incremental checks
    # ------------------------------------------------------------------ #

    def check(self, block: LessonBlock, day: int, start: int, span: Optional[int] = None) -> List[Violation]:
        """Violations introduced by placing `block` on day at periods start..start+span-1."""
        span = block.span if span is None else span
        return list(self._iter_violations(block, day, list(range(start, start + span)), hard_only=False))

    def is_legal(self, block: LessonBlock, day: int, start: int, span: Optional[int] = None) -> bool:
        span = block.span if span is None else span
        periods = list(range(start, start + span))
        return next(self._iter_violations(block, day, periods, hard_only=True), None) is None

    def placement_cost(self, block: LessonBlock, day: int, start: int, span: Optional[int] = None) -> float:
        """Soft cost estimate of a placement; used to order candidate slots."""
        span = block.span if span is None else span
        periods = list(range(start, start + span))
        cost = sum(
            v.weight
            for v in self._iter_violations(block, day, periods, hard_only=False)
            if v.level == ConstraintLevel.SOFT
        )
        w = self.weights
        new_lesson = self._adds_lesson(block, day)
        for cid in block.class_ids:
            if new_lesson:
                cost += w.subject_distribution * self.lessons[(cid, block.subject_id, day)]
            cost += w.class_gap_penalty * self.gap_delta(self.class_at.get(cid, {}), day, periods)
        for tid in block.teacher_ids:
            cost += w.teacher_load_balance * self.teacher_day[(tid, day)]
            teacher = self.snapshot.teacher_by_id.get(tid)
            if teacher is not None:
                cost -= w.preferred_slot * sum(
                    1 for p in periods if teacher.status_at(day, p) == Availability.PREFERRED
                )
        for rid in block.room_ids:
            cost += w.room_utilization * self.room_day[(rid, day)]
        return cost

    def _adds_lesson(self, block: LessonBlock, day: int) -> bool:
        return not block.is_consecutive or self.block_day[(block.id, day)] == 0

    @staticmethod
    def gap_delta(occupied: Mapping[Slot, str], day: int, periods: Sequence[int]) -> int:
        before = sorted(p for (d, p) in occupied if d == day)
        after = sorted(set(before) | set(periods))
        return _gaps(after) - _gaps(before)

    def _level(self, family: ConstraintFamily) -> ConstraintLevel:
        return self.rules.level(family)

    def _iter_violations(
        self,
        block: LessonBlock,
        day: int,
        periods: List[int],
        hard_only: bool,
    ) -> Iterator[Violation]:
        snap = self.snapshot
        cal = snap.calendar
        rules = self.rules

        def wanted(family: ConstraintFamily) -> bool:
            level = rules.level(family)
            if level == ConstraintLevel.IGNORE:
                return False
            return level == ConstraintLevel.HARD or not hard_only

        def make(family: ConstraintFamily, reason: str, period: Optional[int] = None, **ids) -> Violation:
            return Violation(
                family=family,
                level=rules.level(family),
                reason=reason,
                block_id=block.id,
                day=day,
                period=period,
                weight=rules.weight(family),
                **ids,
            )

        start, end = periods[0], periods[-1]

        # shape
        if not cal.contains(day, start) or not cal.contains(day, end):
            yield make(ConstraintFamily.CONSECUTIVE_ADJACENCY, "連続駒が1日の時限に収まりません", start)
            return
        if cal.crosses_lunch(start, len(periods)):
            yield make(ConstraintFamily.CONSECUTIVE_ADJACENCY, "連続駒が昼休みをまたいでいます", start)

        for period in periods:
            slot = (day, period)
            if self.placed[Placement(block.id, day, period)]:
                yield make(ConstraintFamily.CLASS_CONFLICT, "同じ駒が同じ時間帯に重複しています", period)
            for tid in block.teacher_ids:
                if slot in self.teacher_at.get(tid, {}):
                    yield make(
                        ConstraintFamily.TEACHER_CONFLICT, "先生が同じ時間帯に別の授業を担当", period, teacher_id=tid
                    )
            for cid in block.class_ids:
                if slot in self.class_at.get(cid, {}):
                    yield make(ConstraintFamily.CLASS_CONFLICT, "クラスが同じ時間帯に別の授業", period, class_id=cid)
            if wanted(ConstraintFamily.ROOM_CONFLICT):
                for rid in block.room_ids:
                    room = snap.room_by_id.get(rid)
                    capacity = room.capacity if room else 1
                    if rid in self.room_at and len(self.room_at[rid].get(slot, ())) >= capacity:
                        yield make(ConstraintFamily.ROOM_CONFLICT, "教室が同じ時間帯に使用中", period, room_id=rid)
            if wanted(ConstraintFamily.TEACHER_AVAILABILITY):
                for tid in block.teacher_ids:
                    teacher = snap.teacher_by_id.get(tid)
                    if teacher and teacher.status_at(day, period) == Availability.UNAVAILABLE:
                        yield make(
                            ConstraintFamily.TEACHER_AVAILABILITY, "先生が不可の時間帯です", period, teacher_id=tid
                        )
            if wanted(ConstraintFamily.ROOM_AVAILABILITY):
                for rid in block.room_ids:
                    room = snap.room_by_id.get(rid)
                    if room and room.status_at(day, period) == Availability.UNAVAILABLE:
                        yield make(ConstraintFamily.ROOM_AVAILABILITY, "教室が利用不可の時間帯", period, room_id=rid)
            if wanted(ConstraintFamily.SCHOOL_AFFAIR):
                for tid in block.teacher_ids:
                    duty = snap.duty_slots.get(tid, {}).get(slot)
                    if duty is not None:
                        yield make(
                            ConstraintFamily.SCHOOL_AFFAIR,
                            f"先生の校務時間帯と重複 ({duty.name})",
                            period,
                            teacher_id=tid,
                        )
            if wanted(ConstraintFamily.SUBJECT_PLACEMENT):
                rule = snap.rule_by_subject.get(block.subject_id)
                if rule is not None and not rule.permits(period):
                    yield make(ConstraintFamily.SUBJECT_PLACEMENT, "教科の配置が禁止された時限", period)

        added = len(periods)

        if wanted(ConstraintFamily.TEACHER_DAILY_LIMIT):
            for tid in block.teacher_ids:
                teacher = snap.teacher_by_id.get(tid)
                if teacher and teacher.max_per_day is not None:
                    if self.teacher_day[(tid, day)] + added > teacher.max_per_day:
                        yield make(
                            ConstraintFamily.TEACHER_DAILY_LIMIT,
                            f"先生の1日最大コマ数({teacher.max_per_day})を超過",
                            start,
                            teacher_id=tid,
                        )
        if wanted(ConstraintFamily.TEACHER_WEEKLY_LIMIT):
            for tid in block.teacher_ids:
                teacher = snap.teacher_by_id.get(tid)
                if teacher and teacher.max_per_week is not None:
                    if self.teacher_week[tid] + added > teacher.max_per_week:
                        yield make(
                            ConstraintFamily.TEACHER_WEEKLY_LIMIT,
                            f"先生の週最大コマ数({teacher.max_per_week})を超過",
                            start,
                            teacher_id=tid,
                        )
        if wanted(ConstraintFamily.TEACHER_CONSECUTIVE_LIMIT):
            for tid in block.teacher_ids:
                teacher = snap.teacher_by_id.get(tid)
                if teacher and teacher.max_consecutive is not None:
                    busy = {p for (d, p) in self.teacher_at.get(tid, {}) if d == day}
                    if _run_through(busy | set(periods), start) > teacher.max_consecutive:
                        yield make(
                            ConstraintFamily.TEACHER_CONSECUTIVE_LIMIT,
                            f"先生の連続授業数({teacher.max_consecutive})を超過",
                            start,
                            teacher_id=tid,
                        )
        if wanted(ConstraintFamily.SUBJECT_DAILY_LIMIT) and self._adds_lesson(block, day):
            rule = snap.rule_by_subject.get(block.subject_id)
            if rule is not None and rule.max_per_day is not None:
                for cid in block.class_ids:
                    if self.lessons[(cid, block.subject_id, day)] + 1 > rule.max_per_day:
                        yield make(
                            ConstraintFamily.SUBJECT_DAILY_LIMIT,
                            f"同一教科が1日{rule.max_per_day}回を超過",
                            start,
                            class_id=cid,
                        )
        if wanted(ConstraintFamily.CLASS_CONSECUTIVE_SAME) and not block.is_consecutive:
            for cid in block.class_ids:
                occupied = self.class_at.get(cid, {})
                for adj in (start - 1, end + 1):
                    other_id = occupied.get((day, adj))
                    if other_id is None or other_id == block.id:
                        continue
                    other = snap.block_by_id.get(other_id)
                    if other and other.subject_id == block.subject_id and not other.is_consecutive:
                        yield make(ConstraintFamily.CLASS_CONSECUTIVE_SAME, "同一教科が連続", start, class_id=cid)
                        break

    # ------------------------------------------------------------------ #
    # mutation
    # ------------------------------------------------------------------ #

    def place(self, block: LessonBlock, day: int, start: int, span: Optional[int] = None) -> List[Placement]:
        span = block.span if span is None else span
        placements = [Placement(block.id, day, p) for p in range(start, start + span)]
        for placement in placements:
            self.add_placement(placement, block)
        return placements

    def remove(self, block: LessonBlock, day: int, start: int, span: Optional[int] = None) -> None:
        span = block.span if span is None else span
        for p in range(start, start + span):
            self.remove_placement(Placement(block.id, day, p), block)

    def add_placement(self, placement: Placement, block: Optional[LessonBlock] = None) -> None:
        block = block or self.snapshot.block(placement.block_id)
        day, slot = placement.day, placement.slot
        if self._adds_lesson(block, day):
            for cid in block.class_ids:
                self.lessons[(cid, block.subject_id, day)] += 1
        self.block_day[(block.id, day)] += 1
        for tid in block.teacher_ids:
            self.teacher_at[tid][slot] = block.id
            self.teacher_day[(tid, day)] += 1
            self.teacher_week[tid] += 1
        for cid in block.class_ids:
            self.class_at[cid][slot] = block.id
        for rid in block.room_ids:
            self.room_at[rid][slot].append(block.id)
            self.room_day[(rid, day)] += 1
        self.placed[placement] += 1

    def remove_placement(self, placement: Placement, block: Optional[LessonBlock] = None) -> None:
        block = block or self.snapshot.block(placement.block_id)
        day, slot = placement.day, placement.slot
        self.block_day[(block.id, day)] -= 1
        if self._adds_lesson(block, day):
            for cid in block.class_ids:
                self.lessons[(cid, block.subject_id, day)] -= 1
        for tid in block.teacher_ids:
            if self.teacher_at[tid].get(slot) == block.id:
                del self.teacher_at[tid][slot]
            self.teacher_day[(tid, day)] -= 1
            self.teacher_week[tid] -= 1
        for cid in block.class_ids:
            if self.class_at[cid].get(slot) == block.id:
                del self.class_at[cid][slot]
        for rid in block.room_ids:
            self.room_at[rid][slot].remove(block.id)
            self.room_day[(rid, day)] -= 1
        self.placed[placement] -= 1
        if self.placed[placement] <= 0:
            del self.placed[placement]

    def placements(self) -> List[Placement]:
        return sorted(self.placed.elements())

    # ------------------------------------------------------------------ #
    # objective
    # ------------------------------------------------------------------ #

    def objective_terms(self) -> Dict[str, float]:
        """Unweighted soft objective terms of the current state."""
        days = self.snapshot.calendar.days_per_week

        teacher_load = 0.0
        for tid in sorted({t for (t, _d) in self.teacher_day}):
            teacher_load += _variance([self.teacher_day[(tid, d)] for d in range(days)])

        room_load = 0.0
        for rid in sorted({r for (r, _d) in self.room_day}):
            room_load += _variance([self.room_day[(rid, d)] for d in range(days)])

        repeats = sum(max(0, n - 1) for n in self.lessons.values())

        gaps = 0
        for cid in sorted(self.class_at):
            by_day: Dict[int, List[int]] = defaultdict(list)
            for (d, p) in self.class_at[cid]:
                by_day[d].append(p)
            gaps += sum(_gaps(sorted(ps)) for ps in by_day.values())

        preferred = 0
        for tid in sorted(self.teacher_at):
            teacher = self.snapshot.teacher_by_id.get(tid)
            if teacher is None:
                continue
            preferred += sum(
                1 for (d, p) in self.teacher_at[tid] if teacher.status_at(d, p) == Availability.PREFERRED
            )

        return {
            "teacher_load_balance": teacher_load,
            "subject_distribution": float(repeats),
            "room_utilization": room_load,
            "class_gap_penalty": float(gaps),
            "preferred_slot": -float(preferred),
        }

    def weighted_objective(self) -> Dict[str, float]:
        terms = self.objective_terms()
        return {name: getattr(self.weights, name) * value for name, value in terms.items()}


def evaluate(
    placements: Iterable[Placement],
    snapshot: DomainSnapshot,
    rules: Optional[ConstraintSet] = None,
    weights: Optional[SoftWeights] = None,
) -> Evaluation:
    """
    Evaluate a partial or complete set of placements.

    Args:
        placements: Placements to check (duplicates are ignored)
        snapshot: Domain snapshot the placements refer to
        rules: Constraint levels and weights (defaults when omitted)
        weights: Soft objective weights (defaults when omitted)

    Returns:
        Evaluation with hard violations, soft violations and the soft penalty

    Raises:
        InvalidInputError: If a placement references an unknown block
    """
    state = ScheduleState(snapshot, rules, weights)
    hard: List[Violation] = []
    soft: List[Violation] = []

    by_block: Dict[str, List[Placement]] = defaultdict(list)
    for placement in sorted(set(placements)):
        block = snapshot.block_by_id.get(placement.block_id)
        if block is None:
            raise InvalidInputError(f"Placement references unknown block {placement.block_id}")
        for v in state.check(block, placement.day, placement.period, span=1):
            (hard if v.is_hard else soft).append(v)
        state.add_placement(placement, block)
        by_block[block.id].append(placement)

    for block_id, block_placements in sorted(by_block.items()):
        block = snapshot.block(block_id)
        if block.is_consecutive:
            v = _check_consecutive_shape(block, block_placements, snapshot, state.rules)
            if v is not None:
                hard.append(v)
        if len(block_placements) > block.count:
            hard.append(
                Violation(
                    family=ConstraintFamily.CLASS_CONFLICT,
                    level=ConstraintLevel.HARD,
                    reason=f"駒の配置数({len(block_placements)})が必要数({block.count})を超過",
                    block_id=block_id,
                    weight=state.rules.weight(ConstraintFamily.CLASS_CONFLICT),
                )
            )

    breakdown: Dict[str, float] = defaultdict(float)
    for v in soft:
        breakdown[v.family.value] += v.weight
    breakdown.update(state.weighted_objective())
    penalty = round(sum(breakdown.values()), 6)
    return Evaluation(tuple(hard), tuple(soft), penalty, dict(breakdown))


def _check_consecutive_shape(
    block: LessonBlock,
    placements: List[Placement],
    snapshot: DomainSnapshot,
    rules: ConstraintSet,
) -> Optional[Violation]:
    days = {p.day for p in placements}
    periods = sorted(p.period for p in placements)
    contiguous = len(days) == 1 and periods == list(range(periods[0], periods[0] + len(periods)))
    if contiguous and not snapshot.calendar.crosses_lunch(periods[0], len(periods)):
        return None
    first = placements[0]
    return Violation(
        family=ConstraintFamily.CONSECUTIVE_ADJACENCY,
        level=ConstraintLevel.HARD,
        reason="連続駒が隣接していません",
        block_id=block.id,
        day=first.day,
        period=first.period,
        weight=rules.weight(ConstraintFamily.CONSECUTIVE_ADJACENCY),
    )


def _run_through(periods: Set[int], anchor: int) -> int:
    lo = hi = anchor
    while lo - 1 in periods:
        lo -= 1
    while hi + 1 in periods:
        hi += 1
    return hi - lo + 1


def _gaps(sorted_periods: Sequence[int]) -> int:
    if len(sorted_periods) < 2:
        return 0
    return sorted_periods[-1] - sorted_periods[0] + 1 - len(sorted_periods)


def _variance(values: Sequence[int]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)
