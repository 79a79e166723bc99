"""Slot proposals for moving a cancelled lesson occurrence."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from komawari.config import ConstraintSet
from komawari.domain.models import LessonBlock, Placement, RescheduleRequest, Slot
from komawari.domain.snapshot import DomainSnapshot
from komawari.errors import InvalidInputError

from .constraints import ScheduleState, Violation
from .scoring import Feature, HardCheck, ScoredCandidate, binary, rank

NO_CONFLICT_WEIGHT = 20.0
GAP_WEIGHT = 20.0
SAME_DAY_WEIGHT = 30.0
MORNING_WEIGHT = 10.0
LOW_LOAD_WEIGHT = 20.0

# Share of the day's periods under which a teacher counts as lightly loaded
LOW_LOAD_RATIO = 0.6


@dataclass
class _Context:
    state: ScheduleState
    block: LessonBlock
    request: RescheduleRequest
    morning_until: int

    @property
    def span(self) -> int:
        return self.block.span if self.block.is_consecutive else 1

    def periods(self, slot: Slot) -> List[int]:
        return list(range(slot[1], slot[1] + self.span))

    def violations(self, slot: Slot) -> List[Violation]:
        return self.state.check(self.block, slot[0], slot[1], span=self.span)


def propose_reschedule_slots(
    snapshot: DomainSnapshot,
    placements: Iterable[Placement],
    request: RescheduleRequest,
    rules: Optional[ConstraintSet] = None,
    limit: Optional[int] = 10,
) -> List[ScoredCandidate[Slot]]:
    """
    Rank (day, period) slots a cancelled occurrence could move to.

    The cancelled placement is taken out of the timetable first. A
    consecutive block moves as a whole: every placement of the block on the
    requested day is taken out and each key is the start period of the new
    run. Slots where the move would break a hard constraint are excluded.

    Args:
        snapshot: Domain snapshot
        placements: The adopted timetable
        request: The occurrence being moved
        rules: Constraint levels (defaults when omitted)
        limit: Keep only the top N (10 by default)

    Returns:
        ScoredCandidate list keyed by (day, period) or (day, start), best first

    Raises:
        InvalidInputError: If the request references an unknown block
    """
    block = snapshot.block_by_id.get(request.block_id)
    if block is None:
        raise InvalidInputError(f"Reschedule request references unknown block {request.block_id}")

    placements = sorted(set(placements))
    if block.is_consecutive:
        cancelled = {p for p in placements if p.block_id == block.id and p.day == request.day}
        cancelled.add(Placement(block.id, request.day, request.period))
    else:
        cancelled = {Placement(request.block_id, request.day, request.period)}
    original = min(cancelled).slot

    state = ScheduleState(snapshot, rules)
    for placement in placements:
        if placement not in cancelled and placement.block_id in snapshot.block_by_id:
            state.add_placement(placement)

    cal = snapshot.calendar
    morning_until = cal.lunch_after_period or 3
    ctx = _Context(state, block, request, morning_until)
    last_start = cal.max_periods_per_day - ctx.span + 1
    slots = [s for s in cal.slots() if s[1] <= last_start and s != original]

    def hard(slot: Slot, ctx: _Context):
        for v in ctx.violations(slot):
            if v.is_hard:
                return v.reason
        return None

    def no_soft(slot: Slot, ctx: _Context):
        return binary(not ctx.violations(slot)), "競合なし"

    def gap(slot: Slot, ctx: _Context):
        deltas = [
            ScheduleState.gap_delta(ctx.state.class_at.get(cid, {}), slot[0], ctx.periods(slot))
            for cid in ctx.block.class_ids
        ]
        worst = max(deltas) if deltas else 0
        if worst < 0:
            return 1.0, "空き時間の解消"
        if worst == 0:
            return 0.5, "空き時間の解消"
        return 0.0, ""

    def same_day(slot: Slot, ctx: _Context):
        return binary(slot[0] == ctx.request.day), "同じ曜日"

    def morning(slot: Slot, ctx: _Context):
        return binary(slot[1] <= ctx.morning_until), "午前"

    def low_load(slot: Slot, ctx: _Context):
        cap = LOW_LOAD_RATIO * cal.max_periods_per_day
        loads = [ctx.state.teacher_day[(tid, slot[0])] + ctx.span - 1 for tid in ctx.block.teacher_ids]
        return binary(all(load < cap for load in loads)), "教員の負荷が低い"

    features = [
        HardCheck("hard_conflict", hard),
        Feature("no_conflict", NO_CONFLICT_WEIGHT, no_soft),
        Feature("gap", GAP_WEIGHT, gap),
        Feature("same_day", SAME_DAY_WEIGHT, same_day),
        Feature("morning", MORNING_WEIGHT, morning),
        Feature("low_load", LOW_LOAD_WEIGHT, low_load),
    ]
    return rank(slots, features, ctx, limit=limit)
