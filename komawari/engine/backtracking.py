"""Constraint-propagating backtracking search over demand units."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from komawari.config import ConstraintFamily

from .base import AttemptResult, BaseSearch, Outcome, SearchContext, SearchUnit, neighbours

logger = logging.getLogger(__name__)

Value = Tuple[int, int]  # (day, start period)

# Scale of the random perturbation added to slot costs on restarts
RESTART_NOISE = 5.0


@dataclass
class _Frame:
    unit: int
    values: List[Value]
    pos: int = 0
    placed: Optional[Value] = None
    pruned: List[Tuple[int, Set[Value]]] = field(default_factory=list)


def static_domains(ctx: SearchContext) -> List[Set[Value]]:
    """Legal (day, start) pairs per unit against the fixed placements alone."""
    state = ctx.new_state()
    cal = ctx.snapshot.calendar
    domains: List[Set[Value]] = []
    for unit in ctx.units:
        values = set()
        for day in range(cal.days_per_week):
            for start in range(1, cal.max_periods_per_day - unit.span + 2):
                if state.is_legal(unit.block, day, start):
                    values.add((day, start))
        domains.append(values)
    return domains


class BacktrackingSearch(BaseSearch):
    """
    Depth-first search with forward checking.

    Units are picked by fewest remaining values, then by most participants.
    Values are ordered by soft cost, then by how few neighbour values they
    eliminate. Attempt 0 breaks ties by id; later attempts break them with a
    generator seeded from random_seed + attempt.
    """

    name = "backtracking"

    def search(self, ctx: SearchContext, attempt: int) -> AttemptResult:
        units = ctx.units
        rng = random.Random(ctx.config.random_seed + attempt) if attempt else None
        state = ctx.new_state()
        domains = static_domains(ctx)
        adjacency = neighbours(units)
        jitter = [rng.random() if rng else 0.0 for _ in units]
        unassigned: Set[int] = set(range(len(units)))
        weekly_hard = ctx.rules.is_hard(ConstraintFamily.TEACHER_WEEKLY_LIMIT)
        limit = ctx.config.max_nodes_per_attempt

        empty = [units[i].key for i, values in enumerate(domains) if not values]
        if empty:
            logger.info("No legal slot for units %s", empty[:5])
            return AttemptResult(Outcome.EXHAUSTED)

        def select() -> Optional[int]:
            if not unassigned:
                return None
            return min(
                unassigned,
                key=lambda i: (
                    len(domains[i]),
                    -units[i].block.participants,
                    -units[i].block.priority,
                    jitter[i],
                    units[i].key,
                ),
            )

        def order(i: int) -> List[Value]:
            unit = units[i]
            scored = []
            for value in domains[i]:
                day, start = value
                if not state.is_legal(unit.block, day, start):
                    continue
                cost = state.placement_cost(unit.block, day, start)
                if rng is not None:
                    cost += rng.random() * RESTART_NOISE
                eliminated = sum(
                    _overlapping(domains[n], units[n], unit, day, start)
                    for n in adjacency[i]
                    if n in unassigned
                )
                scored.append((cost, eliminated, value))
            scored.sort()
            return [value for _c, _e, value in scored]

        def prune(i: int, day: int) -> Tuple[List[Tuple[int, Set[Value]]], bool]:
            unit = units[i]
            all_days = weekly_hard and any(
                ctx.snapshot.teacher(t).max_per_week is not None for t in unit.block.teacher_ids
            )
            record = []
            for n in sorted(adjacency[i]):
                if n not in unassigned:
                    continue
                other = units[n].block
                removed = {
                    v
                    for v in domains[n]
                    if (all_days or v[0] == day) and not state.is_legal(other, v[0], v[1])
                }
                if removed:
                    domains[n] -= removed
                    record.append((n, removed))
                if not domains[n]:
                    return record, False
            return record, True

        def undo(frame: _Frame) -> None:
            day, start = frame.placed
            state.remove(units[frame.unit].block, day, start)
            for n, removed in frame.pruned:
                domains[n] |= removed
            frame.placed = None
            frame.pruned = []

        nodes = 0
        first = select()
        if first is None:
            return AttemptResult(Outcome.FOUND, state.placements(), 0)
        unassigned.discard(first)
        stack = [_Frame(first, order(first))]

        while stack:
            frame = stack[-1]
            if frame.placed is not None:
                undo(frame)
            if frame.pos >= len(frame.values):
                stack.pop()
                unassigned.add(frame.unit)
                continue

            day, start = frame.values[frame.pos]
            frame.pos += 1
            nodes += 1
            interrupted = ctx.interrupted()
            if interrupted is not None:
                return AttemptResult(interrupted, None, nodes)
            if nodes > limit:
                logger.debug("Attempt %d hit node limit %d", attempt, limit)
                return AttemptResult(Outcome.NODE_LIMIT, None, nodes)

            block = units[frame.unit].block
            if not state.is_legal(block, day, start):
                continue
            state.place(block, day, start)
            frame.placed = (day, start)
            frame.pruned, ok = prune(frame.unit, day)
            if not ok:
                continue

            nxt = select()
            if nxt is None:
                return AttemptResult(Outcome.FOUND, state.placements(), nodes)
            unassigned.discard(nxt)
            stack.append(_Frame(nxt, order(nxt)))

        return AttemptResult(Outcome.EXHAUSTED, None, nodes)


def _overlapping(domain: Set[Value], other: SearchUnit, unit: SearchUnit, day: int, start: int) -> int:
    end = start + unit.span - 1
    return sum(
        1 for (d, s) in domain if d == day and s <= end and start <= s + other.span - 1
    )
