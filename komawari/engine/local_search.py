"""Hill-climbing improvement of a feasible timetable."""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from komawari.domain.models import LessonBlock, Placement
from komawari.services.constraints import ScheduleState, evaluate

from .base import SearchContext

logger = logging.getLogger(__name__)

Position = Tuple[LessonBlock, int, int]  # (block, day, start period)
Change = Tuple[int, Position]

# Share of steps that try a swap instead of a move
SWAP_RATIO = 0.5

# Keeps the improvement stream apart from the construction stream of an attempt
SEED_OFFSET = 7777


def free_positions(ctx: SearchContext, placements: List[Placement]) -> List[Position]:
    """Units of a timetable that are not pinned, one per lesson or consecutive block."""
    fixed = set(ctx.snapshot.fixed_placements)
    by_block: Dict[str, List[Placement]] = defaultdict(list)
    for p in sorted(set(placements)):
        if p not in fixed:
            by_block[p.block_id].append(p)
    positions: List[Position] = []
    for block_id, block_placements in sorted(by_block.items()):
        block = ctx.snapshot.block(block_id)
        if block.is_consecutive:
            first = block_placements[0]
            positions.append((block, first.day, first.period))
        else:
            positions.extend((block, p.day, p.period) for p in block_placements)
    return positions


def improve(ctx: SearchContext, placements: List[Placement], attempt: int) -> List[Placement]:
    """
    Lower the soft penalty of a hard-feasible timetable.

    Each step either moves one unit to a random start or swaps the starts of
    two units with the same span. A step is kept only when the timetable
    stays hard-feasible and its soft penalty strictly drops, so the result
    is never worse than the input. The loop ends after improve_steps steps,
    at the deadline, or on cancellation.

    Args:
        ctx: Shared search context
        placements: Feasible timetable, fixed placements included
        attempt: Attempt number; seeds the step generator

    Returns:
        Placements of the best timetable seen
    """
    steps = ctx.config.improve_steps
    positions = free_positions(ctx, placements)
    if steps <= 0 or not positions:
        return sorted(set(placements))

    snapshot = ctx.snapshot
    cal = snapshot.calendar
    weights = ctx.config.weights
    rng = random.Random(ctx.config.random_seed + attempt + SEED_OFFSET)

    state = ctx.new_state()
    for block, day, start in positions:
        state.place(block, day, start)
    best = evaluate(state.placements(), snapshot, ctx.rules, weights).soft_penalty
    initial = best
    kept = 0

    for _ in range(steps):
        if ctx.interrupted() is not None:
            break
        i = rng.randrange(len(positions))
        if len(positions) > 1 and rng.random() < SWAP_RATIO:
            changes = _swap(positions, i, rng.randrange(len(positions)))
        else:
            block, day, start = positions[i]
            target = (rng.randrange(cal.days_per_week), rng.randint(1, cal.max_periods_per_day - block.span + 1))
            changes = None if target == (day, start) else [(i, (block,) + target)]
        if not changes:
            continue

        undo = [(k, positions[k]) for k, _new in changes]
        if not _try(state, positions, changes):
            continue
        evaluation = evaluate(state.placements(), snapshot, ctx.rules, weights)
        if evaluation.feasible and evaluation.soft_penalty < best:
            best = evaluation.soft_penalty
            kept += 1
        else:
            _apply(state, positions, undo)

    logger.debug("Attempt %d: kept %d of %d steps, penalty %.2f -> %.2f", attempt, kept, steps, initial, best)
    return state.placements()


def _swap(positions: List[Position], i: int, j: int) -> Optional[List[Change]]:
    a_block, a_day, a_start = positions[i]
    b_block, b_day, b_start = positions[j]
    if a_block.id == b_block.id or a_block.span != b_block.span:
        return None
    if (a_day, a_start) == (b_day, b_start):
        return None
    return [(i, (a_block, b_day, b_start)), (j, (b_block, a_day, a_start))]


def _try(state: ScheduleState, positions: List[Position], changes: List[Change]) -> bool:
    """Apply changes if every new position is legal; otherwise leave the state as it was."""
    old = [positions[k] for k, _new in changes]
    for block, day, start in old:
        state.remove(block, day, start)
    placed: List[Position] = []
    for _k, (block, day, start) in changes:
        if not state.is_legal(block, day, start):
            for b, d, s in placed:
                state.remove(b, d, s)
            for b, d, s in old:
                state.place(b, d, s)
            return False
        state.place(block, day, start)
        placed.append((block, day, start))
    for k, new in changes:
        positions[k] = new
    return True


def _apply(state: ScheduleState, positions: List[Position], changes: List[Change]) -> None:
    for k, _new in changes:
        block, day, start = positions[k]
        state.remove(block, day, start)
    for k, (block, day, start) in changes:
        state.place(block, day, start)
        positions[k] = (block, day, start)
