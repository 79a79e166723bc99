"""CP-SAT timetable strategy built on Google OR-Tools."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Tuple

from ortools.sat.python import cp_model

from komawari.config import ConstraintFamily
from komawari.domain.models import Placement
from komawari.services.constraints import evaluate

from .backtracking import static_domains
from .base import AttemptResult, BaseSearch, Outcome, SearchContext

logger = logging.getLogger(__name__)

# Soft costs are scaled to integers for the objective
COST_SCALE = 10


class CPSatSearch(BaseSearch):
    """
    One boolean per (unit, day, start) over statically legal starts.

    Hard families become linear constraints; soft costs that depend on a
    single placement go into the objective along with same-day subject
    repeats. Later attempts add a no-good cut per timetable already found,
    so an INFEASIBLE status there means no further distinct timetable exists.
    """

    name = "cp_sat"

    def search(self, ctx: SearchContext, attempt: int) -> AttemptResult:
        interrupted = ctx.interrupted()
        if interrupted is not None:
            return AttemptResult(interrupted)

        snapshot = ctx.snapshot
        rules = ctx.rules
        weights = ctx.config.weights
        base_state = ctx.new_state()
        domains = static_domains(ctx)

        model = cp_model.CpModel()
        x: Dict[Tuple[int, int, int], cp_model.IntVar] = {}
        for i, unit in enumerate(ctx.units):
            if not domains[i]:
                logger.info("No legal slot for unit %s", unit.key)
                return AttemptResult(Outcome.EXHAUSTED)
            for day, start in sorted(domains[i]):
                x[(i, day, start)] = model.NewBoolVar(f"u{i}_d{day}_s{start}")
            model.Add(sum(x[(i, d, s)] for d, s in domains[i]) == 1)

        # occupancy expressions per resource and slot
        teacher_occ = defaultdict(list)
        class_occ = defaultdict(list)
        room_occ = defaultdict(list)
        block_occ = defaultdict(list)
        lessons = defaultdict(list)
        for (i, day, start), var in x.items():
            block = ctx.units[i].block
            for cid in block.class_ids:
                lessons[(cid, block.subject_id, day)].append(var)
            for period in range(start, start + block.span):
                block_occ[(block.id, day, period)].append(var)
                for tid in block.teacher_ids:
                    teacher_occ[(tid, day, period)].append(var)
                for cid in block.class_ids:
                    class_occ[(cid, day, period)].append(var)
                for rid in block.room_ids:
                    room_occ[(rid, day, period)].append(var)

        for occ in (teacher_occ, class_occ, block_occ):
            for vars_ in occ.values():
                model.Add(sum(vars_) <= 1)
        if rules.is_hard(ConstraintFamily.ROOM_CONFLICT):
            for (rid, day, period), vars_ in room_occ.items():
                used = len(base_state.room_at.get(rid, {}).get((day, period), ()))
                model.Add(sum(vars_) <= snapshot.room_by_id[rid].capacity - used)

        self._add_teacher_limits(ctx, model, teacher_occ, base_state)

        if rules.is_hard(ConstraintFamily.SUBJECT_DAILY_LIMIT):
            for (cid, subject_id, day), vars_ in lessons.items():
                rule = snapshot.rule_by_subject.get(subject_id)
                if rule is not None and rule.max_per_day is not None:
                    fixed = base_state.lessons[(cid, subject_id, day)]
                    model.Add(sum(vars_) <= rule.max_per_day - fixed)

        if rules.is_hard(ConstraintFamily.CLASS_CONSECUTIVE_SAME):
            self._add_same_subject_pairs(ctx, model, x)

        # objective
        terms = []
        for (i, day, start), var in x.items():
            cost = base_state.placement_cost(ctx.units[i].block, day, start)
            coef = int(round(cost * COST_SCALE))
            if coef:
                terms.append(coef * var)
        repeat_coef = int(round(weights.subject_distribution * COST_SCALE))
        if repeat_coef:
            for (cid, subject_id, day), vars_ in lessons.items():
                fixed = base_state.lessons[(cid, subject_id, day)]
                excess = model.NewIntVar(0, len(vars_) + fixed, f"rep_{cid}_{subject_id}_{day}")
                model.Add(excess >= sum(vars_) + fixed - 1)
                terms.append(repeat_coef * excess)
        if terms:
            model.Minimize(sum(terms))

        for signature in ctx.found:
            free = [p for p in signature if (p.block_id, p.day, p.period) in block_occ]
            if free:
                model.Add(
                    sum(v for p in free for v in block_occ[(p.block_id, p.day, p.period)]) <= len(free) - 1
                )

        remaining = ctx.deadline - ctx.clock()
        if remaining <= 0:
            return AttemptResult(Outcome.TIMEOUT)

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = remaining
        solver.parameters.num_search_workers = 1
        solver.parameters.random_seed = ctx.config.random_seed + attempt

        logger.debug("Solving CP-SAT model with %d variables (attempt %d)", len(x), attempt)
        status = solver.Solve(model)
        nodes = int(solver.NumBranches())

        if ctx.token is not None and ctx.token.cancelled:
            return AttemptResult(Outcome.CANCELLED, None, nodes)
        if status == cp_model.INFEASIBLE:
            return AttemptResult(Outcome.EXHAUSTED, None, nodes)
        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            outcome = Outcome.TIMEOUT if ctx.clock() >= ctx.deadline else Outcome.NODE_LIMIT
            return AttemptResult(outcome, None, nodes)

        placements: List[Placement] = list(snapshot.fixed_placements)
        for (i, day, start), var in x.items():
            if solver.Value(var):
                placements.extend(ctx.units[i].placements(day, start))

        check = evaluate(placements, snapshot, rules, weights)
        if not check.feasible:
            logger.warning(
                "CP-SAT solution rejected with %d hard violations", len(check.hard_violations)
            )
            return AttemptResult(Outcome.NODE_LIMIT, None, nodes)
        return AttemptResult(Outcome.FOUND, sorted(set(placements)), nodes)

    def _add_teacher_limits(self, ctx, model, teacher_occ, base_state) -> None:
        snapshot = ctx.snapshot
        rules = ctx.rules
        cal = snapshot.calendar
        daily = rules.is_hard(ConstraintFamily.TEACHER_DAILY_LIMIT)
        weekly = rules.is_hard(ConstraintFamily.TEACHER_WEEKLY_LIMIT)
        consecutive = rules.is_hard(ConstraintFamily.TEACHER_CONSECUTIVE_LIMIT)

        for teacher in snapshot.teachers:
            fixed_slots = set(base_state.teacher_at.get(teacher.id, {}))

            def occ(day: int, period: int):
                return teacher_occ.get((teacher.id, day, period), [])

            if daily and teacher.max_per_day is not None:
                for day in range(cal.days_per_week):
                    vars_ = [v for p in range(1, cal.max_periods_per_day + 1) for v in occ(day, p)]
                    if vars_:
                        model.Add(sum(vars_) <= teacher.max_per_day - base_state.teacher_day[(teacher.id, day)])
            if weekly and teacher.max_per_week is not None:
                vars_ = [v for (d, p) in cal.slots() for v in occ(d, p)]
                if vars_:
                    model.Add(sum(vars_) <= teacher.max_per_week - base_state.teacher_week[teacher.id])
            if consecutive and teacher.max_consecutive is not None:
                window = teacher.max_consecutive + 1
                for day in range(cal.days_per_week):
                    for first in range(1, cal.max_periods_per_day - window + 2):
                        periods = range(first, first + window)
                        vars_ = [v for p in periods for v in occ(day, p)]
                        fixed = sum(1 for p in periods if (day, p) in fixed_slots)
                        if vars_:
                            model.Add(sum(vars_) <= teacher.max_consecutive - fixed)

    def _add_same_subject_pairs(self, ctx, model, x) -> None:
        starts_at = defaultdict(list)
        ends_at = defaultdict(list)
        for (i, day, start), var in x.items():
            block = ctx.units[i].block
            if block.is_consecutive:
                continue
            for cid in block.class_ids:
                starts_at[(cid, block.subject_id, day, start)].append((block.id, var))
                ends_at[(cid, block.subject_id, day, start)].append((block.id, var))
        for (cid, subject_id, day, period), left in ends_at.items():
            for right_block, right in starts_at.get((cid, subject_id, day, period + 1), []):
                for left_block, var in left:
                    if left_block != right_block:
                        model.Add(var + right <= 1)
