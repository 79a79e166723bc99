"""Orchestrator - runs search attempts and ranks the distinct timetables found."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from komawari.config import ConstraintSet, SolverConfig
from komawari.domain.models import Placement, TimetableCandidate
from komawari.domain.snapshot import DomainSnapshot
from komawari.errors import InfeasibleError
from komawari.services.constraints import evaluate

from .backtracking import BacktrackingSearch
from .base import BaseSearch, CancellationToken, Clock, Outcome, SearchContext, build_units
from .cp_sat import CPSatSearch
from .local_search import improve

logger = logging.getLogger(__name__)


class SolveStatus(str, Enum):
    COMPLETE = "complete"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INFEASIBLE = "infeasible"


@dataclass
class SolveResult:
    candidates: List[TimetableCandidate]
    status: SolveStatus
    elapsed_ms: int
    attempts: int
    nodes: int
    reason: str = ""

    @property
    def best(self) -> Optional[TimetableCandidate]:
        return self.candidates[0] if self.candidates else None

    def raise_for_status(self) -> "SolveResult":
        """Raise InfeasibleError when no timetable exists; otherwise return self."""
        if self.status == SolveStatus.INFEASIBLE:
            raise InfeasibleError(self.reason or "No timetable satisfies the hard constraints")
        return self


def get_strategy(name: str) -> BaseSearch:
    if name == "cp_sat":
        return CPSatSearch()
    return BacktrackingSearch()


class Orchestrator:
    """
    Orchestrator coordinates restarts of one search strategy.

    Attempt 0 is deterministic. Each later attempt reseeds from
    random_seed + attempt. Every timetable found goes through the
    improvement pass before deduplication. The loop stops at max_patterns
    distinct timetables, the attempt budget, the deadline, or cancellation.
    """

    def __init__(self, config: Optional[SolverConfig] = None, clock: Clock = time.monotonic):
        self.config = config or SolverConfig()
        self.clock = clock

    def solve(
        self,
        snapshot: DomainSnapshot,
        rules: Optional[ConstraintSet] = None,
        token: Optional[CancellationToken] = None,
    ) -> SolveResult:
        """
        Generate up to max_patterns ranked, hard-feasible timetables.

        Args:
            snapshot: Domain snapshot to schedule
            rules: Constraint levels and weights
            token: Optional cancellation token checked between nodes

        Returns:
            SolveResult; candidates are empty when status is infeasible
            (including a timeout before the first timetable) or when the
            token was cancelled before one was found

        Raises:
            InvalidInputError: If the snapshot or configuration is malformed
        """
        config = self.config
        config.validate()
        snapshot.validate()
        rules = rules or ConstraintSet()
        started = self.clock()

        units = build_units(snapshot)
        strategy = get_strategy(config.strategy)
        logger.info(
            "Solving %d units with %s (max_patterns=%d, timeout_ms=%d)",
            len(units),
            strategy.get_name(),
            config.max_patterns,
            config.timeout_ms,
        )

        fixed_check = evaluate(snapshot.fixed_placements, snapshot, rules, config.weights)
        if not fixed_check.feasible:
            reason = "Fixed placements violate hard constraints: " + "; ".join(
                v.reason for v in fixed_check.hard_violations[:5]
            )
            logger.warning(reason)
            return SolveResult([], SolveStatus.INFEASIBLE, self._elapsed_ms(started), 0, 0, reason)

        ctx = SearchContext(
            snapshot=snapshot,
            rules=rules,
            config=config,
            units=units,
            deadline=started + config.timeout_ms / 1000.0,
            clock=self.clock,
            token=token,
        )

        found: Dict[FrozenSet[Placement], TimetableCandidate] = {}
        attempts = 0
        nodes = 0
        status = SolveStatus.COMPLETE
        reason = ""

        for attempt in range(config.attempt_budget):
            result = strategy.search(ctx, attempt)
            attempts += 1
            nodes += result.nodes

            if result.outcome == Outcome.FOUND:
                placements = improve(ctx, result.placements, attempt)
                for seen in (frozenset(result.placements), frozenset(placements)):
                    if seen not in ctx.found:
                        ctx.found.append(seen)
                signature = frozenset(placements)
                if signature not in found:
                    found[signature] = self._candidate(placements, snapshot, rules, attempt)
                    logger.debug("Attempt %d produced pattern %d", attempt, len(found))
                if len(found) >= config.max_patterns:
                    break
            elif result.outcome == Outcome.EXHAUSTED:
                if not found:
                    status = SolveStatus.INFEASIBLE
                    reason = "Search space exhausted without a timetable satisfying the hard constraints"
                break
            elif result.outcome == Outcome.TIMEOUT:
                if found:
                    status = SolveStatus.TIMEOUT
                else:
                    status = SolveStatus.INFEASIBLE
                    reason = f"No timetable found within timeout_ms={config.timeout_ms}"
                break
            elif result.outcome == Outcome.CANCELLED:
                status = SolveStatus.CANCELLED
                break
        else:
            if not found:
                status = SolveStatus.INFEASIBLE
                reason = f"No timetable found within {attempts} attempts"

        candidates = rank_candidates(list(found.values()))
        elapsed = self._elapsed_ms(started)
        logger.info(
            "Solve finished: status=%s candidates=%d attempts=%d nodes=%d elapsed_ms=%d",
            status.value,
            len(candidates),
            attempts,
            nodes,
            elapsed,
        )
        return SolveResult(candidates, status, elapsed, attempts, nodes, reason)

    def _candidate(self, placements, snapshot, rules, attempt) -> TimetableCandidate:
        evaluation = evaluate(placements, snapshot, rules, self.config.weights)
        if not evaluation.feasible:
            raise AssertionError(
                f"Attempt {attempt} returned a timetable with hard violations: "
                f"{evaluation.hard_violations[0].reason}"
            )
        return TimetableCandidate(
            placements=tuple(sorted(set(placements))),
            soft_penalty=evaluation.soft_penalty,
            hard_violations=evaluation.hard_violations,
            penalty_breakdown=evaluation.breakdown,
            attempt=attempt,
        )

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self.clock() - started) * 1000))


def rank_candidates(candidates: List[TimetableCandidate]) -> List[TimetableCandidate]:
    """
    Greedy ranking: soft penalty first, then distance to the already ranked
    candidates (larger first), then attempt index.

    Distance is the share of a candidate's placements missing from another
    candidate; diversity is its minimum over the ones ranked before it.
    """
    remaining = list(candidates)
    ranked: List[TimetableCandidate] = []
    while remaining:
        def key(c: TimetableCandidate):
            return (c.soft_penalty, -_min_distance(c, ranked), c.attempt)

        pick = min(remaining, key=key)
        remaining.remove(pick)
        ranked.append(
            replace(pick, diversity=round(_min_distance(pick, ranked), 6), rank=len(ranked) + 1)
        )
    return ranked


def _min_distance(candidate: TimetableCandidate, others: List[TimetableCandidate]) -> float:
    sig = candidate.signature()
    size = max(len(sig), 1)
    distances = [len(sig - o.signature()) / size for o in others if o.signature() != sig]
    return min(distances) if distances else 1.0


def solve(
    snapshot: DomainSnapshot,
    rules: Optional[ConstraintSet] = None,
    config: Optional[SolverConfig] = None,
    token: Optional[CancellationToken] = None,
    clock: Clock = time.monotonic,
) -> SolveResult:
    """
    Convenience function to solve a snapshot with the orchestrator.

    Args:
        snapshot: Domain snapshot
        rules: Constraint levels and weights
        config: SolverConfig
        token: Optional cancellation token
        clock: Monotonic clock in seconds

    Returns:
        SolveResult
    """
    return Orchestrator(config, clock).solve(snapshot, rules, token)
