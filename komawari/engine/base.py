"""Base search interface that every timetable strategy implements."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from komawari.config import ConstraintSet, SolverConfig
from komawari.domain.models import LessonBlock, Placement
from komawari.domain.snapshot import DomainSnapshot
from komawari.errors import InvalidInputError
from komawari.services.constraints import ScheduleState

Clock = Callable[[], float]


class CancellationToken:
    """Cooperative cancellation flag, safe to set from another thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class SearchUnit:
    """One demand unit: a single period of a normal block, or a whole consecutive block."""

    block: LessonBlock
    index: int

    @property
    def key(self) -> Tuple[str, int]:
        return (self.block.id, self.index)

    @property
    def span(self) -> int:
        return self.block.span

    def placements(self, day: int, start: int) -> List[Placement]:
        return [Placement(self.block.id, day, p) for p in range(start, start + self.span)]


def build_units(snapshot: DomainSnapshot) -> List[SearchUnit]:
    """
    Expand lesson blocks into the demand units still to be placed.

    Fixed placements consume units of their block. A consecutive block is
    either fully fixed or not fixed at all.

    Raises:
        InvalidInputError: If fixed placements exceed a block's count or
            cover only part of a consecutive block.
    """
    fixed = Counter(p.block_id for p in set(snapshot.fixed_placements))
    units: List[SearchUnit] = []
    for block in snapshot.lesson_blocks:
        pinned = fixed.get(block.id, 0)
        if pinned > block.count:
            raise InvalidInputError(
                f"Block {block.id} has {pinned} fixed placements but count {block.count}"
            )
        if block.is_consecutive:
            if pinned not in (0, block.count):
                raise InvalidInputError(
                    f"Consecutive block {block.id} is only partially fixed ({pinned}/{block.count})"
                )
            remaining = 0 if pinned else 1
        else:
            remaining = block.count - pinned
        units.extend(SearchUnit(block, i) for i in range(remaining))
    return units


def neighbours(units: List[SearchUnit]) -> Dict[int, Set[int]]:
    """Indices of units sharing a teacher, class or room with each unit."""
    by_resource: Dict[Tuple[str, str], List[int]] = defaultdict(list)
    for i, unit in enumerate(units):
        block = unit.block
        by_resource[("block", block.id)].append(i)
        for tid in block.teacher_ids:
            by_resource[("teacher", tid)].append(i)
        for cid in block.class_ids:
            by_resource[("class", cid)].append(i)
        for rid in block.room_ids:
            by_resource[("room", rid)].append(i)
    out: Dict[int, Set[int]] = {i: set() for i in range(len(units))}
    for members in by_resource.values():
        for i in members:
            out[i].update(members)
    for i in out:
        out[i].discard(i)
    return out


class Outcome(str, Enum):
    FOUND = "found"
    EXHAUSTED = "exhausted"
    NODE_LIMIT = "node_limit"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class AttemptResult:
    outcome: Outcome
    placements: Optional[List[Placement]] = None
    nodes: int = 0


@dataclass
class SearchContext:
    """Everything one attempt needs; built once per solve call."""

    snapshot: DomainSnapshot
    rules: ConstraintSet
    config: SolverConfig
    units: List[SearchUnit]
    deadline: float
    clock: Clock
    token: Optional[CancellationToken] = None
    found: List[FrozenSet[Placement]] = field(default_factory=list)

    def new_state(self) -> ScheduleState:
        state = ScheduleState(self.snapshot, self.rules, self.config.weights)
        for placement in sorted(set(self.snapshot.fixed_placements)):
            state.add_placement(placement)
        return state

    def interrupted(self) -> Optional[Outcome]:
        if self.token is not None and self.token.cancelled:
            return Outcome.CANCELLED
        if self.clock() >= self.deadline:
            return Outcome.TIMEOUT
        return None


class BaseSearch(ABC):
    """
    Abstract base class for timetable search strategies.

    A strategy runs one attempt at a time; the orchestrator owns restarts,
    deduplication and ranking.
    """

    name: str | None = None

    @abstractmethod
    def search(self, ctx: SearchContext, attempt: int) -> AttemptResult:
        """
        Run a single attempt.

        Args:
            ctx: Shared search context
            attempt: Attempt number; 0 is the deterministic first attempt

        Returns:
            AttemptResult. EXHAUSTED means the strategy proved no further
            solution exists.
        """
        pass

    def get_name(self) -> str:
        return self.name or "UNKNOWN"
