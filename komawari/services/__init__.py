"""Services: constraint evaluation and candidate scoring."""

from .constraints import Evaluation, ScheduleState, Violation, evaluate
from .reschedule import propose_reschedule_slots
from .scoring import Feature, HardCheck, ScoredCandidate, rank
from .substitute import suggest_substitutes
from .supervisor import auto_assign_supervisors, suggest_supervisors

__all__ = [
    "Evaluation",
    "ScheduleState",
    "Violation",
    "evaluate",
    "Feature",
    "HardCheck",
    "ScoredCandidate",
    "rank",
    "suggest_substitutes",
    "suggest_supervisors",
    "auto_assign_supervisors",
    "propose_reschedule_slots",
]
