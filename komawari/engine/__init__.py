"""Timetable search engine and elective grouping."""

from .backtracking import BacktrackingSearch
from .base import BaseSearch, CancellationToken, SearchUnit, build_units
from .cp_sat import CPSatSearch
from .elective import group
from .local_search import improve
from .orchestrator import Orchestrator, SolveResult, SolveStatus, rank_candidates, solve

__all__ = [
    "BaseSearch",
    "BacktrackingSearch",
    "CPSatSearch",
    "CancellationToken",
    "SearchUnit",
    "build_units",
    "improve",
    "Orchestrator",
    "SolveResult",
    "SolveStatus",
    "rank_candidates",
    "solve",
    "group",
]
