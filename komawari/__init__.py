"""Timetable generation engine for Japanese secondary schools.

Modules:
- config: constraint levels, soft weights and solver settings (YAML or JSON)
- errors: InvalidInputError and InfeasibleError
- domain: immutable snapshot of calendar, teachers, rooms, classes and lesson blocks
- services.constraints: full and incremental constraint evaluation
- services.scoring: generic candidate ranking, plus substitute / supervisor / reschedule suggestions
- engine: backtracking and CP-SAT timetable search, restarts and ranking; elective grouping
- validator: post-generation validation and text summaries
- diagnosis: graded (A-E) quality report
- io: snapshot loading and CSV export
- cli: command-line interface entrypoints
"""

__all__ = [
    "config",
    "errors",
    "domain",
    "services",
    "engine",
    "validator",
    "diagnosis",
    "io",
    "cli",
]
