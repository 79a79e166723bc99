"""Immutable dataclasses describing one engine run's domain snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple


Slot = Tuple[int, int]  # (day, period); day 0 = Monday, period 1-based


class SubjectCategory(str, Enum):
    GENERAL = "general"
    RESERVE = "reserve"
    SCHOOL_AFFAIR = "school_affair"


class Availability(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    PREFERRED = "preferred"


class BlockType(str, Enum):
    NORMAL = "normal"
    CONSECUTIVE = "consecutive"


class TeacherRole(str, Enum):
    MAIN = "main"
    SUB = "sub"


@dataclass(frozen=True)
class CalendarShape:
    """Weekly slot space: days_per_week x max_periods_per_day."""

    days_per_week: int
    max_periods_per_day: int
    lunch_after_period: Optional[int] = None

    def slots(self) -> List[Slot]:
        return [
            (day, period)
            for day in range(self.days_per_week)
            for period in range(1, self.max_periods_per_day + 1)
        ]

    def contains(self, day: int, period: int) -> bool:
        return 0 <= day < self.days_per_week and 1 <= period <= self.max_periods_per_day

    def crosses_lunch(self, start: int, span: int) -> bool:
        """True if periods start..start+span-1 straddle the lunch break."""
        if self.lunch_after_period is None or span < 2:
            return False
        return start <= self.lunch_after_period < start + span - 1


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    short_name: str = ""
    color: str = ""
    category: SubjectCategory = SubjectCategory.GENERAL


@dataclass(frozen=True)
class Teacher:
    """Teacher with weekly availability and optional load limits (None = unbounded)."""

    id: str
    name: str
    main_subject_id: Optional[str] = None
    subject_ids: FrozenSet[str] = frozenset()
    max_per_day: Optional[int] = None
    max_consecutive: Optional[int] = None
    max_per_week: Optional[int] = None
    availability: Mapping[Slot, Availability] = field(default_factory=dict, compare=False)

    def status_at(self, day: int, period: int) -> Availability:
        return self.availability.get((day, period), Availability.AVAILABLE)

    def can_teach(self, subject_id: str) -> bool:
        return subject_id == self.main_subject_id or subject_id in self.subject_ids


@dataclass(frozen=True)
class Room:
    """Special room. capacity > 1 marks a shared-capacity room."""

    id: str
    name: str
    capacity: int = 1
    availability: Mapping[Slot, Availability] = field(default_factory=dict, compare=False)

    def status_at(self, day: int, period: int) -> Availability:
        return self.availability.get((day, period), Availability.AVAILABLE)


@dataclass(frozen=True)
class Grade:
    id: str
    grade_num: int
    name: str = ""


@dataclass(frozen=True)
class ClassInfo:
    id: str
    name: str
    grade_id: Optional[str] = None


@dataclass(frozen=True)
class Duty:
    """School-affair duty: excludes its teachers from (day, period)."""

    id: str
    name: str
    day: int
    period: int
    teacher_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BlockTeacher:
    teacher_id: str
    role: TeacherRole = TeacherRole.MAIN


@dataclass(frozen=True)
class LessonBlock:
    """
    A koma: one subject taught to one or more classes.

    A normal block yields `count` independent one-period demand units. A
    consecutive block yields a single unit spanning `count` adjacent periods.
    """

    id: str
    subject_id: str
    teachers: Tuple[BlockTeacher, ...] = ()
    class_ids: Tuple[str, ...] = ()
    room_ids: Tuple[str, ...] = ()
    count: int = 1
    type: BlockType = BlockType.NORMAL
    priority: int = 0
    label: str = ""

    @property
    def teacher_ids(self) -> Tuple[str, ...]:
        return tuple(t.teacher_id for t in self.teachers)

    @property
    def main_teacher_ids(self) -> Tuple[str, ...]:
        return tuple(t.teacher_id for t in self.teachers if t.role == TeacherRole.MAIN)

    @property
    def is_consecutive(self) -> bool:
        return self.type == BlockType.CONSECUTIVE

    @property
    def span(self) -> int:
        return self.count if self.is_consecutive else 1

    @property
    def unit_count(self) -> int:
        return 1 if self.is_consecutive else self.count

    @property
    def participants(self) -> int:
        return len(self.teachers) + len(self.class_ids) + len(self.room_ids)


@dataclass(frozen=True, order=True)
class Placement:
    """One lesson-block occurrence placed on (day, period)."""

    block_id: str
    day: int
    period: int

    @property
    def slot(self) -> Slot:
        return (self.day, self.period)


@dataclass(frozen=True)
class SubjectRule:
    """Per-subject distribution limits for every class taking the subject."""

    subject_id: str
    max_per_day: Optional[int] = None
    allowed_periods: Optional[FrozenSet[int]] = None
    forbidden_periods: FrozenSet[int] = frozenset()

    def permits(self, period: int) -> bool:
        if period in self.forbidden_periods:
            return False
        return self.allowed_periods is None or period in self.allowed_periods


@dataclass(frozen=True)
class TimetableCandidate:
    """A complete proposed timetable with its evaluation."""

    placements: Tuple[Placement, ...]
    soft_penalty: float
    hard_violations: Tuple = ()
    penalty_breakdown: Mapping[str, float] = field(default_factory=dict, compare=False)
    diversity: float = 0.0
    attempt: int = 0
    rank: int = 0

    @property
    def feasible(self) -> bool:
        return not self.hard_violations

    def signature(self) -> FrozenSet[Placement]:
        return frozenset(self.placements)


# Request-scoped inputs of the candidate scoring engine


@dataclass(frozen=True)
class SubstituteRequest:
    """A cancelled occurrence needing a substitute. Absent defaults to the block's teachers."""

    block_id: str
    day: int
    period: int
    absent_teacher_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DailyChange:
    """A substitution already decided for the same day."""

    class_id: str
    day: int
    period: int
    change_type: str = "substitute"
    original_block_id: Optional[str] = None
    substitute_teacher_id: Optional[str] = None


@dataclass(frozen=True)
class RescheduleRequest:
    block_id: str
    day: int
    period: int


@dataclass(frozen=True)
class ExamSlot:
    """One exam sitting: a subject for a class on date/period. `day` drives availability lookups."""

    date: str
    period: int
    subject_id: str
    class_id: str
    day: Optional[int] = None


@dataclass(frozen=True)
class ExamAssignment:
    date: str
    period: int
    subject_id: str
    class_id: str
    supervisor_id: str
    assigned_by: str = "auto"


@dataclass(frozen=True)
class ElectiveStudent:
    id: str
    name: str = ""
    choices: Tuple[str, ...] = ()


@dataclass
class ElectiveGroup:
    subject: str
    period: int
    student_ids: List[str] = field(default_factory=list)
    teacher_id: Optional[str] = None


@dataclass
class ElectiveResult:
    groups: List[ElectiveGroup]
    unassigned: List[str]
    score: float
    satisfaction: Dict[str, float] = field(default_factory=dict)
