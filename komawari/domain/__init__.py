"""Domain snapshot: immutable entities consumed by every engine component."""

from .models import (
    Availability,
    BlockTeacher,
    BlockType,
    CalendarShape,
    ClassInfo,
    DailyChange,
    Duty,
    ElectiveGroup,
    ElectiveResult,
    ElectiveStudent,
    ExamAssignment,
    ExamSlot,
    Grade,
    LessonBlock,
    Placement,
    RescheduleRequest,
    Room,
    Slot,
    Subject,
    SubjectCategory,
    SubjectRule,
    SubstituteRequest,
    Teacher,
    TeacherRole,
    TimetableCandidate,
)
from .snapshot import DomainSnapshot

__all__ = [
    "Availability",
    "BlockTeacher",
    "BlockType",
    "CalendarShape",
    "ClassInfo",
    "DailyChange",
    "DomainSnapshot",
    "Duty",
    "ElectiveGroup",
    "ElectiveResult",
    "ElectiveStudent",
    "ExamAssignment",
    "ExamSlot",
    "Grade",
    "LessonBlock",
    "Placement",
    "RescheduleRequest",
    "Room",
    "Slot",
    "Subject",
    "SubjectCategory",
    "SubjectRule",
    "SubstituteRequest",
    "Teacher",
    "TeacherRole",
    "TimetableCandidate",
]
