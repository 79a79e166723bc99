"""Pytest configuration and shared fixtures."""

import pytest

from komawari.config import SolverConfig
from komawari.domain import (
    Availability,
    BlockTeacher,
    CalendarShape,
    ClassInfo,
    DomainSnapshot,
    Grade,
    LessonBlock,
    Subject,
    Teacher,
)


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


SUBJECTS = [
    ("kokugo", "国語"),
    ("sugaku", "数学"),
    ("eigo", "英語"),
    ("rika", "理科"),
    ("shakai", "社会"),
]


@pytest.fixture
def week_calendar():
    """Monday-Friday, six periods, lunch after period 4."""
    return CalendarShape(days_per_week=5, max_periods_per_day=6, lunch_after_period=4)


@pytest.fixture
def full_week_snapshot(week_calendar):
    """One class, five subjects of six periods each: every slot of the week is used.

    The math teacher is unavailable on Monday periods 1 and 2.
    """
    subjects = tuple(Subject(sid, name) for sid, name in SUBJECTS)
    teachers = []
    blocks = []
    for i, (sid, _name) in enumerate(SUBJECTS):
        availability = {}
        if sid == "sugaku":
            availability = {(0, 1): Availability.UNAVAILABLE, (0, 2): Availability.UNAVAILABLE}
        teachers.append(Teacher(f"T{i}", f"先生{i}", main_subject_id=sid, availability=availability))
        blocks.append(
            LessonBlock(f"b_{sid}", sid, teachers=(BlockTeacher(f"T{i}"),), class_ids=("1A",), count=6)
        )
    return DomainSnapshot(
        calendar=week_calendar,
        subjects=subjects,
        teachers=tuple(teachers),
        grades=(Grade("g1", 1, "1年"),),
        classes=(ClassInfo("1A", "1年A組", "g1"),),
        lesson_blocks=tuple(blocks),
    )


@pytest.fixture
def two_class_snapshot(week_calendar):
    """Two classes sharing teachers, about half the week filled per class."""
    subjects = tuple(Subject(sid, name) for sid, name in SUBJECTS[:3])
    teachers = (
        Teacher("TK", "国語先生", main_subject_id="kokugo"),
        Teacher("TS", "数学先生", main_subject_id="sugaku"),
        Teacher("TE", "英語先生", main_subject_id="eigo"),
    )
    blocks = []
    for cid in ("1A", "1B"):
        blocks.append(LessonBlock(f"{cid}_kokugo", "kokugo", (BlockTeacher("TK"),), (cid,), count=4))
        blocks.append(LessonBlock(f"{cid}_sugaku", "sugaku", (BlockTeacher("TS"),), (cid,), count=5))
        blocks.append(LessonBlock(f"{cid}_eigo", "eigo", (BlockTeacher("TE"),), (cid,), count=4))
    return DomainSnapshot(
        calendar=week_calendar,
        subjects=subjects,
        teachers=teachers,
        grades=(Grade("g1", 1),),
        classes=(ClassInfo("1A", "1年A組", "g1"), ClassInfo("1B", "1年B組", "g1")),
        lesson_blocks=tuple(blocks),
    )


@pytest.fixture
def fast_config():
    """Solver config with a generous timeout so results never depend on the wall clock."""
    return SolverConfig(timeout_ms=120000, max_patterns=3, random_seed=7)
