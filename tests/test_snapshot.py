"""Tests for domain models and snapshot validation."""

import pytest

from komawari.domain import (
    Availability,
    BlockTeacher,
    BlockType,
    CalendarShape,
    ClassInfo,
    Duty,
    LessonBlock,
    Placement,
    Room,
    Subject,
    SubjectRule,
    Teacher,
    DomainSnapshot,
)
from komawari.errors import InvalidInputError


def _snapshot(**overrides):
    base = dict(
        calendar=CalendarShape(5, 6),
        subjects=(Subject("math", "数学"),),
        teachers=(Teacher("T1", "田中"),),
        rooms=(Room("R1", "理科室"),),
        classes=(ClassInfo("1A", "1年A組"),),
        lesson_blocks=(LessonBlock("b1", "math", (BlockTeacher("T1"),), ("1A",), ("R1",), count=2),),
    )
    base.update(overrides)
    return DomainSnapshot(**base)


def test_valid_snapshot_passes():
    _snapshot().validate()


def test_lookups():
    snap = _snapshot()
    assert snap.teacher("T1").name == "田中"
    assert snap.block("b1").count == 2
    assert snap.blocks_by_teacher["T1"][0].id == "b1"
    assert snap.total_periods() == 2


@pytest.mark.parametrize("days, periods", [(0, 6), (7, 6), (5, 0), (5, 9)])
def test_calendar_bounds(days, periods):
    with pytest.raises(InvalidInputError):
        _snapshot(calendar=CalendarShape(days, periods)).validate()


def test_duplicate_ids_rejected():
    with pytest.raises(InvalidInputError, match="Duplicate teacher id T1"):
        _snapshot(teachers=(Teacher("T1", "a"), Teacher("T1", "b"))).validate()


@pytest.mark.parametrize(
    "block, message",
    [
        (LessonBlock("b1", "art", (BlockTeacher("T1"),), ("1A",)), "unknown subject"),
        (LessonBlock("b1", "math", (BlockTeacher("T9"),), ("1A",)), "unknown teacher"),
        (LessonBlock("b1", "math", (BlockTeacher("T1"),), ("3C",)), "unknown class"),
        (LessonBlock("b1", "math", (BlockTeacher("T1"),), ("1A",), ("R9",)), "unknown room"),
        (LessonBlock("b1", "math", (BlockTeacher("T1"),), ("1A",), count=0), "count 0"),
        (
            LessonBlock("b1", "math", (BlockTeacher("T1"),), ("1A",), count=7, type=BlockType.CONSECUTIVE),
            "spans 7 periods",
        ),
    ],
)
def test_bad_blocks_rejected(block, message):
    with pytest.raises(InvalidInputError, match=message):
        _snapshot(lesson_blocks=(block,)).validate()


def test_duty_and_fixed_placement_bounds():
    with pytest.raises(InvalidInputError, match="outside the calendar"):
        _snapshot(duties=(Duty("d1", "職員会議", 5, 1, ("T1",)),)).validate()
    with pytest.raises(InvalidInputError, match="unknown block"):
        _snapshot(fixed_placements=(Placement("nope", 0, 1),)).validate()
    with pytest.raises(InvalidInputError, match="outside the calendar"):
        _snapshot(fixed_placements=(Placement("b1", 0, 7),)).validate()


def test_room_capacity_must_be_positive():
    with pytest.raises(InvalidInputError, match="capacity"):
        _snapshot(rooms=(Room("R1", "体育館", capacity=0),)).validate()


def test_block_units():
    normal = LessonBlock("n", "math", count=3)
    double = LessonBlock("d", "math", count=2, type=BlockType.CONSECUTIVE)
    assert (normal.span, normal.unit_count) == (1, 3)
    assert (double.span, double.unit_count) == (2, 1)


def test_calendar_lunch_crossing():
    cal = CalendarShape(5, 6, lunch_after_period=4)
    assert cal.crosses_lunch(4, 2)
    assert not cal.crosses_lunch(3, 2)
    assert not cal.crosses_lunch(5, 2)
    assert not cal.crosses_lunch(4, 1)
    assert len(cal.slots()) == 30


def test_teacher_and_rule_helpers():
    teacher = Teacher(
        "T1", "a", main_subject_id="math", subject_ids=frozenset({"sci"}),
        availability={(0, 1): Availability.PREFERRED},
    )
    assert teacher.can_teach("math") and teacher.can_teach("sci") and not teacher.can_teach("art")
    assert teacher.status_at(0, 1) == Availability.PREFERRED
    assert teacher.status_at(0, 2) == Availability.AVAILABLE

    rule = SubjectRule("pe", allowed_periods=frozenset({1, 2, 3}), forbidden_periods=frozenset({2}))
    assert rule.permits(1)
    assert not rule.permits(2)
    assert not rule.permits(5)
