"""Tests for elective grouping."""

import pytest

from komawari.domain import ElectiveStudent
from komawari.engine import group
from komawari.errors import InvalidInputError


def _students(n, choices):
    return [ElectiveStudent(f"s{i}", f"生徒{i}", tuple(choices)) for i in range(1, n + 1)]


def test_capacity_is_never_exceeded():
    students = _students(10, ["X", "Y"])
    result = group(students, {"X": 5, "Y": 5}, period_count=2)
    in_x = [sid for g in result.groups if g.subject == "X" for sid in g.student_ids]
    in_y = [sid for g in result.groups if g.subject == "Y" for sid in g.student_ids]
    assert len(in_x) == 5
    assert in_x == ["s1", "s2", "s3", "s4", "s5"]
    assert len(in_y) == 5
    assert result.unassigned == []
    assert result.satisfaction["s1"] == 1.0
    assert result.satisfaction["s6"] == 0.5
    assert result.score == 0.75


def test_students_without_room_stay_unassigned():
    students = _students(10, ["X"])
    result = group(students, {"X": 5, "Y": 5}, period_count=2)
    assert sum(len(g.student_ids) for g in result.groups) == 5
    assert result.unassigned == ["s6", "s7", "s8", "s9", "s10"]
    assert result.satisfaction["s10"] == 0.0
    assert result.score == pytest.approx(0.5)


def test_swap_frees_a_seat():
    students = [
        ElectiveStudent("s1", choices=("A", "B")),
        ElectiveStudent("s2", choices=("A",)),
    ]
    result = group(students, {"A": 1, "B": 1}, period_count=1)
    placed = {g.subject: g.student_ids for g in result.groups}
    assert placed == {"A": ["s2"], "B": ["s1"]}
    assert result.unassigned == []
    assert result.score == 0.75


def test_groups_split_and_spread_over_periods():
    students = _students(5, ["X"])
    result = group(
        students,
        {"X": 5},
        period_count=2,
        teachers={"X": ["TX1", "TX2"]},
        max_group_size=2,
    )
    assert [len(g.student_ids) for g in result.groups] == [2, 2, 1]
    assert [g.period for g in result.groups] == [1, 2, 1]
    assert [g.teacher_id for g in result.groups] == ["TX1", "TX2", "TX1"]


def test_popular_subject_gets_first_period():
    students = _students(3, ["Y", "X"]) + [ElectiveStudent("s9", choices=("X",))]
    result = group(students, {"X": 4, "Y": 4}, period_count=3)
    assert [(g.subject, g.period) for g in result.groups] == [("X", 1), ("Y", 2)]


def test_unknown_subject_has_no_seats():
    result = group([ElectiveStudent("s1", choices=("Z",))], {"X": 1}, period_count=1)
    assert result.groups == []
    assert result.unassigned == ["s1"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"period_count": 0},
        {"period_count": 1, "max_group_size": 0},
    ],
)
def test_invalid_arguments(kwargs):
    with pytest.raises(InvalidInputError):
        group(_students(2, ["X"]), {"X": 2}, **kwargs)


def test_negative_capacity():
    with pytest.raises(InvalidInputError, match="negative"):
        group(_students(2, ["X"]), {"X": -1}, period_count=1)
