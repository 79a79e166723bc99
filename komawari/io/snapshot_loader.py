"""Load snapshots, placements, exam plans and elective choices from files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping

import pandas as pd
import yaml

from komawari.domain.models import (
    Availability,
    BlockTeacher,
    BlockType,
    CalendarShape,
    ClassInfo,
    Duty,
    ElectiveStudent,
    ExamSlot,
    Grade,
    LessonBlock,
    Placement,
    Room,
    Slot,
    Subject,
    SubjectCategory,
    SubjectRule,
    Teacher,
    TeacherRole,
)
from komawari.domain.snapshot import DomainSnapshot
from komawari.errors import InvalidInputError


def read_document(path: str | Path) -> Any:
    """Parse a .json file with json and anything else as YAML."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def _require(raw: Mapping[str, Any], key: str, what: str) -> Any:
    if key not in raw:
        raise InvalidInputError(f"{what} is missing required field '{key}': {dict(raw)}")
    return raw[key]


def _enum(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidInputError(f"Unknown {what}: {value!r}") from None


def _availability(entries) -> Dict[Slot, Availability]:
    out: Dict[Slot, Availability] = {}
    for entry in entries or []:
        day = int(_require(entry, "day", "availability entry"))
        period = int(_require(entry, "period", "availability entry"))
        out[(day, period)] = _enum(Availability, entry.get("status", "unavailable"), "availability status")
    return out


def _teacher(raw: Mapping[str, Any]) -> Teacher:
    return Teacher(
        id=str(_require(raw, "id", "teacher")),
        name=str(raw.get("name", raw["id"])),
        main_subject_id=raw.get("main_subject_id"),
        subject_ids=frozenset(raw.get("subject_ids") or ()),
        max_per_day=raw.get("max_per_day"),
        max_consecutive=raw.get("max_consecutive"),
        max_per_week=raw.get("max_per_week"),
        availability=_availability(raw.get("availability")),
    )


def _block(raw: Mapping[str, Any]) -> LessonBlock:
    teachers = []
    for entry in raw.get("teachers") or ():
        if isinstance(entry, str):
            teachers.append(BlockTeacher(entry))
        else:
            teachers.append(
                BlockTeacher(
                    str(_require(entry, "teacher_id", "block teacher")),
                    _enum(TeacherRole, entry.get("role", "main"), "teacher role"),
                )
            )
    return LessonBlock(
        id=str(_require(raw, "id", "lesson block")),
        subject_id=str(_require(raw, "subject_id", "lesson block")),
        teachers=tuple(teachers),
        class_ids=tuple(raw.get("class_ids") or ()),
        room_ids=tuple(raw.get("room_ids") or ()),
        count=int(raw.get("count", 1)),
        type=_enum(BlockType, raw.get("type", "normal"), "block type"),
        priority=int(raw.get("priority", 0)),
        label=str(raw.get("label", "")),
    )


def _rule(raw: Mapping[str, Any]) -> SubjectRule:
    allowed = raw.get("allowed_periods")
    return SubjectRule(
        subject_id=str(_require(raw, "subject_id", "subject rule")),
        max_per_day=raw.get("max_per_day"),
        allowed_periods=frozenset(allowed) if allowed is not None else None,
        forbidden_periods=frozenset(raw.get("forbidden_periods") or ()),
    )


def snapshot_from_dict(data: Mapping[str, Any]) -> DomainSnapshot:
    """
    Build a DomainSnapshot from a parsed document.

    Raises:
        InvalidInputError: On missing fields or unknown enum values. Reference
            checks are left to DomainSnapshot.validate().
    """
    if not isinstance(data, Mapping):
        raise InvalidInputError("Snapshot document root must be a mapping")
    cal = _require(data, "calendar", "snapshot")
    calendar = CalendarShape(
        days_per_week=int(_require(cal, "days_per_week", "calendar")),
        max_periods_per_day=int(_require(cal, "max_periods_per_day", "calendar")),
        lunch_after_period=cal.get("lunch_after_period"),
    )
    return DomainSnapshot(
        calendar=calendar,
        subjects=tuple(
            Subject(
                id=str(_require(s, "id", "subject")),
                name=str(s.get("name", s["id"])),
                short_name=str(s.get("short_name", "")),
                color=str(s.get("color", "")),
                category=_enum(SubjectCategory, s.get("category", "general"), "subject category"),
            )
            for s in data.get("subjects") or ()
        ),
        teachers=tuple(_teacher(t) for t in data.get("teachers") or ()),
        rooms=tuple(
            Room(
                id=str(_require(r, "id", "room")),
                name=str(r.get("name", r["id"])),
                capacity=int(r.get("capacity", 1)),
                availability=_availability(r.get("availability")),
            )
            for r in data.get("rooms") or ()
        ),
        grades=tuple(
            Grade(str(_require(g, "id", "grade")), int(g.get("grade_num", 0)), str(g.get("name", "")))
            for g in data.get("grades") or ()
        ),
        classes=tuple(
            ClassInfo(str(_require(c, "id", "class")), str(c.get("name", c["id"])), c.get("grade_id"))
            for c in data.get("classes") or ()
        ),
        lesson_blocks=tuple(_block(b) for b in data.get("lesson_blocks") or ()),
        duties=tuple(
            Duty(
                id=str(_require(d, "id", "duty")),
                name=str(d.get("name", d["id"])),
                day=int(_require(d, "day", "duty")),
                period=int(_require(d, "period", "duty")),
                teacher_ids=tuple(d.get("teacher_ids") or ()),
            )
            for d in data.get("duties") or ()
        ),
        subject_rules=tuple(_rule(r) for r in data.get("subject_rules") or ()),
        fixed_placements=tuple(
            Placement(str(_require(p, "block_id", "placement")), int(p["day"]), int(p["period"]))
            for p in data.get("fixed_placements") or ()
        ),
    )


def load_snapshot(path: str | Path) -> DomainSnapshot:
    """Load and validate a snapshot from YAML or JSON."""
    snapshot = snapshot_from_dict(read_document(path))
    snapshot.validate()
    return snapshot


def load_placements(csv_path: str | Path) -> List[Placement]:
    """Read placements from a CSV with block_id, day and period columns."""
    df = pd.read_csv(csv_path)
    df.columns = df.columns.str.lower().str.strip()
    missing = {"block_id", "day", "period"} - set(df.columns)
    if missing:
        raise InvalidInputError(f"Placement CSV {csv_path} lacks columns {sorted(missing)}")
    df = df.drop_duplicates(["block_id", "day", "period"])
    return [Placement(str(row.block_id), int(row.day), int(row.period)) for row in df.itertuples(index=False)]


def load_exam_slots(path: str | Path) -> List[ExamSlot]:
    """Load exam sittings from a YAML/JSON list (or a mapping with an 'exam_slots' list)."""
    data = read_document(path)
    if isinstance(data, Mapping):
        data = data.get("exam_slots") or []
    slots = []
    for raw in data:
        day = raw.get("day")
        slots.append(
            ExamSlot(
                date=str(_require(raw, "date", "exam slot")),
                period=int(_require(raw, "period", "exam slot")),
                subject_id=str(_require(raw, "subject_id", "exam slot")),
                class_id=str(_require(raw, "class_id", "exam slot")),
                day=int(day) if day is not None else None,
            )
        )
    return slots


def load_students(csv_path: str | Path) -> List[ElectiveStudent]:
    """
    Read elective choices from CSV or TSV.

    The first row is a header; each following row is a student name followed
    by ranked choices. Empty cells are skipped. Ids are assigned by row
    (stu_1, stu_2, ...) so repeated loads agree.
    """
    df = pd.read_csv(csv_path, sep=None, engine="python", dtype=str, keep_default_na=False)
    students = []
    for i, row in enumerate(df.itertuples(index=False), start=1):
        cells = [str(c).strip() for c in row]
        if not cells or not cells[0]:
            continue
        choices = tuple(c for c in cells[1:] if c)
        students.append(ElectiveStudent(id=f"stu_{i}", name=cells[0], choices=choices))
    return students
