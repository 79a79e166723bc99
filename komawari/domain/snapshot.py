"""Read-only domain snapshot with id lookups and up-front validation."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, Iterable, List, Optional, Set, Tuple

from komawari.errors import InvalidInputError

from .models import (
    CalendarShape,
    ClassInfo,
    Duty,
    Grade,
    LessonBlock,
    Placement,
    Room,
    Slot,
    Subject,
    SubjectRule,
    Teacher,
)

MAX_DAYS_PER_WEEK = 6
MAX_PERIODS_PER_DAY = 8


@dataclass(frozen=True)
class DomainSnapshot:
    """
    Everything one solver invocation needs, supplied by the host.

    The snapshot is never mutated during a run; lookups are built lazily and
    cached on the instance.
    """

    calendar: CalendarShape
    subjects: Tuple[Subject, ...] = ()
    teachers: Tuple[Teacher, ...] = ()
    rooms: Tuple[Room, ...] = ()
    grades: Tuple[Grade, ...] = ()
    classes: Tuple[ClassInfo, ...] = ()
    lesson_blocks: Tuple[LessonBlock, ...] = ()
    duties: Tuple[Duty, ...] = ()
    subject_rules: Tuple[SubjectRule, ...] = ()
    fixed_placements: Tuple[Placement, ...] = ()

    @cached_property
    def subject_by_id(self) -> Dict[str, Subject]:
        return {s.id: s for s in self.subjects}

    @cached_property
    def teacher_by_id(self) -> Dict[str, Teacher]:
        return {t.id: t for t in self.teachers}

    @cached_property
    def room_by_id(self) -> Dict[str, Room]:
        return {r.id: r for r in self.rooms}

    @cached_property
    def class_by_id(self) -> Dict[str, ClassInfo]:
        return {c.id: c for c in self.classes}

    @cached_property
    def block_by_id(self) -> Dict[str, LessonBlock]:
        return {b.id: b for b in self.lesson_blocks}

    @cached_property
    def rule_by_subject(self) -> Dict[str, SubjectRule]:
        return {r.subject_id: r for r in self.subject_rules}

    @cached_property
    def duty_slots(self) -> Dict[str, Dict[Slot, Duty]]:
        """teacher_id -> {(day, period): duty}"""
        out: Dict[str, Dict[Slot, Duty]] = defaultdict(dict)
        for duty in self.duties:
            for tid in duty.teacher_ids:
                out[tid][(duty.day, duty.period)] = duty
        return dict(out)

    @cached_property
    def blocks_by_teacher(self) -> Dict[str, List[LessonBlock]]:
        out: Dict[str, List[LessonBlock]] = defaultdict(list)
        for block in self.lesson_blocks:
            for tid in block.teacher_ids:
                out[tid].append(block)
        return dict(out)

    def teacher(self, teacher_id: str) -> Teacher:
        return self.teacher_by_id[teacher_id]

    def block(self, block_id: str) -> LessonBlock:
        return self.block_by_id[block_id]

    def grade_of_class(self, class_id: str) -> Optional[str]:
        info = self.class_by_id.get(class_id)
        return info.grade_id if info else None

    def grades_taught_by(self, teacher_id: str) -> Set[str]:
        grades = set()
        for block in self.blocks_by_teacher.get(teacher_id, []):
            for cid in block.class_ids:
                grade = self.grade_of_class(cid)
                if grade is not None:
                    grades.add(grade)
        return grades

    def subjects_taught_by(self, teacher_id: str) -> Set[str]:
        return {b.subject_id for b in self.blocks_by_teacher.get(teacher_id, [])}

    def total_periods(self) -> int:
        return sum(b.count for b in self.lesson_blocks)

    def validate(self) -> None:
        """
        Check the snapshot before any search work.

        Raises:
            InvalidInputError: On malformed calendar, dangling references,
                impossible block shapes or misplaced fixed placements.
        """
        cal = self.calendar
        if not 1 <= cal.days_per_week <= MAX_DAYS_PER_WEEK:
            raise InvalidInputError(
                f"days_per_week must be in 1..{MAX_DAYS_PER_WEEK}, got {cal.days_per_week}"
            )
        if not 1 <= cal.max_periods_per_day <= MAX_PERIODS_PER_DAY:
            raise InvalidInputError(
                f"max_periods_per_day must be in 1..{MAX_PERIODS_PER_DAY}, got {cal.max_periods_per_day}"
            )

        for label, items in (
            ("subject", self.subjects),
            ("teacher", self.teachers),
            ("room", self.rooms),
            ("class", self.classes),
            ("lesson block", self.lesson_blocks),
        ):
            _check_unique(label, (item.id for item in items))

        for room in self.rooms:
            if room.capacity < 1:
                raise InvalidInputError(f"Room {room.id} has capacity {room.capacity} < 1")

        for block in self.lesson_blocks:
            self._validate_block(block)

        for duty in self.duties:
            if not cal.contains(duty.day, duty.period):
                raise InvalidInputError(
                    f"Duty {duty.id} at day {duty.day} period {duty.period} is outside the calendar"
                )

        for placement in self.fixed_placements:
            if placement.block_id not in self.block_by_id:
                raise InvalidInputError(f"Fixed placement references unknown block {placement.block_id}")
            if not cal.contains(placement.day, placement.period):
                raise InvalidInputError(f"Fixed placement {placement} is outside the calendar")

    def _validate_block(self, block: LessonBlock) -> None:
        if block.subject_id not in self.subject_by_id:
            raise InvalidInputError(f"Block {block.id} references unknown subject {block.subject_id}")
        if block.count < 1:
            raise InvalidInputError(f"Block {block.id} has count {block.count} < 1")
        if block.is_consecutive and block.count > self.calendar.max_periods_per_day:
            raise InvalidInputError(
                f"Consecutive block {block.id} spans {block.count} periods but a day has "
                f"{self.calendar.max_periods_per_day}"
            )
        for tid in block.teacher_ids:
            if tid not in self.teacher_by_id:
                raise InvalidInputError(f"Block {block.id} references unknown teacher {tid}")
        for cid in block.class_ids:
            if cid not in self.class_by_id:
                raise InvalidInputError(f"Block {block.id} references unknown class {cid}")
        for rid in block.room_ids:
            if rid not in self.room_by_id:
                raise InvalidInputError(f"Block {block.id} references unknown room {rid}")


def _check_unique(label: str, ids: Iterable[str]) -> None:
    seen: Set[str] = set()
    for item_id in ids:
        if item_id in seen:
            raise InvalidInputError(f"Duplicate {label} id {item_id}")
        seen.add(item_id)
