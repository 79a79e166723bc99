"""Elective grouping: admit students to elective subjects under capacity limits."""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence

from komawari.domain.models import ElectiveGroup, ElectiveResult, ElectiveStudent
from komawari.errors import InvalidInputError

logger = logging.getLogger(__name__)


def group(
    students: Sequence[ElectiveStudent],
    subject_capacities: Mapping[str, int],
    period_count: int,
    teachers: Optional[Mapping[str, Sequence[str]]] = None,
    max_group_size: Optional[int] = None,
    max_passes: int = 3,
    unassigned_penalty: float = 0.1,
) -> ElectiveResult:
    """
    Assign each student to at most one elective among their ranked choices.

    Algorithm:
    1. Greedy pass in input order: first choice with a free seat
    2. Swap passes: move an admitted student to their next choice with room
       when that frees a seat an unassigned student wants
    3. Split each subject into groups of at most max_group_size and spread
       groups over periods round-robin, most popular subject first

    Args:
        students: Students with ranked choices (subject ids)
        subject_capacities: Seats per subject; subjects not listed have none
        period_count: Elective periods available for groups
        teachers: Optional subject -> teacher ids, handed out one per group
        max_group_size: Group size cap (defaults to the subject capacity)
        max_passes: Upper bound on swap passes
        unassigned_penalty: Score deducted per unassigned student

    Returns:
        ElectiveResult with groups, unassigned student ids, score and
        per-student satisfaction (1 / rank of the admitted choice, 0 if none)

    Raises:
        InvalidInputError: If period_count < 1, a capacity is negative or
            max_group_size < 1
    """
    if period_count < 1:
        raise InvalidInputError(f"period_count must be at least 1, got {period_count}")
    for subject, capacity in subject_capacities.items():
        if capacity < 0:
            raise InvalidInputError(f"Capacity for {subject} is negative: {capacity}")
    if max_group_size is not None and max_group_size < 1:
        raise InvalidInputError(f"max_group_size must be at least 1, got {max_group_size}")

    admitted: Dict[str, str] = {}
    seats: Counter = Counter()

    def has_room(subject: str) -> bool:
        return seats[subject] < subject_capacities.get(subject, 0)

    unassigned: List[ElectiveStudent] = []
    for student in students:
        choice = next((c for c in student.choices if has_room(c)), None)
        if choice is None:
            unassigned.append(student)
            continue
        admitted[student.id] = choice
        seats[choice] += 1

    by_id = {s.id: s for s in students}
    for pass_no in range(max_passes):
        moved = 0
        still_unassigned: List[ElectiveStudent] = []
        for waiting in unassigned:
            placed = False
            for wanted in waiting.choices:
                if wanted not in subject_capacities:
                    continue
                if has_room(wanted):
                    admitted[waiting.id] = wanted
                    seats[wanted] += 1
                    placed = True
                    break
                mover = _find_mover(wanted, admitted, by_id, has_room, students)
                if mover is None:
                    continue
                target = _next_choice_with_room(by_id[mover], wanted, has_room)
                admitted[mover] = target
                seats[target] += 1
                admitted[waiting.id] = wanted
                placed = True
                moved += 1
                break
            if not placed:
                still_unassigned.append(waiting)
        unassigned = still_unassigned
        logger.debug("Elective swap pass %d moved %d students", pass_no + 1, moved)
        if moved == 0 or not unassigned:
            break

    groups = _build_groups(students, admitted, subject_capacities, period_count, teachers, max_group_size)

    satisfaction: Dict[str, float] = {}
    for student in students:
        subject = admitted.get(student.id)
        satisfaction[student.id] = 1.0 / (student.choices.index(subject) + 1) if subject else 0.0
    assigned = [satisfaction[s] for s in admitted]
    mean = sum(assigned) / len(assigned) if assigned else 0.0
    score = round(mean - unassigned_penalty * len(unassigned), 6)

    return ElectiveResult(
        groups=groups,
        unassigned=[s.id for s in unassigned],
        score=score,
        satisfaction=satisfaction,
    )


def _find_mover(subject, admitted, by_id, has_room, students) -> Optional[str]:
    """First admitted student in input order who could leave `subject` for a later choice with room."""
    for student in students:
        if admitted.get(student.id) != subject:
            continue
        if _next_choice_with_room(by_id[student.id], subject, has_room) is not None:
            return student.id
    return None


def _next_choice_with_room(student: ElectiveStudent, current: str, has_room) -> Optional[str]:
    rank = student.choices.index(current)
    for choice in student.choices[rank + 1:]:
        if has_room(choice):
            return choice
    return None


def _build_groups(
    students: Sequence[ElectiveStudent],
    admitted: Mapping[str, str],
    subject_capacities: Mapping[str, int],
    period_count: int,
    teachers: Optional[Mapping[str, Sequence[str]]],
    max_group_size: Optional[int],
) -> List[ElectiveGroup]:
    popularity = Counter(c for s in students for c in s.choices if c in subject_capacities)
    members: Dict[str, List[str]] = {}
    for student in students:
        subject = admitted.get(student.id)
        if subject is not None:
            members.setdefault(subject, []).append(student.id)

    groups: List[ElectiveGroup] = []
    next_period = 0
    for subject in sorted(members, key=lambda s: (-popularity[s], s)):
        ids = members[subject]
        size = max_group_size or max(subject_capacities[subject], 1)
        pool = list((teachers or {}).get(subject, ()))
        for i in range(math.ceil(len(ids) / size)):
            groups.append(
                ElectiveGroup(
                    subject=subject,
                    period=next_period % period_count + 1,
                    student_ids=ids[i * size:(i + 1) * size],
                    teacher_id=pool[i % len(pool)] if pool else None,
                )
            )
            next_period += 1
    return groups
