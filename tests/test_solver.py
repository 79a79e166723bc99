"""Tests for the timetable search and the orchestrator around it."""

import itertools
import random
from collections import Counter
from dataclasses import replace

import pytest

from komawari.config import ConstraintSet, SolverConfig
from komawari.domain import (
    Availability,
    BlockTeacher,
    BlockType,
    CalendarShape,
    ClassInfo,
    DomainSnapshot,
    LessonBlock,
    Placement,
    Room,
    Subject,
    Teacher,
    TimetableCandidate,
)
from komawari.engine import (
    CancellationToken,
    Orchestrator,
    SolveStatus,
    build_units,
    rank_candidates,
    solve,
)
from komawari.errors import InfeasibleError, InvalidInputError
from komawari.validator import validate_candidate

GENERATED_SUBJECTS = ["kokugo", "sugaku", "eigo", "rika"]


def assert_no_double_booking(placements, snapshot):
    teacher_slots = Counter()
    class_slots = Counter()
    for p in placements:
        block = snapshot.block(p.block_id)
        for tid in block.teacher_ids:
            teacher_slots[(tid, p.day, p.period)] += 1
        for cid in block.class_ids:
            class_slots[(cid, p.day, p.period)] += 1
    assert max(teacher_slots.values()) == 1
    assert max(class_slots.values()) == 1


def test_unavailable_teacher_is_never_scheduled(full_week_snapshot, fast_config):
    result = solve(full_week_snapshot, config=fast_config)
    assert result.status == SolveStatus.COMPLETE
    assert result.candidates
    for candidate in result.candidates:
        math_slots = {p.slot for p in candidate.placements if p.block_id == "b_sugaku"}
        assert (0, 1) not in math_slots
        assert (0, 2) not in math_slots
        assert len(candidate.placements) == 30


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_candidates_are_hard_feasible(two_class_snapshot, seed):
    config = SolverConfig(timeout_ms=120000, max_patterns=2, random_seed=seed)
    result = solve(two_class_snapshot, config=config)
    assert result.candidates
    for candidate in result.candidates:
        assert candidate.feasible
        assert_no_double_booking(candidate.placements, two_class_snapshot)
        validate_candidate(candidate.placements, two_class_snapshot)


def generated_snapshot(seed):
    """Random blocks derived from a clash-free week built by hand, so a timetable is known to exist."""
    rng = random.Random(seed)
    calendar = CalendarShape(5, 6, lunch_after_period=4)
    teacher_ids = [f"T{i}" for i in range(len(GENERATED_SUBJECTS))]
    busy = {tid: set() for tid in teacher_ids}
    counts = Counter()
    for cid in ("1A", "1B", "1C"):
        for slot in calendar.slots():
            if rng.random() < 0.5:
                continue
            free = [tid for tid in teacher_ids if slot not in busy[tid]]
            if not free:
                continue
            tid = rng.choice(free)
            busy[tid].add(slot)
            counts[(cid, tid)] += 1

    teachers = []
    for i, tid in enumerate(teacher_ids):
        idle = [slot for slot in calendar.slots() if slot not in busy[tid]]
        blocked = rng.sample(idle, len(idle) // 4)
        teachers.append(
            Teacher(
                tid,
                f"先生{i}",
                main_subject_id=GENERATED_SUBJECTS[i],
                availability={slot: Availability.UNAVAILABLE for slot in blocked},
            )
        )
    blocks = tuple(
        LessonBlock(f"{cid}_{tid}", GENERATED_SUBJECTS[int(tid[1:])], (BlockTeacher(tid),), (cid,), count=n)
        for (cid, tid), n in sorted(counts.items())
    )
    return DomainSnapshot(
        calendar=calendar,
        subjects=tuple(Subject(sid, sid) for sid in GENERATED_SUBJECTS),
        teachers=tuple(teachers),
        classes=(ClassInfo("1A", "1年A組"), ClassInfo("1B", "1年B組"), ClassInfo("1C", "1年C組")),
        lesson_blocks=blocks,
    )


@pytest.mark.parametrize("seed", [11, 12, 13, 14, 15])
def test_generated_problems_solve_hard_feasible(seed):
    snapshot = generated_snapshot(seed)
    config = SolverConfig(timeout_ms=120000, max_patterns=2, random_seed=seed)
    result = solve(snapshot, config=config)
    assert result.candidates
    for candidate in result.candidates:
        assert_no_double_booking(candidate.placements, snapshot)
        validate_candidate(candidate.placements, snapshot)


@pytest.fixture
def room_snapshot(week_calendar):
    """Three classes; the lab is exclusive, the gym holds two groups, both open Monday and Tuesday only."""
    open_days = {0, 1}
    closed = {
        (day, period): Availability.UNAVAILABLE
        for day in range(week_calendar.days_per_week)
        for period in range(1, week_calendar.max_periods_per_day + 1)
        if day not in open_days
    }
    teachers = [Teacher("TK", "国語先生", main_subject_id="kokugo")]
    blocks = []
    for cid in ("1A", "1B", "1C"):
        teachers.append(Teacher(f"TP_{cid}", f"体育{cid}", main_subject_id="taiiku"))
        blocks.append(LessonBlock(f"{cid}_taiiku", "taiiku", (BlockTeacher(f"TP_{cid}"),), (cid,), ("GYM",), count=3))
    for cid in ("1A", "1B"):
        teachers.append(Teacher(f"TR_{cid}", f"理科{cid}", main_subject_id="rika"))
        blocks.append(LessonBlock(f"{cid}_rika", "rika", (BlockTeacher(f"TR_{cid}"),), (cid,), ("LAB",), count=4))
        blocks.append(LessonBlock(f"{cid}_kokugo", "kokugo", (BlockTeacher("TK"),), (cid,), count=3))
    return DomainSnapshot(
        calendar=week_calendar,
        subjects=(Subject("kokugo", "国語"), Subject("rika", "理科"), Subject("taiiku", "体育")),
        teachers=tuple(teachers),
        rooms=(Room("LAB", "理科室", availability=closed), Room("GYM", "体育館", capacity=2, availability=closed)),
        classes=(ClassInfo("1A", "1年A組"), ClassInfo("1B", "1年B組"), ClassInfo("1C", "1年C組")),
        lesson_blocks=tuple(blocks),
    )


def test_rooms_are_never_overbooked(room_snapshot, fast_config):
    result = solve(room_snapshot, config=fast_config)
    assert result.candidates
    for candidate in result.candidates:
        usage = Counter()
        for p in candidate.placements:
            for rid in room_snapshot.block(p.block_id).room_ids:
                usage[(rid, p.day, p.period)] += 1
        assert max(n for (rid, _d, _p), n in usage.items() if rid == "LAB") == 1
        assert max(n for (rid, _d, _p), n in usage.items() if rid == "GYM") <= 2
        assert {day for (_rid, day, _p) in usage} <= {0, 1}
        validate_candidate(candidate.placements, room_snapshot)


def test_same_seed_gives_same_candidates(two_class_snapshot, fast_config):
    first = solve(two_class_snapshot, config=fast_config)
    second = solve(two_class_snapshot, config=fast_config)
    assert [c.placements for c in first.candidates] == [c.placements for c in second.candidates]
    assert [c.soft_penalty for c in first.candidates] == [c.soft_penalty for c in second.candidates]


def test_patterns_are_distinct_and_ranked(full_week_snapshot, fast_config):
    result = solve(full_week_snapshot, config=fast_config)
    candidates = result.candidates
    assert len(candidates) == 3
    assert len({c.signature() for c in candidates}) == 3
    assert [c.rank for c in candidates] == [1, 2, 3]
    assert candidates[0].soft_penalty == min(c.soft_penalty for c in candidates)
    assert candidates[0].diversity == 1.0
    assert all(0 < c.diversity <= 1 for c in candidates)
    assert result.best is candidates[0]


def test_consecutive_block_stays_together(two_class_snapshot, fast_config):
    snapshot = replace(
        two_class_snapshot,
        lesson_blocks=two_class_snapshot.lesson_blocks
        + (LessonBlock("1A_jikken", "kokugo", (BlockTeacher("TE"),), ("1A",), count=2, type=BlockType.CONSECUTIVE),),
    )
    result = solve(snapshot, config=fast_config)
    assert result.candidates
    lunch = snapshot.calendar.lunch_after_period
    for candidate in result.candidates:
        double = sorted(p for p in candidate.placements if p.block_id == "1A_jikken")
        assert len(double) == 2
        assert double[0].day == double[1].day
        assert double[1].period == double[0].period + 1
        assert double[0].period != lunch


def test_fixed_placements_are_kept(full_week_snapshot, fast_config):
    pinned = (Placement("b_kokugo", 0, 1), Placement("b_eigo", 4, 6))
    snapshot = replace(full_week_snapshot, fixed_placements=pinned)
    result = solve(snapshot, config=fast_config)
    assert result.candidates
    for candidate in result.candidates:
        assert set(pinned) <= set(candidate.placements)
        assert sum(1 for p in candidate.placements if p.block_id == "b_kokugo") == 6


def test_conflicting_fixed_placements_are_infeasible(full_week_snapshot, fast_config):
    snapshot = replace(
        full_week_snapshot,
        fixed_placements=(Placement("b_kokugo", 0, 3), Placement("b_eigo", 0, 3)),
    )
    result = solve(snapshot, config=fast_config)
    assert result.status == SolveStatus.INFEASIBLE
    assert result.candidates == []
    assert "Fixed placements" in result.reason


def test_unplaceable_unit_is_infeasible(full_week_snapshot, fast_config):
    cal = full_week_snapshot.calendar
    never = {slot: Availability.UNAVAILABLE for slot in cal.slots()}
    teachers = tuple(
        Teacher(t.id, t.name, main_subject_id=t.main_subject_id, availability=never) if t.id == "T0" else t
        for t in full_week_snapshot.teachers
    )
    result = solve(replace(full_week_snapshot, teachers=teachers), config=fast_config)
    assert result.status == SolveStatus.INFEASIBLE
    assert result.candidates == []
    with pytest.raises(InfeasibleError):
        result.raise_for_status()


def test_raise_for_status_returns_result_when_solved(full_week_snapshot, fast_config):
    result = solve(full_week_snapshot, config=fast_config)
    assert result.raise_for_status() is result


def test_invalid_snapshot_raises(full_week_snapshot, fast_config):
    bad = replace(
        full_week_snapshot,
        lesson_blocks=full_week_snapshot.lesson_blocks + (LessonBlock("ghost", "sugaku", (BlockTeacher("T99"),)),),
    )
    with pytest.raises(InvalidInputError):
        solve(bad, config=fast_config)


def test_invalid_config_raises(full_week_snapshot):
    with pytest.raises(InvalidInputError):
        solve(full_week_snapshot, config=SolverConfig(max_patterns=0))


def test_cancelled_before_start(full_week_snapshot, fast_config):
    token = CancellationToken()
    token.cancel()
    result = solve(full_week_snapshot, config=fast_config, token=token)
    assert result.status == SolveStatus.CANCELLED
    assert result.candidates == []


def test_timeout_before_first_timetable_is_infeasible(full_week_snapshot):
    ticks = itertools.count()
    config = SolverConfig(timeout_ms=5, max_patterns=3)
    result = Orchestrator(config, clock=lambda: float(next(ticks))).solve(full_week_snapshot)
    assert result.status == SolveStatus.INFEASIBLE
    assert result.candidates == []
    assert "timeout_ms=5" in result.reason
    with pytest.raises(InfeasibleError):
        result.raise_for_status()


def test_timeout_after_first_timetable_keeps_it(full_week_snapshot, monkeypatch):
    clock = {"now": 0.0}
    build = Orchestrator._candidate

    def expire_after_first(self, *args):
        clock["now"] = 1000.0
        return build(self, *args)

    monkeypatch.setattr(Orchestrator, "_candidate", expire_after_first)
    config = SolverConfig(timeout_ms=60000, max_patterns=3)
    result = Orchestrator(config, clock=lambda: clock["now"]).solve(full_week_snapshot)
    assert result.status == SolveStatus.TIMEOUT
    assert len(result.candidates) == 1
    assert result.raise_for_status() is result
    validate_candidate(result.candidates[0].placements, full_week_snapshot)


def test_cancel_during_search_keeps_best_so_far(full_week_snapshot, fast_config, monkeypatch):
    token = CancellationToken()
    build = Orchestrator._candidate

    def cancel_after_first(self, *args):
        token.cancel()
        return build(self, *args)

    monkeypatch.setattr(Orchestrator, "_candidate", cancel_after_first)
    result = solve(full_week_snapshot, config=fast_config, token=token)
    assert result.status == SolveStatus.CANCELLED
    assert len(result.candidates) == 1
    assert result.candidates[0].feasible
    validate_candidate(result.candidates[0].placements, full_week_snapshot)


def test_soft_rules_do_not_block_solving(full_week_snapshot, fast_config):
    rules = ConstraintSet.from_mapping({"teacher_availability": "soft"})
    result = solve(full_week_snapshot, rules=rules, config=fast_config)
    assert result.candidates


def test_build_units_respects_fixed_placements(full_week_snapshot):
    snapshot = replace(full_week_snapshot, fixed_placements=(Placement("b_kokugo", 0, 1),))
    units = build_units(snapshot)
    assert len(units) == 29
    assert sum(1 for u in units if u.block.id == "b_kokugo") == 5


def test_build_units_rejects_partial_consecutive(two_class_snapshot):
    snapshot = replace(
        two_class_snapshot,
        lesson_blocks=(LessonBlock("dbl", "kokugo", (BlockTeacher("TK"),), ("1A",), count=2, type=BlockType.CONSECUTIVE),),
        fixed_placements=(Placement("dbl", 0, 1),),
    )
    with pytest.raises(InvalidInputError, match="partially fixed"):
        build_units(snapshot)


def test_rank_candidates_orders_by_penalty_then_diversity():
    a = TimetableCandidate((Placement("b", 0, 1), Placement("b", 0, 2)), soft_penalty=5.0, attempt=0)
    b = TimetableCandidate((Placement("b", 0, 1), Placement("b", 0, 3)), soft_penalty=5.0, attempt=1)
    c = TimetableCandidate((Placement("b", 1, 1), Placement("b", 1, 2)), soft_penalty=5.0, attempt=2)
    d = TimetableCandidate((Placement("b", 2, 1), Placement("b", 2, 2)), soft_penalty=1.0, attempt=3)
    ranked = rank_candidates([a, b, c, d])
    assert [r.attempt for r in ranked] == [3, 0, 2, 1]
    assert [r.rank for r in ranked] == [1, 2, 3, 4]
    assert ranked[0].diversity == 1.0
    assert ranked[3].diversity == 0.5


@pytest.mark.slow
def test_cp_sat_strategy(two_class_snapshot):
    config = SolverConfig(timeout_ms=120000, max_patterns=2, random_seed=3, strategy="cp_sat")
    result = solve(two_class_snapshot, config=config)
    assert result.status == SolveStatus.COMPLETE
    assert len(result.candidates) == 2
    assert result.candidates[0].signature() != result.candidates[1].signature()
    for candidate in result.candidates:
        validate_candidate(candidate.placements, two_class_snapshot)
