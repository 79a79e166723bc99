"""Command-line interface for exercising the engine on snapshot files."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from komawari.config import EngineConfig, load_config
from komawari.diagnosis import diagnose_candidate
from komawari.domain.models import SubstituteRequest
from komawari.engine.elective import group
from komawari.engine.orchestrator import SolveStatus, solve
from komawari.errors import InvalidInputError
from komawari.io.export_csv import export_candidates_csv, export_elective_csv, export_placements_csv
from komawari.io.snapshot_loader import (
    load_exam_slots,
    load_placements,
    load_snapshot,
    load_students,
    read_document,
)
from komawari.services.substitute import suggest_substitutes
from komawari.services.supervisor import auto_assign_supervisors
from komawari.validator import summarize_candidate, validate_candidate


def _config(args: argparse.Namespace) -> EngineConfig:
    return load_config(args.config) if args.config else EngineConfig()


def _cmd_solve(args: argparse.Namespace) -> None:
    cfg = _config(args)
    if args.seed is not None:
        cfg.solver.random_seed = args.seed
    if args.patterns is not None:
        cfg.solver.max_patterns = args.patterns
    if args.strategy:
        cfg.solver.strategy = args.strategy

    snapshot = load_snapshot(args.snapshot)
    result = solve(snapshot, cfg.rules, cfg.solver)
    print(
        f"[INFO] status={result.status.value} candidates={len(result.candidates)} "
        f"attempts={result.attempts} nodes={result.nodes} elapsed_ms={result.elapsed_ms}"
    )
    if result.status == SolveStatus.INFEASIBLE:
        print(f"[ERROR] {result.reason}")
        raise SystemExit(1)

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    for candidate in result.candidates:
        export_placements_csv(candidate.placements, snapshot, out_dir / f"pattern_{candidate.rank}.csv")
    export_candidates_csv(result.candidates, out_dir / "patterns.csv")

    best = result.candidates[0]
    print(f"[OK] Best pattern: soft_penalty={best.soft_penalty} (attempt {best.attempt})")
    print(summarize_candidate(best.placements, snapshot))


def _cmd_validate(args: argparse.Namespace) -> None:
    cfg = _config(args)
    snapshot = load_snapshot(args.snapshot)
    placements = load_placements(args.placements)
    validate_candidate(placements, snapshot, cfg.rules)
    print("[OK] Validation passed.")


def _cmd_summarize(args: argparse.Namespace) -> None:
    cfg = _config(args)
    snapshot = load_snapshot(args.snapshot)
    placements = load_placements(args.placements)
    print(summarize_candidate(placements, snapshot))
    report = diagnose_candidate(placements, snapshot, cfg.rules)
    print("")
    print(f"Diagnosis: {report.overall_grade} ({report.overall_score})")
    print(report.to_frame().to_string(index=False))


def _cmd_substitute(args: argparse.Namespace) -> None:
    cfg = _config(args)
    snapshot = load_snapshot(args.snapshot)
    placements = load_placements(args.placements)
    request = SubstituteRequest(args.block, args.day, args.period, tuple(args.absent or ()))
    candidates = suggest_substitutes(snapshot, placements, request, policy=cfg.substitute, limit=args.limit)
    if not candidates:
        print("[WARN] No substitute candidates")
        return
    for c in candidates:
        print(f"{c.key}\t{c.score:.0f}\t{' / '.join(c.reasons)}")


def _cmd_supervise(args: argparse.Namespace) -> None:
    snapshot = load_snapshot(args.snapshot)
    slots = load_exam_slots(args.exams)
    assignments = auto_assign_supervisors(snapshot, slots)
    for a in assignments:
        print(f"{a.date}\t{a.period}\t{a.class_id}\t{a.subject_id}\t{a.supervisor_id}")
    print(f"[OK] Assigned {len(assignments)} of {len(slots)} exam sittings")


def _cmd_elective(args: argparse.Namespace) -> None:
    students = load_students(args.students)
    capacities = read_document(args.capacities)
    if not isinstance(capacities, dict):
        raise InvalidInputError("Capacities file must map subject to seats")
    result = group(
        students,
        {str(k): int(v) for k, v in capacities.items()},
        args.periods,
        max_group_size=args.max_group_size,
    )
    print(f"[INFO] groups={len(result.groups)} unassigned={len(result.unassigned)} score={result.score}")
    if args.out:
        export_elective_csv(result, args.out)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="komawari")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    s = sub.add_parser("solve", help="Generate timetable patterns for a snapshot")
    s.add_argument("--snapshot", required=True)
    s.add_argument("--config")
    s.add_argument("--out", required=True, help="Output directory for pattern CSVs")
    s.add_argument("--seed", type=int)
    s.add_argument("--patterns", type=int)
    s.add_argument("--strategy", choices=["backtracking", "cp_sat"])
    s.set_defaults(func=_cmd_solve)

    v = sub.add_parser("validate", help="Validate a placements CSV against a snapshot")
    v.add_argument("--snapshot", required=True)
    v.add_argument("--placements", required=True)
    v.add_argument("--config")
    v.set_defaults(func=_cmd_validate)

    m = sub.add_parser("summarize", help="Summarize and diagnose a placements CSV")
    m.add_argument("--snapshot", required=True)
    m.add_argument("--placements", required=True)
    m.add_argument("--config")
    m.set_defaults(func=_cmd_summarize)

    b = sub.add_parser("substitute", help="Suggest substitute teachers")
    b.add_argument("--snapshot", required=True)
    b.add_argument("--placements", required=True)
    b.add_argument("--block", required=True)
    b.add_argument("--day", type=int, required=True)
    b.add_argument("--period", type=int, required=True)
    b.add_argument("--absent", nargs="*")
    b.add_argument("--limit", type=int)
    b.add_argument("--config")
    b.set_defaults(func=_cmd_substitute)

    x = sub.add_parser("supervise", help="Auto-assign exam supervisors")
    x.add_argument("--snapshot", required=True)
    x.add_argument("--exams", required=True)
    x.set_defaults(func=_cmd_supervise)

    e = sub.add_parser("elective", help="Group students into elective courses")
    e.add_argument("--students", required=True, help="CSV/TSV of names and ranked choices")
    e.add_argument("--capacities", required=True, help="YAML/JSON mapping subject -> seats")
    e.add_argument("--periods", type=int, required=True)
    e.add_argument("--max-group-size", type=int)
    e.add_argument("--out")
    e.set_defaults(func=_cmd_elective)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except InvalidInputError as e:
        print(f"[ERROR] Invalid input: {e}")
        sys.exit(2)
    except ValueError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
