"""CSV export utilities for timetable candidates and elective results."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from komawari.domain.models import ElectiveResult, Placement, TimetableCandidate
from komawari.domain.snapshot import DomainSnapshot
from komawari.validator import placements_frame


def export_placements_csv(
    placements: Iterable[Placement],
    snapshot: DomainSnapshot,
    output_path: str | Path,
) -> int:
    """
    Export placements to CSV, one row per placement and class.

    Args:
        placements: Placements to export
        snapshot: Snapshot used to resolve subjects, teachers and rooms
        output_path: Path to output CSV

    Returns:
        Number of placements exported
    """
    placements = sorted(set(placements))
    df = placements_frame(placements, snapshot)
    df.to_csv(output_path, index=False)
    print(f"[INFO] Exported {len(placements)} placements to {output_path}")
    return len(placements)


def export_candidates_csv(candidates: Iterable[TimetableCandidate], output_path: str | Path) -> int:
    """
    Export a ranked candidate overview to CSV.

    Args:
        candidates: Ranked candidates
        output_path: Path to output CSV

    Returns:
        Number of candidates exported
    """
    rows = []
    for c in candidates:
        row = {
            "rank": c.rank,
            "attempt": c.attempt,
            "soft_penalty": c.soft_penalty,
            "diversity": c.diversity,
            "placements": len(c.placements),
            "hard_violations": len(c.hard_violations),
        }
        row.update({f"penalty_{k}": v for k, v in c.penalty_breakdown.items()})
        rows.append(row)
    df = pd.DataFrame(rows)
    df.to_csv(output_path, index=False)
    print(f"[INFO] Exported {len(rows)} candidates to {output_path}")
    return len(rows)


def export_elective_csv(result: ElectiveResult, output_path: str | Path) -> int:
    """
    Export elective groups to CSV, one row per student (unassigned students last).

    Returns:
        Number of rows exported
    """
    rows = [
        {"student_id": sid, "subject": g.subject, "period": g.period, "teacher_id": g.teacher_id or ""}
        for g in result.groups
        for sid in g.student_ids
    ]
    rows.extend({"student_id": sid, "subject": "", "period": None, "teacher_id": ""} for sid in result.unassigned)
    df = pd.DataFrame(rows, columns=["student_id", "subject", "period", "teacher_id"])
    df.to_csv(output_path, index=False)
    print(f"[INFO] Exported {len(rows)} elective rows to {output_path}")
    return len(rows)
