from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd

from komawari.config import ConstraintSet
from komawari.domain.models import Placement
from komawari.domain.snapshot import DomainSnapshot
from komawari.services.constraints import evaluate

DAY_NAMES = ["月", "火", "水", "木", "金", "土"]


def placements_frame(placements: Iterable[Placement], snapshot: DomainSnapshot) -> pd.DataFrame:
    """One row per (placement, class) with subject and teacher columns."""
    rows = []
    for p in sorted(set(placements)):
        block = snapshot.block_by_id.get(p.block_id)
        subject = snapshot.subject_by_id.get(block.subject_id) if block else None
        class_ids = (block.class_ids if block else ()) or ("",)
        for cid in class_ids:
            rows.append(
                {
                    "block_id": p.block_id,
                    "day": p.day,
                    "period": p.period,
                    "class_id": cid,
                    "subject_id": block.subject_id if block else None,
                    "subject": (subject.short_name or subject.name) if subject else "",
                    "teacher_ids": ",".join(block.teacher_ids) if block else "",
                    "room_ids": ",".join(block.room_ids) if block else "",
                }
            )
    columns = ["block_id", "day", "period", "class_id", "subject_id", "subject", "teacher_ids", "room_ids"]
    return pd.DataFrame(rows, columns=columns)


def validate_candidate(
    placements: Iterable[Placement],
    snapshot: DomainSnapshot,
    rules: Optional[ConstraintSet] = None,
) -> None:
    placements = sorted(set(placements))

    # Referential integrity
    unknown = {p.block_id for p in placements} - set(snapshot.block_by_id)
    if unknown:
        raise ValueError(f"Placements reference unknown blocks: {sorted(unknown)}")

    # Calendar bounds
    outside = [p for p in placements if not snapshot.calendar.contains(p.day, p.period)]
    if outside:
        raise ValueError(f"Placements outside the calendar: {len(outside)}")

    # Every block placed exactly `count` times
    df = pd.DataFrame([(p.block_id, p.day, p.period) for p in placements], columns=["block_id", "day", "period"])
    placed = df.groupby("block_id").size() if not df.empty else pd.Series(dtype=int)
    for block in snapshot.lesson_blocks:
        got = int(placed.get(block.id, 0))
        if got != block.count:
            raise ValueError(f"Block {block.id} placed {got} times, expected {block.count}")

    # Hard constraints
    evaluation = evaluate(placements, snapshot, rules)
    if not evaluation.feasible:
        first = evaluation.hard_violations[0]
        raise ValueError(
            f"{len(evaluation.hard_violations)} hard violations; first: {first.family.value} "
            f"{first.reason} (block {first.block_id}, day {first.day}, period {first.period})"
        )


def summarize_candidate(placements: Iterable[Placement], snapshot: DomainSnapshot) -> str:
    df = placements_frame(placements, snapshot)
    if df.empty:
        return "No placements."
    days = DAY_NAMES[: snapshot.calendar.days_per_week]
    periods = range(1, snapshot.calendar.max_periods_per_day + 1)

    lines = []
    for cid, class_df in df[df["class_id"] != ""].groupby("class_id"):
        info = snapshot.class_by_id.get(cid)
        grid = (
            class_df.pivot_table(index="period", columns="day", values="subject", aggfunc="first")
            .reindex(index=periods, columns=range(len(days)))
            .fillna("-")
        )
        grid.columns = days
        lines.append(f"Class {info.name if info else cid}:")
        lines.append(grid.to_string())
        lines.append("")

    teacher_rows = df.drop_duplicates(["block_id", "day", "period"]).assign(
        teacher_id=lambda d: d["teacher_ids"].str.split(",")
    ).explode("teacher_id")
    teacher_rows = teacher_rows[teacher_rows["teacher_id"] != ""]
    if not teacher_rows.empty:
        load = (
            teacher_rows.groupby(["teacher_id", "day"]).size().unstack(fill_value=0)
            .reindex(columns=range(len(days)), fill_value=0)
        )
        load.columns = days
        load["合計"] = load.sum(axis=1)
        lines.append("Periods per teacher per day:")
        lines.append(load.sort_values("合計", ascending=False).to_string())
    return "\n".join(lines)
