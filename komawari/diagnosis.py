"""Graded (A-E) quality report for a timetable."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

import pandas as pd

from komawari.config import ConstraintSet
from komawari.domain.models import Placement, TimetableCandidate
from komawari.domain.snapshot import DomainSnapshot
from komawari.services.constraints import evaluate
from komawari.validator import placements_frame

# Category weights of the overall score
CATEGORY_WEIGHTS = {
    "constraint_violation": 30,
    "teacher_load_balance": 20,
    "class_gap": 20,
    "room_utilization": 15,
    "subject_distribution": 15,
}


@dataclass
class CategoryDiagnosis:
    category: str
    label: str
    grade: str
    score: int
    details: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


@dataclass
class DiagnosisReport:
    overall_grade: str
    overall_score: int
    categories: List[CategoryDiagnosis]
    total_violations: int

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(c.category, c.label, c.grade, c.score) for c in self.categories],
            columns=["category", "label", "grade", "score"],
        )


def score_to_grade(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 75:
        return "B"
    if score >= 60:
        return "C"
    if score >= 40:
        return "D"
    return "E"


def _clamp(score: float) -> int:
    return int(max(0, min(100, score)))


def diagnose_candidate(
    candidate: Union[TimetableCandidate, Iterable[Placement]],
    snapshot: DomainSnapshot,
    rules: Optional[ConstraintSet] = None,
) -> DiagnosisReport:
    """
    Grade a timetable on five categories and overall.

    Args:
        candidate: A TimetableCandidate or plain placements
        snapshot: Domain snapshot
        rules: Constraint levels and weights

    Returns:
        DiagnosisReport; the overall score is the weighted mean of the
        category scores
    """
    placements = list(getattr(candidate, "placements", candidate))
    evaluation = evaluate(placements, snapshot, rules)
    df = placements_frame(placements, snapshot)

    categories = [
        _constraint_violations(evaluation),
        _teacher_load_balance(df, snapshot),
        _class_gaps(df),
        _room_utilization(df, snapshot),
        _subject_distribution(df, snapshot),
    ]
    total = sum(CATEGORY_WEIGHTS.values())
    overall = round(sum(c.score * CATEGORY_WEIGHTS[c.category] for c in categories) / total)
    return DiagnosisReport(
        overall_grade=score_to_grade(overall),
        overall_score=overall,
        categories=categories,
        total_violations=len(evaluation.hard_violations) + len(evaluation.soft_violations),
    )


def _constraint_violations(evaluation) -> CategoryDiagnosis:
    errors = len(evaluation.hard_violations)
    warnings = len(evaluation.soft_violations)
    weight_total = sum(v.weight for v in evaluation.hard_violations + evaluation.soft_violations)
    score = _clamp(100 - errors * 15 - warnings * 5 - int(weight_total // 10))

    details = []
    if errors:
        details.append(f"重大な違反: {errors}件")
    if warnings:
        details.append(f"軽微な違反: {warnings}件")
    if not errors and not warnings:
        details.append("制約違反はありません")
    by_family = pd.Series(
        [v.family.value for v in evaluation.hard_violations + evaluation.soft_violations], dtype=object
    ).value_counts()
    details.extend(f"{family}: {count}件" for family, count in by_family.items())

    suggestions = []
    if errors:
        suggestions.append("重大な制約違反を解消するため、手動配置の見直しを推奨")
    if warnings > 5:
        suggestions.append("警告が多いため、処理条件の見直しを検討してください")
    return CategoryDiagnosis("constraint_violation", "制約違反", score_to_grade(score), score, details, suggestions)


def _teacher_rows(df: pd.DataFrame) -> pd.DataFrame:
    rows = df.drop_duplicates(["block_id", "day", "period"]).assign(
        teacher_id=lambda d: d["teacher_ids"].str.split(",")
    ).explode("teacher_id")
    return rows[rows["teacher_id"].fillna("") != ""]


def _teacher_load_balance(df: pd.DataFrame, snapshot: DomainSnapshot) -> CategoryDiagnosis:
    days = snapshot.calendar.days_per_week
    details: List[str] = []
    uneven = 0
    variances: List[float] = []
    rows = _teacher_rows(df) if not df.empty else df
    if not rows.empty:
        load = rows.groupby(["teacher_id", "day"]).size().unstack(fill_value=0)
        load = load.reindex(columns=range(days), fill_value=0)
        for tid, counts in load.iterrows():
            variance = float(counts.var(ddof=0))
            variances.append(variance)
            if variance > 2:
                uneven += 1
                teacher = snapshot.teacher_by_id.get(tid)
                name = teacher.name if teacher else tid
                details.append(f"{name}: 曜日間のばらつきが大きい ({','.join(str(c) for c in counts)})")

    avg_variance = sum(variances) / len(variances) if variances else 0.0
    score = _clamp(100 - int(avg_variance * 15) - uneven * 5)
    if not uneven and variances:
        details.insert(0, "全先生の負荷は均等です")
    suggestions = []
    if uneven:
        suggestions.append("負荷が偏っている先生の授業を別の曜日に移動することを検討してください")
    return CategoryDiagnosis(
        "teacher_load_balance", "先生負荷バランス", score_to_grade(score), score, details[:10], suggestions
    )


def _class_gaps(df: pd.DataFrame) -> CategoryDiagnosis:
    total_gaps = 0
    classes = df[df["class_id"] != ""] if not df.empty else df
    if not classes.empty:
        spans = classes.drop_duplicates(["class_id", "day", "period"]).groupby(["class_id", "day"])["period"]
        stats = spans.agg(["min", "max", "count"])
        total_gaps = int((stats["max"] - stats["min"] + 1 - stats["count"]).sum())

    score = _clamp(100 - total_gaps * 10)
    details = ["空き時間（ギャップ）はありません" if not total_gaps else f"空き時間（ギャップ）: {total_gaps}件"]
    suggestions = []
    if total_gaps:
        suggestions.append("クラスの空き時間を減らすため、授業を詰めて配置することを検討してください")
    return CategoryDiagnosis("class_gap", "クラス空き時間", score_to_grade(score), score, details, suggestions)


def _room_utilization(df: pd.DataFrame, snapshot: DomainSnapshot) -> CategoryDiagnosis:
    if not snapshot.rooms:
        return CategoryDiagnosis("room_utilization", "教室稼働率", "A", 100, ["特別教室は未設定です"], [])

    total_slots = snapshot.calendar.days_per_week * snapshot.calendar.max_periods_per_day
    usage = pd.Series(dtype=int)
    if not df.empty:
        rooms = df.drop_duplicates(["block_id", "day", "period"]).assign(
            room_id=lambda d: d["room_ids"].str.split(",")
        ).explode("room_id")
        usage = rooms[rooms["room_id"].fillna("") != ""].groupby("room_id").size()

    details: List[str] = []
    rates: List[int] = []
    for room in snapshot.rooms:
        used = int(usage.get(room.id, 0))
        rate = round(used / total_slots * 100) if total_slots else 0
        rates.append(rate)
        details.append(f"{room.name}: {rate}%（{used}/{total_slots}コマ）")
    avg_rate = round(sum(rates) / len(rates)) if rates else 0

    score = 100
    if avg_rate < 10:
        score -= 20
    if avg_rate > 90:
        score -= 15
    details.insert(0, f"平均稼働率: {avg_rate}%")
    suggestions = []
    if avg_rate > 80:
        suggestions.append("教室の稼働率が高すぎます。教室の追加を検討してください")
    if avg_rate < 10:
        suggestions.append("教室が十分に活用されていません")
    return CategoryDiagnosis(
        "room_utilization", "教室稼働率", score_to_grade(score), score, details[:10], suggestions
    )


def _subject_distribution(df: pd.DataFrame, snapshot: DomainSnapshot) -> CategoryDiagnosis:
    poor = 0
    details: List[str] = []
    classes = df[df["class_id"] != ""] if not df.empty else df
    if not classes.empty:
        stats = classes.groupby(["class_id", "subject_id"]).agg(total=("period", "size"), days=("day", "nunique"))
        for (cid, subject_id), row in stats.iterrows():
            if row["total"] >= 2 and row["days"] == 1:
                poor += 1
                info = snapshot.class_by_id.get(cid)
                subject = snapshot.subject_by_id.get(subject_id)
                details.append(
                    f"{info.name if info else cid}: {subject.name if subject else subject_id}"
                    f"({row['total']}コマ)が1日に集中"
                )

    score = _clamp(100 - poor * 10)
    if not poor and not classes.empty:
        details.insert(0, "教科は曜日間で適切に分散されています")
    suggestions = []
    if poor:
        suggestions.append("同一教科が特定の曜日に集中しています。別の曜日に分散させてください")
    return CategoryDiagnosis(
        "subject_distribution", "教科曜日分散", score_to_grade(score), score, details[:10], suggestions
    )
