"""I/O utilities for snapshot files and CSV export."""

from .export_csv import export_candidates_csv, export_elective_csv, export_placements_csv
from .snapshot_loader import (
    load_exam_slots,
    load_placements,
    load_snapshot,
    load_students,
    snapshot_from_dict,
)

__all__ = [
    "load_snapshot",
    "snapshot_from_dict",
    "load_placements",
    "load_exam_slots",
    "load_students",
    "export_placements_csv",
    "export_candidates_csv",
    "export_elective_csv",
]
