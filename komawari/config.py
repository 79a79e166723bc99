"""Engine configuration: constraint levels, soft weights and solver settings.

Configuration is loaded from YAML (or JSON) and validated into dataclasses.
Every entry point also accepts these dataclasses directly, so a host never
has to touch the file loader.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from komawari.errors import InvalidInputError


class ConstraintFamily(str, Enum):
    TEACHER_CONFLICT = "teacher_conflict"
    CLASS_CONFLICT = "class_conflict"
    ROOM_CONFLICT = "room_conflict"
    CONSECUTIVE_ADJACENCY = "consecutive_adjacency"
    TEACHER_AVAILABILITY = "teacher_availability"
    ROOM_AVAILABILITY = "room_availability"
    SCHOOL_AFFAIR = "school_affair"
    SUBJECT_DAILY_LIMIT = "subject_daily_limit"
    SUBJECT_PLACEMENT = "subject_placement"
    TEACHER_DAILY_LIMIT = "teacher_daily_limit"
    TEACHER_WEEKLY_LIMIT = "teacher_weekly_limit"
    TEACHER_CONSECUTIVE_LIMIT = "teacher_consecutive_limit"
    CLASS_CONSECUTIVE_SAME = "class_consecutive_same"


class ConstraintLevel(str, Enum):
    HARD = "hard"
    SOFT = "soft"
    IGNORE = "ignore"


# Families that define what a timetable is; they cannot be relaxed.
FIXED_HARD = frozenset(
    {
        ConstraintFamily.TEACHER_CONFLICT,
        ConstraintFamily.CLASS_CONFLICT,
        ConstraintFamily.CONSECUTIVE_ADJACENCY,
    }
)


@dataclass(frozen=True)
class ConstraintRule:
    level: ConstraintLevel = ConstraintLevel.HARD
    weight: float = 10.0


DEFAULT_RULES: Dict[ConstraintFamily, ConstraintRule] = {
    ConstraintFamily.TEACHER_CONFLICT: ConstraintRule(ConstraintLevel.HARD, 100.0),
    ConstraintFamily.CLASS_CONFLICT: ConstraintRule(ConstraintLevel.HARD, 100.0),
    ConstraintFamily.ROOM_CONFLICT: ConstraintRule(ConstraintLevel.HARD, 50.0),
    ConstraintFamily.CONSECUTIVE_ADJACENCY: ConstraintRule(ConstraintLevel.HARD, 100.0),
    ConstraintFamily.TEACHER_AVAILABILITY: ConstraintRule(ConstraintLevel.HARD, 50.0),
    ConstraintFamily.ROOM_AVAILABILITY: ConstraintRule(ConstraintLevel.HARD, 50.0),
    ConstraintFamily.SCHOOL_AFFAIR: ConstraintRule(ConstraintLevel.HARD, 50.0),
    ConstraintFamily.SUBJECT_DAILY_LIMIT: ConstraintRule(ConstraintLevel.SOFT, 10.0),
    ConstraintFamily.SUBJECT_PLACEMENT: ConstraintRule(ConstraintLevel.HARD, 20.0),
    ConstraintFamily.TEACHER_DAILY_LIMIT: ConstraintRule(ConstraintLevel.SOFT, 10.0),
    ConstraintFamily.TEACHER_WEEKLY_LIMIT: ConstraintRule(ConstraintLevel.SOFT, 10.0),
    ConstraintFamily.TEACHER_CONSECUTIVE_LIMIT: ConstraintRule(ConstraintLevel.SOFT, 5.0),
    ConstraintFamily.CLASS_CONSECUTIVE_SAME: ConstraintRule(ConstraintLevel.SOFT, 3.0),
}


class ConstraintSet:
    """Level and weight per constraint family, defaults filled in."""

    def __init__(self, rules: Optional[Mapping[ConstraintFamily, ConstraintRule]] = None):
        merged = dict(DEFAULT_RULES)
        merged.update(rules or {})
        for family in FIXED_HARD:
            if merged[family].level != ConstraintLevel.HARD:
                raise InvalidInputError(f"Constraint family {family.value} is always hard")
        self._rules = merged

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "ConstraintSet":
        """
        Build from a plain mapping such as {"teacher_availability": {"level": "soft", "weight": 30}}.

        Raises:
            InvalidInputError: On unknown families, levels or negative weights.
        """
        rules: Dict[ConstraintFamily, ConstraintRule] = {}
        for name, entry in (raw or {}).items():
            try:
                family = ConstraintFamily(name)
            except ValueError:
                raise InvalidInputError(f"Unknown constraint family: {name}") from None
            default = DEFAULT_RULES[family]
            if isinstance(entry, str):
                entry = {"level": entry}
            try:
                level = ConstraintLevel(entry.get("level", default.level.value))
            except ValueError:
                raise InvalidInputError(f"Unknown level {entry.get('level')!r} for {name}") from None
            weight = float(entry.get("weight", default.weight))
            if weight < 0:
                raise InvalidInputError(f"Weight for {name} must be non-negative, got {weight}")
            rules[family] = ConstraintRule(level, weight)
        return cls(rules)

    def rule(self, family: ConstraintFamily) -> ConstraintRule:
        return self._rules[family]

    def level(self, family: ConstraintFamily) -> ConstraintLevel:
        return self._rules[family].level

    def weight(self, family: ConstraintFamily) -> float:
        return self._rules[family].weight

    def is_hard(self, family: ConstraintFamily) -> bool:
        return self._rules[family].level == ConstraintLevel.HARD

    def is_active(self, family: ConstraintFamily) -> bool:
        return self._rules[family].level != ConstraintLevel.IGNORE

    def items(self):
        return self._rules.items()


@dataclass
class SoftWeights:
    """Weights of the soft objective terms added on top of soft-level violations."""

    teacher_load_balance: float = 1.0
    subject_distribution: float = 5.0
    room_utilization: float = 0.5
    class_gap_penalty: float = 3.0
    preferred_slot: float = 1.0


STRATEGIES = ("backtracking", "cp_sat")


@dataclass
class SolverConfig:
    timeout_ms: int = 60000
    max_patterns: int = 3
    random_seed: int = 0
    weights: SoftWeights = field(default_factory=SoftWeights)
    strategy: str = "backtracking"
    max_nodes_per_attempt: int = 20000
    max_attempts: Optional[int] = None
    improve_steps: int = 200

    def validate(self) -> None:
        if self.timeout_ms < 0:
            raise InvalidInputError(f"timeout_ms must be non-negative, got {self.timeout_ms}")
        if self.max_patterns < 1:
            raise InvalidInputError(f"max_patterns must be at least 1, got {self.max_patterns}")
        if self.strategy not in STRATEGIES:
            raise InvalidInputError(f"Unknown strategy {self.strategy!r}; expected one of {STRATEGIES}")
        if self.max_nodes_per_attempt < 1:
            raise InvalidInputError("max_nodes_per_attempt must be at least 1")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise InvalidInputError("max_attempts must be at least 1")
        if self.improve_steps < 0:
            raise InvalidInputError(f"improve_steps must be non-negative, got {self.improve_steps}")
        for f in fields(self.weights):
            if getattr(self.weights, f.name) < 0:
                raise InvalidInputError(f"Soft weight {f.name} must be non-negative")

    @property
    def attempt_budget(self) -> int:
        """Restart cap; a small solution space would otherwise spin until the timeout."""
        return self.max_attempts or self.max_patterns * 10


@dataclass
class SubstitutePolicy:
    require_subject_match: bool = True
    available_weight: float = 20.0
    same_subject_weight: float = 40.0
    low_load_weight: float = 20.0
    fairness_weight: float = 20.0
    same_grade_weight: float = 10.0


@dataclass
class EngineConfig:
    solver: SolverConfig = field(default_factory=SolverConfig)
    rules: ConstraintSet = field(default_factory=ConstraintSet)
    substitute: SubstitutePolicy = field(default_factory=SubstitutePolicy)


def _build(cls, raw: Optional[Mapping[str, Any]], section: str):
    raw = dict(raw or {})
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise InvalidInputError(f"Unknown keys in {section}: {sorted(unknown)}")
    return cls(**raw)


def config_from_dict(data: Mapping[str, Any]) -> EngineConfig:
    """Validate a parsed configuration document into an EngineConfig."""
    solver_raw = dict(data.get("solver") or {})
    weights = _build(SoftWeights, solver_raw.pop("weights", None), "solver.weights")
    solver = _build(SolverConfig, solver_raw, "solver")
    solver.weights = weights
    solver.validate()

    rules = ConstraintSet.from_mapping(data.get("constraints"))
    substitute = _build(SubstitutePolicy, data.get("substitute"), "substitute")
    return EngineConfig(solver=solver, rules=rules, substitute=substitute)


def load_config(path: str | Path) -> EngineConfig:
    """
    Load engine configuration from a YAML or JSON file.

    Args:
        path: Path to a .yaml/.yml or .json file

    Returns:
        Validated EngineConfig

    Raises:
        InvalidInputError: If the document is malformed
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidInputError(f"Configuration root must be a mapping: {path}")
    return config_from_dict(data)
