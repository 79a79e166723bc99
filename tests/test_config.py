"""Tests for configuration loading and validation."""

import json

import pytest

from komawari.config import (
    ConstraintFamily,
    ConstraintLevel,
    ConstraintRule,
    ConstraintSet,
    SolverConfig,
    config_from_dict,
    load_config,
)
from komawari.errors import InvalidInputError


def test_defaults_fill_every_family():
    rules = ConstraintSet()
    for family in ConstraintFamily:
        assert rules.rule(family) is not None
    assert rules.is_hard(ConstraintFamily.TEACHER_CONFLICT)
    assert rules.level(ConstraintFamily.SUBJECT_DAILY_LIMIT) == ConstraintLevel.SOFT


def test_fixed_hard_family_cannot_be_relaxed():
    with pytest.raises(InvalidInputError, match="always hard"):
        ConstraintSet({ConstraintFamily.CLASS_CONFLICT: ConstraintRule(ConstraintLevel.SOFT, 1.0)})


def test_from_mapping_accepts_string_and_dict():
    rules = ConstraintSet.from_mapping(
        {"teacher_availability": "soft", "room_conflict": {"level": "ignore", "weight": 3}}
    )
    assert rules.level(ConstraintFamily.TEACHER_AVAILABILITY) == ConstraintLevel.SOFT
    assert rules.weight(ConstraintFamily.TEACHER_AVAILABILITY) == 50.0
    assert not rules.is_active(ConstraintFamily.ROOM_CONFLICT)
    assert rules.weight(ConstraintFamily.ROOM_CONFLICT) == 3.0


@pytest.mark.parametrize(
    "raw, message",
    [
        ({"no_such_family": "hard"}, "Unknown constraint family"),
        ({"room_conflict": "sometimes"}, "Unknown level"),
        ({"room_conflict": {"weight": -1}}, "non-negative"),
    ],
)
def test_from_mapping_rejects_bad_entries(raw, message):
    with pytest.raises(InvalidInputError, match=message):
        ConstraintSet.from_mapping(raw)


def test_solver_config_validation():
    SolverConfig().validate()
    with pytest.raises(InvalidInputError):
        SolverConfig(timeout_ms=-1).validate()
    with pytest.raises(InvalidInputError):
        SolverConfig(max_patterns=0).validate()
    with pytest.raises(InvalidInputError):
        SolverConfig(strategy="annealing").validate()
    with pytest.raises(InvalidInputError, match="improve_steps"):
        SolverConfig(improve_steps=-1).validate()


def test_attempt_budget_defaults_to_ten_per_pattern():
    assert SolverConfig(max_patterns=3).attempt_budget == 30
    assert SolverConfig(max_patterns=3, max_attempts=4).attempt_budget == 4


def test_config_from_dict_rejects_unknown_keys():
    with pytest.raises(InvalidInputError, match="Unknown keys in solver"):
        config_from_dict({"solver": {"timeout": 5}})


def test_load_yaml_config(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "solver:\n"
        "  timeout_ms: 5000\n"
        "  max_patterns: 2\n"
        "  weights:\n"
        "    class_gap_penalty: 7\n"
        "constraints:\n"
        "  teacher_availability: soft\n"
        "substitute:\n"
        "  require_subject_match: false\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.solver.timeout_ms == 5000
    assert cfg.solver.max_patterns == 2
    assert cfg.solver.weights.class_gap_penalty == 7
    assert cfg.rules.level(ConstraintFamily.TEACHER_AVAILABILITY) == ConstraintLevel.SOFT
    assert cfg.substitute.require_subject_match is False


def test_load_json_config(tmp_path):
    path = tmp_path / "engine.json"
    path.write_text(json.dumps({"solver": {"random_seed": 11}}), encoding="utf-8")
    cfg = load_config(path)
    assert cfg.solver.random_seed == 11
    assert cfg.solver.strategy == "backtracking"


def test_empty_config_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    cfg = load_config(path)
    assert cfg.solver.max_patterns == 3
    assert cfg.solver.timeout_ms == 60000
