from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from salestracker.config import TrackerConfig, default_config
from salestracker.validation import ProjectIn, ProjectUpdate, TargetIn, validate_project_row


def _raw(**overrides):
    raw = {
        "business_partner": "  Solusi Prima ",
        "end_user": "Bank Sentosa",
        "category": "Maintenance",
        "pic": "Andi",
        "nett_gp": 1_000,
        "quarter": "Q4",
        "year": 2025,
    }
    raw.update(overrides)
    return raw


def test_valid_row_is_stripped_and_defaulted() -> None:
    project, errors = validate_project_row(_raw())
    assert errors == []
    assert project.business_partner == "Solusi Prima"
    assert project.pid == ""
    assert project.product is None
    assert project.pic_percentage == 15.0


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"business_partner": "A"}, "Business Partner is required"),
        ({"end_user": "   "}, "End User is required"),
        ({"pic": ""}, "PIC is required"),
        ({"category": "Consulting"}, "Category must be Implementation, Maintenance, or LSC"),
        ({"quarter": "Q5"}, "Quarter must be Q1, Q2, Q3, or Q4"),
        ({"nett_gp": 0}, "Nett GP must be positive"),
        ({"nett_gp": 12.5}, "Nett GP must be a whole number"),
        ({"year": 1999}, "Year must be between 2000 and 2100"),
        ({"year": "soon"}, "Year must be a whole number"),
    ],
)
def test_row_errors(overrides, message) -> None:
    project, errors = validate_project_row(_raw(**overrides))
    assert project is None
    assert errors == [message]


def test_multiple_errors_reported_together() -> None:
    _, errors = validate_project_row(_raw(category="x", nett_gp=-1, quarter="Q0"))
    assert errors == [
        "Category must be Implementation, Maintenance, or LSC",
        "Nett GP must be positive",
        "Quarter must be Q1, Q2, Q3, or Q4",
    ]


def test_update_allows_partial_bodies() -> None:
    update = ProjectUpdate(nett_gp=5)
    assert {k: v for k, v in update.model_dump().items() if v is not None} == {"nett_gp": 5}
    with pytest.raises(ValidationError):
        ProjectUpdate(quarter="Q7")


def test_target_rules() -> None:
    target = TargetIn(year=2025, yearly_target=1)
    assert (target.q1_target, target.q4_target) == (0, 0)
    with pytest.raises(ValidationError):
        TargetIn(year=2025, yearly_target=0)
    with pytest.raises(ValidationError):
        TargetIn(year=2025, q2_target=-1, yearly_target=10)


def test_project_model_rejects_unknown_category() -> None:
    with pytest.raises(ValidationError):
        ProjectIn(**_raw(category="Sales"))


def test_default_config() -> None:
    cfg = default_config()
    assert cfg.leaderboard_limit == 5
    assert cfg.pid_prefix == "P"
    assert cfg.import_header_rows == 1
    assert cfg.narrative.model


def test_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "tracker.yaml"
    path.write_text("leaderboard_limit: 10\nnarrative:\n  placeholder: offline\n", encoding="utf-8")
    cfg = TrackerConfig.from_yaml(path)
    assert cfg.leaderboard_limit == 10
    assert cfg.pid_prefix == "P"
    assert cfg.narrative.placeholder == "offline"


def test_config_rejects_bad_limit() -> None:
    with pytest.raises(ValueError):
        TrackerConfig.from_mapping({"leaderboard_limit": 0})
