"""Validation rules for project and target mutations.

The same rules back the HTTP API request models and the bulk import, so a row
that imports cleanly is one the API would also accept.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

Category = Literal["Implementation", "Maintenance", "LSC"]
Quarter = Literal["Q1", "Q2", "Q3", "Q4"]

_TEXT_FIELDS = ("pid", "business_partner", "end_user", "pic", "product", "keterangan")

_MESSAGES = {
    "pid": "PID is required",
    "business_partner": "Business Partner is required",
    "end_user": "End User is required",
    "pic": "PIC is required",
    "category": "Category must be Implementation, Maintenance, or LSC",
    "quarter": "Quarter must be Q1, Q2, Q3, or Q4",
    "nett_gp": "Nett GP must be positive",
    "year": "Year must be between 2000 and 2100",
    "yearly_target": "Yearly target must be positive",
}

_LABELS = {"nett_gp": "Nett GP", "year": "Year"}


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class ProjectIn(BaseModel):
    pid: str = ""
    business_partner: str = Field(min_length=2)
    end_user: str = Field(min_length=2)
    category: Category
    product: str | None = None
    pic: str = Field(min_length=2)
    nett_gp: int = Field(gt=0)
    quarter: Quarter
    year: int = Field(ge=2000, le=2100)
    keterangan: str | None = None
    pic_percentage: float = 15.0

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        return _strip(value)


class ProjectUpdate(BaseModel):
    pid: str | None = Field(default=None, min_length=1)
    business_partner: str | None = Field(default=None, min_length=2)
    end_user: str | None = Field(default=None, min_length=2)
    category: Category | None = None
    product: str | None = None
    pic: str | None = Field(default=None, min_length=2)
    nett_gp: int | None = Field(default=None, gt=0)
    quarter: Quarter | None = None
    year: int | None = Field(default=None, ge=2000, le=2100)
    keterangan: str | None = None
    pic_percentage: float | None = None

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        return _strip(value)


class TargetIn(BaseModel):
    year: int = Field(ge=2000, le=2100)
    q1_target: int = Field(default=0, ge=0)
    q2_target: int = Field(default=0, ge=0)
    q3_target: int = Field(default=0, ge=0)
    q4_target: int = Field(default=0, ge=0)
    yearly_target: int = Field(gt=0)


def error_messages(exc: ValidationError) -> list[str]:
    """Turn a pydantic error into short, user-facing messages (one per field)."""
    messages: list[str] = []
    for err in exc.errors():
        loc = err.get("loc") or ()
        field = str(loc[0]) if loc else ""
        kind = str(err.get("type", ""))
        if field in _LABELS and kind.startswith("int_"):
            msg = f"{_LABELS[field]} must be a whole number"
        else:
            msg = _MESSAGES.get(field) or f"{field}: {err.get('msg', 'invalid value')}"
        if msg not in messages:
            messages.append(msg)
    return messages


def validate_project_row(raw: dict[str, Any]) -> tuple[ProjectIn | None, list[str]]:
    try:
        return ProjectIn.model_validate(raw), []
    except ValidationError as exc:
        return None, error_messages(exc)
