from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

QUARTERS: tuple[str, ...] = ("Q1", "Q2", "Q3", "Q4")
CATEGORIES: tuple[str, ...] = ("Implementation", "Maintenance", "LSC")
NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class ProjectRecord:
    id: Any
    pid: str
    business_partner: str
    end_user: str
    category: str
    pic: str
    nett_gp: int
    quarter: str
    year: int
    product: str | None = None
    keterangan: str | None = None
    pic_percentage: float = 15.0

    @staticmethod
    def from_row(row: dict[str, Any]) -> "ProjectRecord":
        return ProjectRecord(
            id=row.get("id"),
            pid=str(row.get("pid") or ""),
            business_partner=str(row.get("business_partner") or ""),
            end_user=str(row.get("end_user") or ""),
            category=str(row.get("category") or ""),
            pic=str(row.get("pic") or ""),
            nett_gp=int(row.get("nett_gp") or 0),
            quarter=str(row.get("quarter") or ""),
            year=int(row.get("year") or 0),
            product=row.get("product"),
            keterangan=row.get("keterangan"),
            pic_percentage=float(row.get("pic_percentage") if row.get("pic_percentage") is not None else 15.0),
        )


@dataclass(frozen=True)
class TargetRecord:
    year: int
    yearly_target: int
    q1_target: int = 0
    q2_target: int = 0
    q3_target: int = 0
    q4_target: int = 0

    def for_quarter(self, quarter: str) -> int:
        return int(getattr(self, f"{quarter.lower()}_target", 0) or 0)

    @staticmethod
    def from_row(row: dict[str, Any]) -> "TargetRecord":
        return TargetRecord(
            year=int(row["year"]),
            yearly_target=int(row.get("yearly_target") or 0),
            q1_target=int(row.get("q1_target") or 0),
            q2_target=int(row.get("q2_target") or 0),
            q3_target=int(row.get("q3_target") or 0),
            q4_target=int(row.get("q4_target") or 0),
        )


@dataclass(frozen=True)
class QuarterBreakdown:
    quarter: str
    income: int
    target: int


@dataclass(frozen=True)
class CategoryBreakdown:
    name: str
    value: int


@dataclass(frozen=True)
class DashboardStats:
    total_income: int
    target: int
    achievement_percent: float
    gap: int
    quarterly_breakdown: list[QuarterBreakdown]
    category_breakdown: list[CategoryBreakdown]


@dataclass(frozen=True)
class SubBreakdown:
    sub_key: str
    income: int


@dataclass(frozen=True)
class Ranking:
    key: str
    total_income: int
    project_count: int
    sub_breakdown: list[SubBreakdown] = field(default_factory=list)


@dataclass(frozen=True)
class YearReport:
    year: int | None  # None means all years
    stats: DashboardStats
    top_pics: list[Ranking]
    top_products: list[Ranking]
    project_count: int
    warnings: list[str] = field(default_factory=list)
