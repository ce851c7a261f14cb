from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from . import db
from .aggregation import compute_dashboard_stats, compute_pic_ranking, compute_product_ranking
from .config import TrackerConfig
from .narrative_ai import analyze_income
from .normalize import data_quality_warnings, projects_frame
from .reporting import save_dashboard_charts, write_excel_pack, write_narrative, write_stats_json
from .types import YearReport

logger = logging.getLogger("salestracker.agents")


@dataclass(frozen=True)
class ReportPlan:
    years: list[int]
    leaderboard_limit: int
    use_ai: bool = False


class PlannerAgent:
    def plan(self, conn, year: int | None, leaderboard_limit: int, use_ai: bool = False) -> ReportPlan:
        years = [year] if year is not None else db.list_years(conn)
        return ReportPlan(years=years, leaderboard_limit=leaderboard_limit, use_ai=use_ai)


class AnalystAgent:
    def analyze(self, conn, year: int | None, limit: int) -> YearReport:
        """Aggregate one snapshot; ``year=None`` covers every year (leaderboards only, no target)."""
        records = db.fetch_projects(conn, year=year)
        target = db.fetch_target(conn, year) if year is not None else None
        df = projects_frame(records)
        warnings = data_quality_warnings(df)
        if year is not None and target is None:
            warnings.append(f"No target set for {year}; achievement reported as 0%.")
        return YearReport(
            year=year,
            stats=compute_dashboard_stats(df, target),
            top_pics=compute_pic_ranking(df, limit=limit),
            top_products=compute_product_ranking(df, limit=limit),
            project_count=len(df.index),
            warnings=warnings,
        )

    def run(self, conn, plan: ReportPlan) -> list[YearReport]:
        reports = [self.analyze(conn, year, plan.leaderboard_limit) for year in plan.years]
        logger.info("Analyzed %d year(s): %s", len(reports), ", ".join(str(y) for y in plan.years))
        return reports


class ReporterAgent:
    def __init__(self, config: TrackerConfig | None = None):
        self.config = config or TrackerConfig()

    def package(self, out_dir: Path, reports: list[YearReport], use_ai: bool = False) -> list[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for report in reports:
            label = str(report.year) if report.year is not None else "all"
            year_dir = out_dir / label
            year_dir.mkdir(parents=True, exist_ok=True)
            write_excel_pack(year_dir / "income_pack.xlsx", report)
            write_stats_json(year_dir / "stats.json", report)
            save_dashboard_charts(year_dir / "charts", report)
            write_narrative(year_dir / "narrative.md", report)
            if use_ai:
                result = analyze_income(report.stats, label, self.config.narrative)
                if result.ai_generated:
                    (year_dir / "analysis.md").write_text(result.text, encoding="utf-8")
            written.append(year_dir)
        return written
