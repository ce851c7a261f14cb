from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable

import matplotlib.pyplot as plt
import matplotlib.ticker as mtick
import pandas as pd
from openpyxl import Workbook
from openpyxl.utils.dataframe import dataframe_to_rows

from .aggregation import achievement_of
from .types import DashboardStats, Ranking, YearReport

EXPORT_COLUMNS = {
    "pid": "PID",
    "business_partner": "Business Partner",
    "end_user": "End User",
    "category": "Category",
    "product": "Product",
    "pic": "PIC",
    "nett_gp": "Nett GP",
    "quarter": "Quarter",
    "year": "Year",
}


def format_idr(amount: int | float) -> str:
    """Rupiah display, no fractional unit: ``Rp 1.500.000`` / ``-Rp 100``."""
    value = int(round(amount))
    sign = "-" if value < 0 else ""
    return f"{sign}Rp {abs(value):,}".replace(",", ".")


def stats_to_dict(stats: DashboardStats) -> dict[str, Any]:
    return asdict(stats)


def rankings_to_dicts(rankings: list[Ranking]) -> list[dict[str, Any]]:
    return [asdict(r) for r in rankings]


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


def export_filename(year: int | str, quarter: str = "all", category: str = "all") -> str:
    return f"projects-report-{year}-{quarter}-{category}.csv"


def projects_to_csv(records: Iterable[Any]) -> str:
    """Serialize projects to CSV in the report column layout.

    Blank products are written as empty cells, not the ranking label.
    """
    rows = [r if isinstance(r, dict) else asdict(r) for r in records]
    df = pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))
    df["product"] = df["product"].fillna("")
    return df.rename(columns=EXPORT_COLUMNS).to_csv(index=False, lineterminator="\n")


# ---------------------------------------------------------------------------
# Management pack
# ---------------------------------------------------------------------------


def write_stats_json(path: str | Path, report: YearReport) -> None:
    path = Path(path)
    payload = {
        "year": report.year,
        "project_count": report.project_count,
        "stats": stats_to_dict(report.stats),
        "top_pics": rankings_to_dicts(report.top_pics),
        "top_products": rankings_to_dicts(report.top_products),
        "warnings": report.warnings,
    }
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


def _year_label(report: YearReport) -> str:
    return str(report.year) if report.year is not None else "All years"


def write_narrative(path: str | Path, report: YearReport) -> None:
    path = Path(path)
    stats = report.stats
    lines: list[str] = []
    lines.append(f"# Income Summary - {_year_label(report)}")
    lines.append("")
    lines.append("## Overall")
    lines.append(f"- Total income: {format_idr(stats.total_income)} from {report.project_count} projects")
    lines.append(f"- Yearly target: {format_idr(stats.target)}")
    lines.append(f"- Achievement: {stats.achievement_percent:.1f}%")
    gap_word = "short of" if stats.gap > 0 else "ahead of"
    lines.append(f"- Gap: {format_idr(abs(stats.gap))} {gap_word} target")
    lines.append("")
    lines.append("## Quarterly")
    for q in stats.quarterly_breakdown:
        lines.append(
            f"- {q.quarter}: {format_idr(q.income)} vs {format_idr(q.target)} "
            f"({achievement_of(q.income, q.target):.1f}%)"
        )
    lines.append("")
    if stats.category_breakdown:
        lines.append("## By category")
        for c in stats.category_breakdown:
            lines.append(f"- {c.name}: {format_idr(c.value)}")
        lines.append("")
    if report.top_pics:
        lines.append("## Top PICs")
        for rank, r in enumerate(report.top_pics, start=1):
            lines.append(f"{rank}. {r.key}: {format_idr(r.total_income)} ({r.project_count} projects)")
        lines.append("")
    if report.top_products:
        lines.append("## Top products")
        for rank, r in enumerate(report.top_products, start=1):
            contributors = ", ".join(f"{s.sub_key} {format_idr(s.income)}" for s in r.sub_breakdown)
            lines.append(f"{rank}. {r.key}: {format_idr(r.total_income)} ({r.project_count} projects): {contributors}")
        lines.append("")
    if report.warnings:
        lines.append("## Data Quality / Warnings")
        for w in report.warnings:
            lines.append(f"- {w}")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")


def _millions(value: float, _pos: int) -> str:
    return f"{value / 1_000_000:.0f}M"


def save_dashboard_charts(out_dir: str | Path, report: YearReport) -> list[Path]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths: list[Path] = []
    stats = report.stats

    quarters = [q.quarter for q in stats.quarterly_breakdown]
    income = [q.income for q in stats.quarterly_breakdown]
    target = [q.target for q in stats.quarterly_breakdown]
    x = range(len(quarters))
    plt.figure(figsize=(8, 4))
    plt.bar([i - 0.2 for i in x], income, width=0.4, label="Income")
    plt.bar([i + 0.2 for i in x], target, width=0.4, label="Target")
    plt.xticks(list(x), quarters)
    plt.title(f"Quarterly Income vs Target - {_year_label(report)}")
    plt.gca().yaxis.set_major_formatter(mtick.FuncFormatter(_millions))
    plt.grid(True, axis="y", alpha=0.25)
    plt.legend()
    p = out_dir / "quarterly_income.png"
    plt.tight_layout()
    plt.savefig(p, dpi=160)
    plt.close()
    paths.append(p)

    # A pie of all-zero values is undefined; skip it when nothing was sold.
    categories = [c for c in stats.category_breakdown if c.value > 0]
    if categories:
        plt.figure(figsize=(5, 5))
        plt.pie(
            [c.value for c in categories],
            labels=[c.name for c in categories],
            autopct="%1.0f%%",
        )
        plt.title("Income by Category")
        p = out_dir / "category_income.png"
        plt.tight_layout()
        plt.savefig(p, dpi=160)
        plt.close()
        paths.append(p)
    return paths


def write_excel_pack(path: str | Path, report: YearReport) -> None:
    path = Path(path)
    stats = report.stats
    wb = Workbook()
    wb.remove(wb.active)

    summary = pd.DataFrame(
        [
            ["Year", _year_label(report)],
            ["Projects", report.project_count],
            ["Total Income", stats.total_income],
            ["Yearly Target", stats.target],
            ["Achievement %", round(stats.achievement_percent, 2)],
            ["Gap", stats.gap],
        ],
        columns=["Metric", "Value"],
    )
    _add_df_sheet(wb, "Summary", summary)

    quarterly = pd.DataFrame([asdict(q) for q in stats.quarterly_breakdown])
    quarterly["achievement_percent"] = [
        round(achievement_of(q.income, q.target), 2) for q in stats.quarterly_breakdown
    ]
    _add_df_sheet(wb, "Quarterly", quarterly)
    _add_df_sheet(wb, "Categories", pd.DataFrame([asdict(c) for c in stats.category_breakdown], columns=["name", "value"]))
    _add_df_sheet(wb, "Top PICs", _ranking_frame(report.top_pics, "PIC"))
    _add_df_sheet(wb, "Top Products", _product_frame(report.top_products))

    wb.save(path)


def _ranking_frame(rankings: list[Ranking], key_label: str) -> pd.DataFrame:
    return pd.DataFrame(
        [[rank, r.key, r.total_income, r.project_count] for rank, r in enumerate(rankings, start=1)],
        columns=["Rank", key_label, "Total Income", "Projects"],
    )


def _product_frame(rankings: list[Ranking]) -> pd.DataFrame:
    rows = []
    for rank, r in enumerate(rankings, start=1):
        for s in r.sub_breakdown or []:
            rows.append([rank, r.key, r.total_income, r.project_count, s.sub_key, s.income])
    return pd.DataFrame(rows, columns=["Rank", "Product", "Total Income", "Projects", "PIC", "PIC Income"])


def _add_df_sheet(wb: Workbook, title: str, df: pd.DataFrame) -> None:
    ws = wb.create_sheet(title=title[:31])
    for r in dataframe_to_rows(df, index=False, header=True):
        ws.append(r)
    ws.freeze_panes = "A2"

