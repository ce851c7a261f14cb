"""Income aggregation and ranking.

Pure functions from a project snapshot (plus an optional target) to dashboard
statistics and leaderboards. Nothing here performs I/O or keeps state between
calls; the caller fetches one year's snapshot and passes it in.

Ordering rules:
- quarterly breakdown is always Q1..Q4;
- category breakdown follows first appearance in the snapshot;
- rankings sort by income descending, ties by ascending key.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable

import pandas as pd

from .normalize import normalize_key, projects_frame
from .types import (
    QUARTERS,
    CategoryBreakdown,
    DashboardStats,
    QuarterBreakdown,
    Ranking,
    SubBreakdown,
    TargetRecord,
)

KeyFn = Callable[[pd.Series], Any]


def achievement_of(income: float, target: float) -> float:
    return float(income) / float(target) * 100.0 if target > 0 else 0.0


def compute_dashboard_stats(
    records: pd.DataFrame | Iterable[Any],
    target: TargetRecord | None,
) -> DashboardStats:
    df = projects_frame(records)

    total_income = int(df["nett_gp"].sum())
    yearly_target = int(target.yearly_target) if target is not None else 0

    by_quarter = df.groupby("quarter")["nett_gp"].sum()
    quarterly = [
        QuarterBreakdown(
            quarter=q,
            income=int(by_quarter.get(q, 0)),
            target=target.for_quarter(q) if target is not None else 0,
        )
        for q in QUARTERS
    ]

    by_category = df.groupby("category", sort=False)["nett_gp"].sum()
    categories = [CategoryBreakdown(name=str(name), value=int(value)) for name, value in by_category.items()]

    return DashboardStats(
        total_income=total_income,
        target=yearly_target,
        achievement_percent=achievement_of(total_income, yearly_target),
        gap=yearly_target - total_income,
        quarterly_breakdown=quarterly,
        category_breakdown=categories,
    )


def _key_series(df: pd.DataFrame, key: str | KeyFn) -> pd.Series:
    if callable(key):
        if len(df.index) == 0:
            return pd.Series([], dtype=object)
        return df.apply(key, axis=1).map(normalize_key).astype(object)
    if key not in df.columns:
        raise KeyError(f"Unknown ranking key: {key}")
    return df[key].map(normalize_key).astype(object)


def _sorted_totals(frame: pd.DataFrame, key_col: str) -> pd.DataFrame:
    return frame.sort_values(["total_income", key_col], ascending=[False, True], kind="mergesort")


def compute_ranking(
    records: pd.DataFrame | Iterable[Any],
    key: str | KeyFn,
    limit: int = 5,
    sub_key: str | KeyFn | None = None,
) -> list[Ranking]:
    """Group records by ``key`` and return the top ``limit`` groups by income.

    ``key`` is a column name or a function of a row. With ``sub_key`` each
    returned group also carries the income per sub-key within that group,
    sorted descending (used for per-PIC contributions to a product).
    """
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")

    df = projects_frame(records)
    if len(df.index) == 0 or limit == 0:
        return []

    work = pd.DataFrame({"_key": _key_series(df, key), "nett_gp": df["nett_gp"]})
    if sub_key is not None:
        work["_sub"] = _key_series(df, sub_key).to_numpy()

    totals = (
        work.groupby("_key", sort=False)
        .agg(total_income=("nett_gp", "sum"), project_count=("nett_gp", "size"))
        .reset_index()
    )
    top = _sorted_totals(totals, "_key").head(limit)

    rankings: list[Ranking] = []
    for _, row in top.iterrows():
        subs: list[SubBreakdown] = []
        if sub_key is not None:
            members = work[work["_key"] == row["_key"]]
            sub_totals = members.groupby("_sub", sort=False)["nett_gp"].sum().rename("total_income").reset_index()
            subs = [
                SubBreakdown(sub_key=str(s["_sub"]), income=int(s["total_income"]))
                for _, s in _sorted_totals(sub_totals, "_sub").iterrows()
            ]
        rankings.append(
            Ranking(
                key=str(row["_key"]),
                total_income=int(row["total_income"]),
                project_count=int(row["project_count"]),
                sub_breakdown=subs,
            )
        )
    return rankings


def compute_pic_ranking(records: pd.DataFrame | Iterable[Any], limit: int = 5) -> list[Ranking]:
    return compute_ranking(records, "pic", limit=limit)


def compute_product_ranking(records: pd.DataFrame | Iterable[Any], limit: int = 5) -> list[Ranking]:
    """Top products, each with its per-PIC contribution breakdown."""
    return compute_ranking(records, "product", limit=limit, sub_key="pic")
