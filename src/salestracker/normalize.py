from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any, Iterable

import pandas as pd

from .types import CATEGORIES, NOT_AVAILABLE, QUARTERS

PROJECT_COLUMNS = [
    "id",
    "pid",
    "business_partner",
    "end_user",
    "category",
    "product",
    "pic",
    "nett_gp",
    "quarter",
    "year",
    "keterangan",
]

# Columns used as grouping keys; blanks collapse into the not-available bucket.
KEY_COLUMNS = ["category", "product", "pic"]


def _as_row(record: Any) -> dict[str, Any]:
    if is_dataclass(record) and not isinstance(record, type):
        return asdict(record)
    return dict(record)


def normalize_key(value: Any) -> str:
    if value is None:
        return NOT_AVAILABLE
    try:
        if pd.isna(value):
            return NOT_AVAILABLE
    except (TypeError, ValueError):
        pass
    text = str(value).strip()
    return text or NOT_AVAILABLE


def projects_frame(records: pd.DataFrame | Iterable[Any]) -> pd.DataFrame:
    """Normalize project records into a frame the aggregation functions accept.

    Accepts a DataFrame, ``ProjectRecord`` instances or plain mappings (store
    rows). Missing columns are added, ``nett_gp`` becomes int64 and blank
    grouping keys become ``"N/A"``. Row order is preserved.
    """
    if isinstance(records, pd.DataFrame):
        df = records.copy()
    else:
        df = pd.DataFrame([_as_row(r) for r in records])

    for col in PROJECT_COLUMNS:
        if col not in df.columns:
            df[col] = None

    df["nett_gp"] = pd.to_numeric(df["nett_gp"], errors="coerce").fillna(0).astype("int64")
    for col in KEY_COLUMNS:
        df[col] = df[col].map(normalize_key).astype(object)
    df["quarter"] = df["quarter"].map(lambda q: "" if q is None or pd.isna(q) else str(q).strip()).astype(object)
    return df.reset_index(drop=True)


def data_quality_warnings(df: pd.DataFrame) -> list[str]:
    warnings: list[str] = []
    if len(df.index) == 0:
        return warnings

    bad_quarter = int((~df["quarter"].isin(QUARTERS)).sum())
    if bad_quarter:
        warnings.append(f"{bad_quarter} project rows have a quarter outside Q1..Q4; excluded from the quarterly breakdown.")

    bad_category = int((~df["category"].isin(CATEGORIES)).sum())
    if bad_category:
        warnings.append(f"{bad_category} project rows have an unknown category.")

    non_positive = int((df["nett_gp"] <= 0).sum())
    if non_positive:
        warnings.append(f"{non_positive} project rows have a non-positive Nett GP.")
    return warnings
