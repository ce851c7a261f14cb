"""Bulk project import from Excel workbooks.

Rows are validated independently and every problem is reported with its
spreadsheet row number. A workbook imports only when every row is valid.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, BinaryIO

import pandas as pd
from openpyxl import Workbook

from .validation import ProjectIn, validate_project_row

logger = logging.getLogger("salestracker.importer")

# Field -> accepted column headers, first match wins.
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "pid": ("PID", "pid"),
    "business_partner": ("Business Partner", "business_partner"),
    "end_user": ("End User", "end_user"),
    "category": ("Category", "category"),
    "product": ("Product", "product"),
    "pic": ("PIC", "pic"),
    "nett_gp": ("Nett GP", "nett_gp"),
    "quarter": ("Quarter", "quarter"),
    "year": ("Year", "year"),
    "keterangan": ("Keterangan", "keterangan"),
}

TEMPLATE_ROW = {
    "PID": "P250001",
    "Business Partner": "Example Corp",
    "End User": "ABC Company",
    "Category": "Implementation",
    "Product": "NetApp",
    "PIC": "John Doe",
    "Nett GP": 50_000_000,
    "Quarter": "Q1",
    "Year": 2025,
    "Keterangan": "Optional notes",
}

NO_DATA_MESSAGE = "No valid data found in Excel file"
UNREADABLE_MESSAGE = "Failed to parse Excel file. Please check the format."


@dataclass(frozen=True)
class ParseResult:
    success: bool
    projects: list[ProjectIn] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _cell(row: pd.Series, names: tuple[str, ...]) -> Any:
    for name in names:
        if name in row.index and not _blank(row[name]):
            return row[name]
    return None


def _number(value: Any) -> Any:
    """Coerce spreadsheet numbers; whole floats become ints, junk is passed through for validation."""
    if isinstance(value, str):
        text = value.strip().replace(" ", "")
        try:
            value = float(text)
        except ValueError:
            return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _row_to_fields(row: pd.Series, default_year: int) -> dict[str, Any]:
    raw = {name: _cell(row, aliases) for name, aliases in COLUMN_ALIASES.items()}
    fields: dict[str, Any] = {}
    for name, value in raw.items():
        if name in ("nett_gp", "year"):
            continue
        fields[name] = "" if value is None else str(value).strip()
    fields["nett_gp"] = _number(raw["nett_gp"]) if raw["nett_gp"] is not None else 0
    fields["year"] = _number(raw["year"]) if raw["year"] is not None else default_year
    return fields


def parse_project_frame(df: pd.DataFrame, header_rows: int = 1, default_year: int | None = None) -> ParseResult:
    default_year = default_year or date.today().year
    projects: list[ProjectIn] = []
    errors: list[str] = []

    # The index is the 0-based data row position, so blank rows dropped upstream keep numbering intact.
    for index, row in df.iterrows():
        project, messages = validate_project_row(_row_to_fields(row, default_year))
        if messages:
            errors.append(f"Row {int(index) + 1 + header_rows}: {', '.join(messages)}")
        elif project is not None:
            projects.append(project)

    if errors:
        return ParseResult(success=False, errors=errors)
    if not projects:
        return ParseResult(success=False, errors=[NO_DATA_MESSAGE])
    return ParseResult(success=True, projects=projects)


def parse_project_workbook(
    source: str | Path | bytes | BinaryIO,
    header_rows: int = 1,
    default_year: int | None = None,
) -> ParseResult:
    """Parse the first sheet of an ``.xlsx`` workbook into validated projects."""
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        df = pd.read_excel(source, sheet_name=0, engine="openpyxl", dtype=object)
    except Exception:
        logger.warning("Unreadable project workbook", exc_info=True)
        return ParseResult(success=False, errors=[UNREADABLE_MESSAGE])

    df = df.dropna(how="all")
    result = parse_project_frame(df, header_rows=header_rows, default_year=default_year)
    logger.info(
        "Parsed project workbook: %d valid, %d errors", len(result.projects), len(result.errors)
    )
    return result


def write_import_template(path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    ws = wb.active
    ws.title = "Projects"
    ws.append(list(TEMPLATE_ROW))
    ws.append(list(TEMPLATE_ROW.values()))
    ws.freeze_panes = "A2"
    wb.save(path)
    return path
