"""Database backup to JSON and to replayable SQL INSERT statements."""

from __future__ import annotations

import json
import logging
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("salestracker.backup")

BACKUP_TABLES = ("projects", "targets")

_PROJECT_COLUMNS = (
    "id",
    "pid",
    "business_partner",
    "end_user",
    "category",
    "product",
    "nett_gp",
    "pic",
    "pic_percentage",
    "quarter",
    "year",
    "keterangan",
    "created_at",
    "updated_at",
)
_TARGET_COLUMNS = (
    "id",
    "year",
    "q1_target",
    "q2_target",
    "q3_target",
    "q4_target",
    "yearly_target",
    "created_at",
    "updated_at",
)


def _fetch_all(conn, query: str) -> list[dict[str, Any]]:
    with closing(conn.cursor()) as cur:
        cur.execute(query)
        return [dict(r) for r in cur.fetchall()]


def backup_database(conn) -> dict[str, Any]:
    projects = _fetch_all(conn, "SELECT * FROM projects ORDER BY created_at, id")
    targets = _fetch_all(conn, "SELECT * FROM targets ORDER BY year")
    backup = {
        "projects": projects,
        "targets": targets,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metadata": {
            "total_records": len(projects) + len(targets),
            "tables": list(BACKUP_TABLES),
        },
    }
    logger.info("Backup collected: %d projects, %d targets", len(projects), len(targets))
    return backup


def write_backup_json(path: str | Path, backup: dict[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(backup, indent=2, default=str), encoding="utf-8")
    return path


def backup_filename(ext: str, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"database-backup-{now.date().isoformat()}.{ext}"


def _literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def _inserts(table: str, columns: tuple[str, ...], rows: list[dict[str, Any]]) -> list[str]:
    cols = ", ".join(columns)
    return [
        f"INSERT INTO {table} ({cols}) VALUES ({', '.join(_literal(row.get(c)) for c in columns)});"
        for row in rows
    ]


def export_to_sql(backup: dict[str, Any]) -> str:
    lines = [
        "-- Database Backup",
        f"-- Generated: {backup['timestamp']}",
        f"-- Total Records: {backup['metadata']['total_records']}",
        "",
    ]
    if backup["projects"]:
        lines.append(f"-- Projects Table ({len(backup['projects'])} records)")
        lines.extend(_inserts("projects", _PROJECT_COLUMNS, backup["projects"]))
        lines.append("")
    if backup["targets"]:
        lines.append(f"-- Targets Table ({len(backup['targets'])} records)")
        lines.extend(_inserts("targets", _TARGET_COLUMNS, backup["targets"]))
        lines.append("")
    return "\n".join(lines)


def backup_to_file(conn, path: str | Path, fmt: str = "json") -> Path:
    backup = backup_database(conn)
    path = Path(path)
    if fmt == "sql":
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(export_to_sql(backup), encoding="utf-8")
        return path
    if fmt != "json":
        raise ValueError(f"Unknown backup format: {fmt}")
    return write_backup_json(path, backup)
