"""Persistence layer for projects and income targets.

Provides schema, connection management and CRUD functions for:
- Projects (deals), with automatic PID assignment
- Yearly / quarterly income targets

Two backends share the same SQL: a local SQLite file (default) and
PostgreSQL through psycopg2 when ``DATABASE_URL`` is set. Queries are written
with ``?`` placeholders and translated for psycopg2.
"""

from __future__ import annotations

import os
import sqlite3
import time
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Iterable

import psycopg2
import psycopg2.extras

from .types import ProjectRecord, TargetRecord

DEFAULT_DB_PATH = Path(os.environ.get("SALESTRACKER_DB_PATH", "data/salestracker.db"))

PROJECT_FIELDS = (
    "pid",
    "business_partner",
    "end_user",
    "category",
    "product",
    "pic",
    "pic_percentage",
    "nett_gp",
    "quarter",
    "year",
    "keterangan",
)

TARGET_FIELDS = ("q1_target", "q2_target", "q3_target", "q4_target", "yearly_target")

# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


def _env_number(name: str, default: float, cast=float):
    try:
        return cast(os.environ.get(name, str(default)))
    except ValueError:
        return default


def _connect_postgres(url: str):
    connect_timeout = _env_number("DB_CONNECT_TIMEOUT_SECONDS", 5, int)
    retries = max(0, _env_number("DB_CONNECT_RETRIES", 2, int))
    backoff_seconds = max(0.0, _env_number("DB_CONNECT_RETRY_BACKOFF_SECONDS", 0.25, float))

    last_exc: psycopg2.OperationalError | None = None
    for attempt in range(retries + 1):
        try:
            return psycopg2.connect(
                url,
                cursor_factory=psycopg2.extras.RealDictCursor,
                connect_timeout=connect_timeout,
            )
        except psycopg2.OperationalError as exc:
            last_exc = exc
            if attempt >= retries:
                break
            time.sleep(backoff_seconds * (2 ** attempt))

    if last_exc is not None:
        raise last_exc
    raise RuntimeError("Failed to establish database connection")


def get_connection(db_path: str | Path | None = None):
    """Open a connection.

    Priority:
      1. ``db_path`` argument: SQLite file (tests, CLI ``--db``)
      2. ``DATABASE_URL``: PostgreSQL via psycopg2
      3. ``DEFAULT_DB_PATH``: SQLite file
    """
    url = os.environ.get("DATABASE_URL")
    if db_path is None and url:
        return _connect_postgres(url)

    path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def is_sqlite(conn) -> bool:
    return isinstance(conn, sqlite3.Connection)


def _sql(conn, query: str) -> str:
    return query if is_sqlite(conn) else query.replace("?", "%s")


def _execute(cur, conn, query: str, params: Iterable[Any] = ()) -> None:
    cur.execute(_sql(conn, query), tuple(params))


@contextmanager
def transaction(conn) -> Generator[Any, None, None]:
    """Context manager that commits on success, rolls back on error."""
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


# ---------------------------------------------------------------------------
# Schema & init
# ---------------------------------------------------------------------------

_PROJECTS_BODY = """\
    pid              TEXT    NOT NULL UNIQUE,
    business_partner TEXT    NOT NULL,
    end_user         TEXT    NOT NULL,
    category         TEXT    NOT NULL CHECK (category IN ('Implementation', 'Maintenance', 'LSC')),
    product          TEXT,
    pic              TEXT    NOT NULL,
    pic_percentage   NUMERIC(5,2) DEFAULT 15.00,
    nett_gp          BIGINT  NOT NULL,
    keterangan       TEXT,
    quarter          TEXT    NOT NULL CHECK (quarter IN ('Q1', 'Q2', 'Q3', 'Q4')),
    year             INTEGER NOT NULL,
    created_at       TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at       TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
"""

_TARGETS_BODY = """\
    year          INTEGER NOT NULL UNIQUE,
    q1_target     BIGINT  NOT NULL DEFAULT 0,
    q2_target     BIGINT  NOT NULL DEFAULT 0,
    q3_target     BIGINT  NOT NULL DEFAULT 0,
    q4_target     BIGINT  NOT NULL DEFAULT 0,
    yearly_target BIGINT  NOT NULL DEFAULT 0,
    created_at    TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at    TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
"""

_INDEXES = """\
CREATE INDEX IF NOT EXISTS idx_projects_year ON projects (year);
CREATE INDEX IF NOT EXISTS idx_projects_year_quarter ON projects (year, quarter);
"""


def _schema(sqlite: bool) -> str:
    pk = "id INTEGER PRIMARY KEY AUTOINCREMENT" if sqlite else "id SERIAL PRIMARY KEY"
    return (
        f"CREATE TABLE IF NOT EXISTS projects (\n    {pk},\n{_PROJECTS_BODY});\n\n"
        f"CREATE TABLE IF NOT EXISTS targets (\n    {pk},\n{_TARGETS_BODY});\n\n"
        + _INDEXES
    )


def init_db(db_path: str | Path | None = None) -> Path | None:
    """Create all tables. Idempotent. Returns the SQLite path when one is used."""
    conn = get_connection(db_path)
    try:
        if is_sqlite(conn):
            conn.executescript(_schema(sqlite=True))
            conn.commit()
            return Path(db_path) if db_path is not None else DEFAULT_DB_PATH
        with conn.cursor() as cur:
            cur.execute(_schema(sqlite=False))
        conn.commit()
        return None
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# PID assignment
# ---------------------------------------------------------------------------


def generate_pid(conn, now: datetime | None = None, prefix: str = "P") -> str:
    """Next free ``P<yy><nnnn>`` code for projects created this calendar year.

    The sequence starts at (projects created this year) + 1 and skips codes
    that are already taken, e.g. after a deletion.
    """
    # created_at is stored in UTC; naive values are taken as UTC.
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    year_suffix = now.strftime("%y")
    year_start = f"{now.year:04d}-01-01 00:00:00"
    next_year_start = f"{now.year + 1:04d}-01-01 00:00:00"
    with closing(conn.cursor()) as cur:
        _execute(
            cur,
            conn,
            "SELECT COUNT(*) AS c FROM projects WHERE created_at >= ? AND created_at < ?",
            (year_start, next_year_start),
        )
        counter = int(cur.fetchone()["c"]) + 1
        while True:
            pid = f"{prefix}{year_suffix}{counter:04d}"
            _execute(cur, conn, "SELECT 1 AS taken FROM projects WHERE pid = ?", (pid,))
            if cur.fetchone() is None:
                return pid
            counter += 1


# ---------------------------------------------------------------------------
# Projects CRUD
# ---------------------------------------------------------------------------


def _insert_project(cur, conn, fields: dict[str, Any], now: datetime | None, prefix: str) -> int:
    values = {k: fields.get(k) for k in PROJECT_FIELDS}
    if values["pic_percentage"] is None:
        values["pic_percentage"] = 15.0
    if not (values["pid"] or "").strip():
        values["pid"] = generate_pid(conn, now=now, prefix=prefix)
    cols = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    _execute(cur, conn, f"INSERT INTO projects ({cols}) VALUES ({marks}) RETURNING id", values.values())
    return int(cur.fetchone()["id"])


def create_project(conn, now: datetime | None = None, prefix: str = "P", **fields: Any) -> int:
    with transaction(conn):
        with closing(conn.cursor()) as cur:
            return _insert_project(cur, conn, fields, now, prefix)


def bulk_create_projects(
    conn, projects: list[dict[str, Any]], now: datetime | None = None, prefix: str = "P"
) -> list[int]:
    """Insert all projects in one transaction; any failure inserts none."""
    ids: list[int] = []
    with transaction(conn):
        with closing(conn.cursor()) as cur:
            for fields in projects:
                ids.append(_insert_project(cur, conn, fields, now, prefix))
    return ids


def get_project(conn, project_id: int) -> dict[str, Any] | None:
    with closing(conn.cursor()) as cur:
        _execute(cur, conn, "SELECT * FROM projects WHERE id = ?", (project_id,))
        row = cur.fetchone()
    return dict(row) if row else None


def list_projects(
    conn,
    year: int | None = None,
    quarter: str | None = None,
    category: str | None = None,
    search: str | None = None,
) -> list[dict[str, Any]]:
    """Projects matching the filters, newest first.

    ``search`` is a case-insensitive substring match on pid, business partner,
    end user and category.
    """
    clauses: list[str] = []
    params: list[Any] = []
    if year is not None:
        clauses.append("year = ?")
        params.append(int(year))
    if quarter:
        clauses.append("quarter = ?")
        params.append(quarter)
    if category:
        clauses.append("category = ?")
        params.append(category)
    if search:
        like = f"%{search.lower()}%"
        clauses.append(
            "(LOWER(pid) LIKE ? OR LOWER(business_partner) LIKE ? OR LOWER(end_user) LIKE ? OR LOWER(category) LIKE ?)"
        )
        params.extend([like] * 4)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    with closing(conn.cursor()) as cur:
        _execute(cur, conn, f"SELECT * FROM projects{where} ORDER BY created_at DESC, id DESC", params)
        return [dict(r) for r in cur.fetchall()]


def update_project(conn, project_id: int, **kwargs: Any) -> bool:
    fields = {k: v for k, v in kwargs.items() if k in PROJECT_FIELDS}
    if not fields:
        return False
    sets = ", ".join(f"{k} = ?" for k in fields)
    vals = list(fields.values()) + [project_id]
    with transaction(conn):
        with closing(conn.cursor()) as cur:
            _execute(cur, conn, f"UPDATE projects SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = ?", vals)
            return cur.rowcount > 0


def delete_project(conn, project_id: int) -> bool:
    with transaction(conn):
        with closing(conn.cursor()) as cur:
            _execute(cur, conn, "DELETE FROM projects WHERE id = ?", (project_id,))
            return cur.rowcount > 0


def list_years(conn) -> list[int]:
    """Distinct years that have projects or targets, newest first."""
    with closing(conn.cursor()) as cur:
        _execute(cur, conn, "SELECT year FROM projects UNION SELECT year FROM targets")
        years = {int(r["year"]) for r in cur.fetchall()}
    return sorted(years, reverse=True)


# ---------------------------------------------------------------------------
# Targets CRUD
# ---------------------------------------------------------------------------


def upsert_target(conn, year: int, **targets: Any) -> int:
    values = {k: int(targets.get(k) or 0) for k in TARGET_FIELDS}
    with transaction(conn):
        with closing(conn.cursor()) as cur:
            _execute(cur, conn, "SELECT id FROM targets WHERE year = ?", (year,))
            row = cur.fetchone()
            if row:
                sets = ", ".join(f"{k} = ?" for k in values)
                _execute(
                    cur,
                    conn,
                    f"UPDATE targets SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    list(values.values()) + [row["id"]],
                )
                return int(row["id"])
            cols = ", ".join(["year", *values])
            marks = ", ".join("?" for _ in range(len(values) + 1))
            _execute(
                cur,
                conn,
                f"INSERT INTO targets ({cols}) VALUES ({marks}) RETURNING id",
                [year, *values.values()],
            )
            return int(cur.fetchone()["id"])


def get_target(conn, year: int) -> dict[str, Any] | None:
    with closing(conn.cursor()) as cur:
        _execute(cur, conn, "SELECT * FROM targets WHERE year = ?", (year,))
        row = cur.fetchone()
    return dict(row) if row else None


def list_targets(conn) -> list[dict[str, Any]]:
    with closing(conn.cursor()) as cur:
        _execute(cur, conn, "SELECT * FROM targets ORDER BY year DESC")
        return [dict(r) for r in cur.fetchall()]


def delete_target(conn, year: int) -> bool:
    with transaction(conn):
        with closing(conn.cursor()) as cur:
            _execute(cur, conn, "DELETE FROM targets WHERE year = ?", (year,))
            return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Snapshot queries for the aggregation engine
# ---------------------------------------------------------------------------


def fetch_projects(
    conn,
    year: int | None = None,
    quarter: str | None = None,
    category: str | None = None,
) -> list[ProjectRecord]:
    return [ProjectRecord.from_row(r) for r in list_projects(conn, year=year, quarter=quarter, category=category)]


def fetch_target(conn, year: int) -> TargetRecord | None:
    row = get_target(conn, year)
    return TargetRecord.from_row(row) if row else None


# Raised on UNIQUE / CHECK violations by either backend.
INTEGRITY_ERRORS: tuple[type[Exception], ...] = (sqlite3.IntegrityError, psycopg2.IntegrityError)
