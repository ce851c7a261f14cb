"""FastAPI APIRouter with CRUD endpoints for projects and targets, plus dashboard and leaderboard reads."""

from __future__ import annotations

from datetime import date
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import Response

from . import db
from .aggregation import compute_dashboard_stats, compute_pic_ranking, compute_product_ranking
from .backup import backup_database, backup_filename, export_to_sql
from .config import default_config
from .importer import parse_project_workbook
from .reporting import export_filename, projects_to_csv, rankings_to_dicts, stats_to_dict
from .validation import ProjectIn, ProjectUpdate, TargetIn

router = APIRouter(prefix="/api")

# None means db.get_connection() picks DATABASE_URL or the default SQLite file.
DB_PATH: Path | None = None
CONFIG = default_config()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _conn():
    return db.get_connection(DB_PATH)


def _404(item: str):
    raise HTTPException(status_code=404, detail=f"{item} not found")


def _conflict(exc: Exception):
    raise HTTPException(status_code=409, detail=f"Conflicts with an existing record: {exc}") from exc


def _filter_value(value: str | None) -> str | None:
    return None if value in (None, "", "all") else value


def _current_year() -> int:
    return date.today().year


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("/years")
def list_years():
    conn = _conn()
    try:
        return db.list_years(conn)
    finally:
        conn.close()


@router.get("/projects")
def list_projects(
    year: int | None = None,
    quarter: str | None = None,
    category: str | None = None,
    search: str | None = None,
):
    conn = _conn()
    try:
        return db.list_projects(
            conn,
            year=year,
            quarter=_filter_value(quarter),
            category=_filter_value(category),
            search=search or None,
        )
    finally:
        conn.close()


@router.post("/projects", status_code=201)
def create_project(body: ProjectIn):
    conn = _conn()
    try:
        try:
            project_id = db.create_project(conn, prefix=CONFIG.pid_prefix, **body.model_dump())
        except db.INTEGRITY_ERRORS as exc:
            _conflict(exc)
        return db.get_project(conn, project_id)
    finally:
        conn.close()


@router.post("/projects/import", status_code=201)
async def import_projects(file: UploadFile = File(...)):
    content = await file.read()
    result = parse_project_workbook(content, header_rows=CONFIG.import_header_rows)
    if not result.success:
        raise HTTPException(status_code=400, detail={"errors": result.errors})

    conn = _conn()
    try:
        try:
            ids = db.bulk_create_projects(
                conn, [p.model_dump() for p in result.projects], prefix=CONFIG.pid_prefix
            )
        except db.INTEGRITY_ERRORS as exc:
            _conflict(exc)
        return {"imported": len(ids), "ids": ids}
    finally:
        conn.close()


@router.get("/projects/export")
def export_projects(year: int | None = None, quarter: str = "all", category: str = "all"):
    year = year or _current_year()
    conn = _conn()
    try:
        records = db.list_projects(conn, year=year, quarter=_filter_value(quarter), category=_filter_value(category))
    finally:
        conn.close()
    if not records:
        raise HTTPException(status_code=404, detail="No data to export")
    return Response(
        content=projects_to_csv(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(year, quarter, category)}"'},
    )


@router.get("/projects/{project_id}")
def get_project(project_id: int):
    conn = _conn()
    try:
        project = db.get_project(conn, project_id)
        if not project:
            _404("Project")
        return project
    finally:
        conn.close()


@router.put("/projects/{project_id}")
def update_project(project_id: int, body: ProjectUpdate):
    updates = {k: v for k, v in body.model_dump().items() if v is not None}
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    conn = _conn()
    try:
        try:
            updated = db.update_project(conn, project_id, **updates)
        except db.INTEGRITY_ERRORS as exc:
            _conflict(exc)
        if not updated:
            _404("Project")
        return db.get_project(conn, project_id)
    finally:
        conn.close()


@router.delete("/projects/{project_id}")
def delete_project(project_id: int):
    conn = _conn()
    try:
        if not db.delete_project(conn, project_id):
            _404("Project")
        return {"ok": True}
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@router.get("/targets")
def list_targets():
    conn = _conn()
    try:
        return db.list_targets(conn)
    finally:
        conn.close()


@router.put("/targets")
def upsert_target(body: TargetIn):
    conn = _conn()
    try:
        db.upsert_target(conn, body.year, **body.model_dump(exclude={"year"}))
        return db.get_target(conn, body.year)
    finally:
        conn.close()


@router.get("/targets/{year}")
def get_target(year: int):
    conn = _conn()
    try:
        target = db.get_target(conn, year)
        if not target:
            _404("Target")
        return target
    finally:
        conn.close()


@router.delete("/targets/{year}")
def delete_target(year: int):
    conn = _conn()
    try:
        if not db.delete_target(conn, year):
            _404("Target")
        return {"ok": True}
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Dashboard & leaderboards
# ---------------------------------------------------------------------------


@router.get("/dashboard")
def dashboard(year: int | None = None):
    year = year or _current_year()
    conn = _conn()
    try:
        records = db.fetch_projects(conn, year=year)
        target = db.fetch_target(conn, year)
    finally:
        conn.close()
    return {"year": year, **stats_to_dict(compute_dashboard_stats(records, target))}


@router.get("/leaderboards/pics")
def top_pics(year: int | None = None, limit: int | None = Query(default=None, ge=1, le=100)):
    conn = _conn()
    try:
        records = db.fetch_projects(conn, year=year)
    finally:
        conn.close()
    return rankings_to_dicts(compute_pic_ranking(records, limit=limit or CONFIG.leaderboard_limit))


@router.get("/leaderboards/products")
def top_products(year: int | None = None, limit: int | None = Query(default=None, ge=1, le=100)):
    conn = _conn()
    try:
        records = db.fetch_projects(conn, year=year)
    finally:
        conn.close()
    return rankings_to_dicts(compute_product_ranking(records, limit=limit or CONFIG.leaderboard_limit))


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------


@router.get("/backup")
def backup(format: str = Query(default="json", pattern="^(json|sql)$")):
    conn = _conn()
    try:
        data = backup_database(conn)
    finally:
        conn.close()
    if format == "sql":
        return Response(
            content=export_to_sql(data),
            media_type="text/plain",
            headers={"Content-Disposition": f'attachment; filename="{backup_filename("sql")}"'},
        )
    return data
