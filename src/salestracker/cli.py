from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import db as store
from .agents import AnalystAgent, PlannerAgent, ReporterAgent
from .aggregation import compute_dashboard_stats, compute_pic_ranking, compute_product_ranking
from .backup import backup_filename, backup_to_file
from .config import TrackerConfig, default_config
from .importer import parse_project_workbook, write_import_template
from .reporting import export_filename, format_idr, projects_to_csv
from .synth import SynthSpec, generate_synthetic_projects, write_synthetic_workbook
from .types import Ranking

app = typer.Typer(add_completion=False, help="Sales tracker: projects, income targets and leaderboards.")
console = Console()

_DB_HELP = "SQLite database file (default: DATABASE_URL if set, else the local data file)."


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_config(config: Optional[Path]) -> TrackerConfig:
    return TrackerConfig.from_yaml(config) if config else default_config()


def _open(db: Optional[Path]):
    store.init_db(db)
    return store.get_connection(db)


def _ranking_table(title: str, key_label: str, rankings: list[Ranking], with_subs: bool = False) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column(key_label)
    table.add_column("Total Income", justify="right")
    table.add_column("Projects", justify="right")
    if with_subs:
        table.add_column("Top contributors")
    for rank, r in enumerate(rankings, start=1):
        row = [str(rank), r.key, format_idr(r.total_income), str(r.project_count)]
        if with_subs:
            row.append(", ".join(f"{s.sub_key} ({format_idr(s.income)})" for s in r.sub_breakdown))
        table.add_row(*row)
    return table


@app.command(name="init-db")
def init_db_cmd(db: Optional[Path] = typer.Option(None, help=_DB_HELP)):
    """Initialize the database (creates tables if they don't exist)."""
    path = store.init_db(db)
    console.print(f"Database initialized at {path or 'DATABASE_URL'}")


@app.command()
def dashboard(
    year: int = typer.Option(..., help="Year to summarize."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
):
    """Total income, achievement and breakdowns for one year."""
    conn = _open(db)
    try:
        stats = compute_dashboard_stats(store.fetch_projects(conn, year=year), store.fetch_target(conn, year))
    finally:
        conn.close()

    console.print(f"[bold]Dashboard {year}[/bold]")
    console.print(f"Total income: {format_idr(stats.total_income)}")
    console.print(f"Target:       {format_idr(stats.target)}")
    console.print(f"Achievement:  {stats.achievement_percent:.1f}%")
    console.print(f"Gap:          {format_idr(stats.gap)}")

    quarters = Table(title="Quarterly")
    for col in ("Quarter", "Income", "Target"):
        quarters.add_column(col, justify="right" if col != "Quarter" else "left")
    for q in stats.quarterly_breakdown:
        quarters.add_row(q.quarter, format_idr(q.income), format_idr(q.target))
    console.print(quarters)

    categories = Table(title="By category")
    categories.add_column("Category")
    categories.add_column("Income", justify="right")
    for c in stats.category_breakdown:
        categories.add_row(c.name, format_idr(c.value))
    console.print(categories)


@app.command(name="top-pics")
def top_pics(
    year: Optional[int] = typer.Option(None, help="Restrict to one year (default: all years)."),
    limit: Optional[int] = typer.Option(None, min=1, help="Number of entries (default from config)."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
    config: Optional[Path] = typer.Option(None, help="Tracker config YAML."),
):
    cfg = _load_config(config)
    conn = _open(db)
    try:
        rankings = compute_pic_ranking(store.fetch_projects(conn, year=year), limit=limit or cfg.leaderboard_limit)
    finally:
        conn.close()
    console.print(_ranking_table("Top PICs", "PIC", rankings))


@app.command(name="top-products")
def top_products(
    year: Optional[int] = typer.Option(None, help="Restrict to one year (default: all years)."),
    limit: Optional[int] = typer.Option(None, min=1, help="Number of entries (default from config)."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
    config: Optional[Path] = typer.Option(None, help="Tracker config YAML."),
):
    cfg = _load_config(config)
    conn = _open(db)
    try:
        rankings = compute_product_ranking(store.fetch_projects(conn, year=year), limit=limit or cfg.leaderboard_limit)
    finally:
        conn.close()
    console.print(_ranking_table("Top Products", "Product", rankings, with_subs=True))


@app.command(name="import")
def import_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Excel workbook (.xlsx)."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
    config: Optional[Path] = typer.Option(None, help="Tracker config YAML."),
):
    """Bulk import projects; nothing is imported unless every row is valid."""
    cfg = _load_config(config)
    result = parse_project_workbook(file, header_rows=cfg.import_header_rows)
    if not result.success:
        console.print(f"[red]Import rejected ({len(result.errors)} error(s)):[/red]")
        for err in result.errors:
            console.print(f"  {err}")
        raise typer.Exit(code=1)

    conn = _open(db)
    try:
        ids = store.bulk_create_projects(conn, [p.model_dump() for p in result.projects], prefix=cfg.pid_prefix)
    except store.INTEGRITY_ERRORS as exc:
        console.print(f"[red]Import rejected: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        conn.close()
    console.print(f"Imported {len(ids)} projects")


@app.command()
def export(
    year: int = typer.Option(..., help="Year to export."),
    quarter: str = typer.Option("all", help="Q1..Q4 or 'all'."),
    category: str = typer.Option("all", help="Implementation, Maintenance, LSC or 'all'."),
    out: Optional[Path] = typer.Option(None, help="Output CSV (default: projects-report-<filters>.csv)."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
):
    """Export the filtered project list to CSV."""
    conn = _open(db)
    try:
        records = store.list_projects(
            conn,
            year=year,
            quarter=None if quarter == "all" else quarter,
            category=None if category == "all" else category,
        )
    finally:
        conn.close()
    if not records:
        console.print("No data to export")
        raise typer.Exit(code=1)
    out = out or Path(export_filename(year, quarter, category))
    out.write_text(projects_to_csv(records), encoding="utf-8")
    console.print(f"Wrote {len(records)} projects to {out}")


@app.command()
def template(out: Path = typer.Option(Path("project-import-template.xlsx"), help="Output workbook.")):
    """Write an import template with one example row."""
    write_import_template(out)
    console.print(f"Wrote import template to {out}")


@app.command()
def backup(
    out_dir: Path = typer.Option(Path("."), "--out", help="Directory for the backup file."),
    fmt: str = typer.Option("json", "--format", help="json or sql."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
):
    """Back up projects and targets."""
    if fmt not in ("json", "sql"):
        raise typer.BadParameter("format must be 'json' or 'sql'")
    conn = _open(db)
    try:
        path = backup_to_file(conn, out_dir / backup_filename(fmt), fmt=fmt)
    finally:
        conn.close()
    console.print(f"Backup written to {path}")


@app.command()
def synth(
    year: int = typer.Option(..., help="Year of the synthetic projects."),
    projects: int = typer.Option(40, min=1, help="Number of projects."),
    seed: int = typer.Option(42, help="RNG seed."),
    out: Optional[Path] = typer.Option(None, help="Write an importable workbook here."),
    seed_db: bool = typer.Option(False, "--seed-db", help="Insert the projects and a target into the database."),
    config: Optional[Path] = typer.Option(None, help="Tracker config YAML."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
):
    """Generate synthetic projects for demos."""
    cfg = _load_config(config)
    spec = SynthSpec(year=year, projects=projects, seed=seed)
    if out is not None:
        write_synthetic_workbook(out, spec)
        console.print(f"Wrote synthetic workbook to {out}")
    if seed_db:
        items, target = generate_synthetic_projects(spec)
        conn = _open(db)
        try:
            store.bulk_create_projects(conn, [p.model_dump() for p in items], prefix=cfg.pid_prefix)
            store.upsert_target(conn, target.year, **target.model_dump(exclude={"year"}))
        finally:
            conn.close()
        console.print(f"Seeded {len(items)} projects and the {year} target")
    if out is None and not seed_db:
        console.print("Nothing to do: pass --out and/or --seed-db")


@app.command()
def report(
    out: Path = typer.Option(..., help="Output directory for the income pack."),
    year: Optional[int] = typer.Option(None, help="Year to report (default: every year in the store)."),
    config: Optional[Path] = typer.Option(None, help="Tracker config YAML."),
    ai: bool = typer.Option(False, "--ai", help="Add Gemini commentary when GEMINI_API_KEY is set."),
    db: Optional[Path] = typer.Option(None, help=_DB_HELP),
):
    """Write Excel, JSON, chart and markdown summaries per year."""
    cfg = _load_config(config)
    conn = _open(db)
    try:
        plan = PlannerAgent().plan(conn, year, cfg.leaderboard_limit, use_ai=ai)
        reports = AnalystAgent().run(conn, plan)
    finally:
        conn.close()
    ReporterAgent(cfg).package(out_dir=out, reports=reports, use_ai=plan.use_ai)
    console.print(f"Wrote income pack to {out}")


def _find_available_port(host: str, preferred: int) -> int:
    """Return *preferred* if free, otherwise try fallbacks then let the OS pick."""
    import socket

    candidates = [preferred] + [p for p in (8000, 8001, 8080, 8888) if p != preferred]
    for port in candidates:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((host, port))
                return port
            except OSError:
                continue
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind (use 0.0.0.0 for LAN)."),
    port: int = typer.Option(8000, help="Port to serve the API on."),
):
    """Start the tracker API server."""
    import uvicorn

    actual_port = _find_available_port(host, port)
    if actual_port != port:
        console.print(f"Port {port} is in use, using port {actual_port} instead.")
    uvicorn.run("salestracker.server:app", host=host, port=actual_port, reload=False)


if __name__ == "__main__":
    app()
