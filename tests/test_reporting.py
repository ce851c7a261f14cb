from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from openpyxl import load_workbook

from salestracker.aggregation import compute_dashboard_stats, compute_pic_ranking, compute_product_ranking
from salestracker.backup import backup_database, backup_filename, backup_to_file, export_to_sql
from salestracker.db import create_project, get_connection, init_db, upsert_target
from salestracker.reporting import (
    export_filename,
    format_idr,
    projects_to_csv,
    save_dashboard_charts,
    write_excel_pack,
    write_narrative,
    write_stats_json,
)
from salestracker.types import ProjectRecord, TargetRecord, YearReport


def _record(pid, nett_gp, pic, product, category="Implementation", quarter="Q1"):
    return ProjectRecord(
        id=pid,
        pid=pid,
        business_partner="Solusi Prima",
        end_user="Bank Sentosa",
        category=category,
        pic=pic,
        nett_gp=nett_gp,
        quarter=quarter,
        year=2025,
        product=product,
    )


def _report(records, target=None) -> YearReport:
    return YearReport(
        year=2025,
        stats=compute_dashboard_stats(records, target),
        top_pics=compute_pic_ranking(records),
        top_products=compute_product_ranking(records),
        project_count=len(records),
    )


def test_format_idr() -> None:
    assert format_idr(1_500_000) == "Rp 1.500.000"
    assert format_idr(0) == "Rp 0"
    assert format_idr(-100) == "-Rp 100"


def test_export_filename() -> None:
    assert export_filename(2025) == "projects-report-2025-all-all.csv"
    assert export_filename(2025, "Q2", "LSC") == "projects-report-2025-Q2-LSC.csv"


def test_projects_to_csv_from_records_and_rows() -> None:
    csv_text = projects_to_csv([_record("P250001", 100, "Andi", None)])
    assert csv_text == (
        "PID,Business Partner,End User,Category,Product,PIC,Nett GP,Quarter,Year\n"
        "P250001,Solusi Prima,Bank Sentosa,Implementation,,Andi,100,Q1,2025\n"
    )
    from_rows = projects_to_csv([{"pid": "P250002", "product": "Veeam", "nett_gp": 5, "pic": "Budi"}])
    assert from_rows.splitlines()[1].startswith("P250002,")
    assert ",Veeam,Budi,5," in from_rows


def test_management_pack_files(tmp_path: Path) -> None:
    records = [
        _record("P1", 100, "Andi", "NetApp"),
        _record("P2", 300, "Budi", "NetApp", category="LSC", quarter="Q2"),
        _record("P3", 50, "Andi", ""),
    ]
    report = _report(records, TargetRecord(year=2025, yearly_target=1000, q1_target=250))

    write_excel_pack(tmp_path / "pack.xlsx", report)
    wb = load_workbook(tmp_path / "pack.xlsx")
    assert wb.sheetnames == ["Summary", "Quarterly", "Categories", "Top PICs", "Top Products"]
    pics = [row for row in wb["Top PICs"].iter_rows(min_row=2, values_only=True)]
    assert pics == [(1, "Budi", 300, 1), (2, "Andi", 150, 2)]
    products = [row for row in wb["Top Products"].iter_rows(min_row=2, values_only=True)]
    assert products[0] == (1, "NetApp", 400, 2, "Budi", 300)

    write_stats_json(tmp_path / "stats.json", report)
    payload = json.loads((tmp_path / "stats.json").read_text(encoding="utf-8"))
    assert payload["stats"]["total_income"] == 450
    assert payload["top_products"][1]["key"] == "N/A"

    write_narrative(tmp_path / "narrative.md", report)
    text = (tmp_path / "narrative.md").read_text(encoding="utf-8")
    assert "# Income Summary - 2025" in text
    assert "Rp 450" in text
    assert "Rp 550 short of target" in text

    charts = save_dashboard_charts(tmp_path / "charts", report)
    assert [p.name for p in charts] == ["quarterly_income.png", "category_income.png"]
    assert all(p.exists() for p in charts)


def test_charts_skip_category_pie_when_empty(tmp_path: Path) -> None:
    charts = save_dashboard_charts(tmp_path / "charts", _report([]))
    assert [p.name for p in charts] == ["quarterly_income.png"]


def test_backup_json_and_sql(tmp_path: Path) -> None:
    db_path = tmp_path / "tracker.db"
    init_db(db_path)
    conn = get_connection(db_path)
    try:
        create_project(
            conn,
            business_partner="O'Brien Ltd",
            end_user="Bank Sentosa",
            category="Maintenance",
            pic="Citra",
            nett_gp=75,
            quarter="Q3",
            year=2025,
        )
        upsert_target(conn, 2025, yearly_target=100)

        backup = backup_database(conn)
        assert backup["metadata"]["total_records"] == 2
        assert backup["projects"][0]["business_partner"] == "O'Brien Ltd"

        sql = export_to_sql(backup)
        assert "-- Projects Table (1 records)" in sql
        assert "'O''Brien Ltd'" in sql
        assert "NULL" in sql  # product and keterangan

        json_path = backup_to_file(conn, tmp_path / "out" / "backup.json")
        assert json.loads(json_path.read_text(encoding="utf-8"))["targets"][0]["yearly_target"] == 100
        sql_path = backup_to_file(conn, tmp_path / "out" / "backup.sql", fmt="sql")
        assert sql_path.read_text(encoding="utf-8").startswith("-- Database Backup")
    finally:
        conn.close()


def test_backup_filename() -> None:
    assert backup_filename("sql", now=datetime(2025, 4, 9)) == "database-backup-2025-04-09.sql"
