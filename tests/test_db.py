from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from salestracker.db import (
    INTEGRITY_ERRORS,
    bulk_create_projects,
    create_project,
    delete_project,
    delete_target,
    fetch_projects,
    fetch_target,
    generate_pid,
    get_connection,
    get_project,
    get_target,
    init_db,
    list_projects,
    list_targets,
    list_years,
    update_project,
    upsert_target,
)
from salestracker.types import ProjectRecord, TargetRecord


def _fields(**overrides):
    fields = {
        "business_partner": "Mitra Data Nusantara",
        "end_user": "Bank Sentosa",
        "category": "Implementation",
        "product": "NetApp",
        "pic": "Andi Saputra",
        "nett_gp": 50_000_000,
        "quarter": "Q1",
        "year": 2025,
    }
    fields.update(overrides)
    return fields


@pytest.fixture()
def conn(tmp_path: Path):
    db_path = tmp_path / "tracker.db"
    init_db(db_path)
    c = get_connection(db_path)
    yield c
    c.close()


def test_init_db_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "tracker.db"
    assert init_db(db_path) == db_path
    assert init_db(db_path) == db_path


def test_pid_assigned_when_blank(conn) -> None:
    now = datetime(2025, 3, 1)
    first = create_project(conn, now=now, **_fields())
    second = create_project(conn, now=now, **_fields(pid="   "))

    assert get_project(conn, first)["pid"] == "P250001"
    assert get_project(conn, second)["pid"] == "P250002"


def test_explicit_pid_kept_and_generation_skips_taken_codes(conn) -> None:
    now = datetime(2025, 3, 1)
    create_project(conn, now=now, **_fields(pid="P250001"))
    project_id = create_project(conn, now=now, **_fields())

    assert get_project(conn, project_id)["pid"] == "P250002"
    assert generate_pid(conn, now=now) == "P250003"


def test_generate_pid_custom_prefix(conn) -> None:
    assert generate_pid(conn, now=datetime(2031, 1, 1), prefix="X") == "X310001"


def test_generate_pid_uses_utc_year(conn) -> None:
    project_id = create_project(conn, **_fields())
    conn.execute("UPDATE projects SET created_at = ? WHERE id = ?", ("2025-12-31 20:00:00", project_id))
    conn.commit()

    # 05:00 on 1 Jan at UTC+7 is still 2025 in UTC.
    now = datetime(2026, 1, 1, 5, 0, tzinfo=timezone(timedelta(hours=7)))
    assert generate_pid(conn, now=now) == "P250002"
    assert generate_pid(conn).startswith("P" + datetime.now(timezone.utc).strftime("%y"))


def test_duplicate_pid_rejected(conn) -> None:
    create_project(conn, **_fields(pid="P990001"))
    with pytest.raises(INTEGRITY_ERRORS):
        create_project(conn, **_fields(pid="P990001"))


def test_check_constraints(conn) -> None:
    with pytest.raises(INTEGRITY_ERRORS):
        create_project(conn, **_fields(category="Consulting"))
    with pytest.raises(INTEGRITY_ERRORS):
        create_project(conn, **_fields(quarter="Q5"))


def test_project_defaults(conn) -> None:
    project = get_project(conn, create_project(conn, **_fields(product=None)))
    assert project["pic_percentage"] == 15.0
    assert project["product"] is None
    assert project["created_at"]
    assert project["updated_at"]


def test_update_and_delete_project(conn) -> None:
    project_id = create_project(conn, **_fields())

    assert update_project(conn, project_id, nett_gp=75_000_000, quarter="Q2")
    project = get_project(conn, project_id)
    assert project["nett_gp"] == 75_000_000
    assert project["quarter"] == "Q2"

    # Unknown fields are ignored.
    assert not update_project(conn, project_id, owner="someone")
    assert not update_project(conn, 9999, nett_gp=1)

    assert delete_project(conn, project_id)
    assert get_project(conn, project_id) is None
    assert not delete_project(conn, project_id)


def test_update_refreshes_updated_at(conn) -> None:
    project_id = create_project(conn, **_fields())
    conn.execute("UPDATE projects SET updated_at = '2000-01-01 00:00:00' WHERE id = ?", (project_id,))
    conn.commit()

    update_project(conn, project_id, keterangan="renewal")
    assert get_project(conn, project_id)["updated_at"] != "2000-01-01 00:00:00"


def test_bulk_create_is_atomic(conn) -> None:
    good = _fields(pid="P250010")
    duplicate = _fields(pid="P250010")
    with pytest.raises(INTEGRITY_ERRORS):
        bulk_create_projects(conn, [good, duplicate])
    assert list_projects(conn) == []

    ids = bulk_create_projects(conn, [_fields(), _fields(pic="Budi Santoso")], now=datetime(2025, 5, 1))
    assert len(ids) == 2
    assert sorted(p["pid"] for p in list_projects(conn)) == ["P250001", "P250002"]


def test_list_projects_filters(conn) -> None:
    create_project(conn, **_fields(year=2024, quarter="Q4", end_user="RS Harapan"))
    create_project(conn, **_fields(year=2025, quarter="Q1", category="Maintenance"))
    create_project(conn, **_fields(year=2025, quarter="Q2", product="Veeam"))

    assert len(list_projects(conn, year=2025)) == 2
    assert len(list_projects(conn, year=2025, quarter="Q2")) == 1
    assert len(list_projects(conn, category="Maintenance")) == 1
    assert [p["end_user"] for p in list_projects(conn, search="harapan")] == ["RS Harapan"]
    assert len(list_projects(conn, search="MITRA")) == 3
    assert list_years(conn) == [2025, 2024]


def test_targets_upsert_and_delete(conn) -> None:
    upsert_target(conn, 2025, q1_target=100, q2_target=100, q3_target=100, q4_target=100, yearly_target=400)
    upsert_target(conn, 2025, q1_target=150, q2_target=100, q3_target=100, q4_target=100, yearly_target=450)

    targets = list_targets(conn)
    assert len(targets) == 1
    assert get_target(conn, 2025)["q1_target"] == 150
    assert get_target(conn, 2025)["yearly_target"] == 450

    assert delete_target(conn, 2025)
    assert get_target(conn, 2025) is None
    assert not delete_target(conn, 2025)


def test_fetch_snapshots(conn) -> None:
    create_project(conn, **_fields(nett_gp=10, product=None))
    create_project(conn, **_fields(nett_gp=20, year=2024))
    upsert_target(conn, 2025, q1_target=5, yearly_target=40)

    records = fetch_projects(conn, year=2025)
    assert len(records) == 1
    assert isinstance(records[0], ProjectRecord)
    assert records[0].nett_gp == 10
    assert records[0].product is None

    target = fetch_target(conn, 2025)
    assert target == TargetRecord(year=2025, yearly_target=40, q1_target=5)
    assert fetch_target(conn, 2030) is None
