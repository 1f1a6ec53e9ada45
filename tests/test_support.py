import sqlite3
from datetime import date, timedelta

from emi_tracker.demo_data import generate_demo_data
from emi_tracker.launcher import backup_database, missing_dependencies, restore_database
from emi_tracker.migration_runner import get_all_migrations, migration_status, run_all_pending
from emi_tracker.setup_sqlite import TABLES, create_database, reset_database, verify_schema


def test_create_database_builds_every_table(tmp_path):
    db_path = tmp_path / "fresh.db"
    assert create_database(db_path)
    assert verify_schema(db_path) == []


def test_verify_schema_reports_missing_database(tmp_path):
    assert verify_schema(tmp_path / "absent.db") == list(TABLES)


def test_migrations_apply_once(tmp_path):
    db_path = tmp_path / "migrate.db"
    create_database(db_path)

    assert run_all_pending(db_path) == len(get_all_migrations())
    assert run_all_pending(db_path) == 0
    assert all(item['applied'] for item in migration_status(db_path))


def test_migrations_from_custom_folder(tmp_path):
    db_path = tmp_path / "custom.db"
    create_database(db_path)
    folder = tmp_path / "migrations"
    folder.mkdir()
    (folder / "001_add_flag.sql").write_text("ALTER TABLE payments ADD COLUMN flagged INTEGER DEFAULT 0;")
    (folder / "readme.txt").write_text("ignored")

    assert run_all_pending(db_path, folder) == 1
    conn = sqlite3.connect(str(db_path))
    try:
        columns = [row[1] for row in conn.execute("PRAGMA table_info(payments)")]
    finally:
        conn.close()
    assert 'flagged' in columns
    assert migration_status(db_path, folder) == [{'version': 1, 'description': 'add flag', 'applied': True}]


def test_reset_database_removes_rows(engine, owner, db_path):
    assert reset_database(db_path)
    assert engine.list_users() == []


def test_backup_rotation_and_restore(tmp_path, db_path):
    backup_dir = tmp_path / "backups"
    stale = backup_dir / "daily" / "emitracker_2024-03-01.db"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old")

    # 2024-03-10 is a Sunday, so a weekly copy is made too
    ok, location = backup_database(db_path, backup_dir, today=date(2024, 3, 10))
    assert ok
    assert location == str(backup_dir)
    assert (backup_dir / "emitracker.db").exists()
    assert (backup_dir / "daily" / "emitracker_2024-03-10.db").exists()
    assert (backup_dir / "weekly" / "emitracker_2024-week-10.db").exists()
    assert not stale.exists()

    target = tmp_path / "restored" / "emitracker.db"
    restored, when = restore_database(target, backup_dir)
    assert restored
    assert when is not None
    assert verify_schema(target) == []


def test_weekly_backups_keep_newest_across_new_year(tmp_path, db_path):
    backup_dir = tmp_path / "backups"
    sunday = date(2024, 12, 8)
    while sunday <= date(2025, 1, 12):
        assert backup_database(db_path, backup_dir, today=sunday)[0]
        sunday += timedelta(days=7)

    kept = sorted(f.name for f in (backup_dir / "weekly").iterdir())
    assert kept == [
        "emitracker_2024-week-51.db",
        "emitracker_2024-week-52.db",
        "emitracker_2025-week-01.db",
        "emitracker_2025-week-02.db",
    ]


def test_backup_without_database(tmp_path):
    ok, reason = backup_database(tmp_path / "missing.db", tmp_path / "backups")
    assert not ok
    assert reason == "No database to backup"


def test_declared_dependencies_are_importable():
    assert missing_dependencies() == []


def test_demo_data_fills_account(engine, owner):
    created = generate_demo_data(engine, owner['id'], today=date(2024, 3, 10), seed=7)

    assert created['emis'] == 4
    assert created['payments'] == 4
    assert created['paidOccurrences'] > 0
    assert created['houseSavings'] == 5

    emis = {e['name']: e for e in engine.get_emis(owner['id'], today=date(2024, 3, 10))}
    assert emis["iPhone 15"]['paidInstallments'] == 10
    assert engine.get_house_savings_goal(owner['id'], owner['role'])[2] == 2500000
