"""
EMI Tracker - Server Launcher

This script handles:
1. Python version check (requires 3.9+)
2. Dependency verification
3. Database setup (creates if missing, restores from backup if available)
4. Rotating backups to BACKUP_DIR (defaults to ~/Documents/EMITracker_Data)
5. Migration runner (applies pending migrations)
6. Flask API server startup

Usage:
    emi-tracker [--port 5000] [--no-backup]
"""

import datetime
import importlib.util
import shutil
import sys
from pathlib import Path

import click

from .config import Config

DAILY_BACKUPS_KEPT = 3
WEEKLY_BACKUPS_KEPT = 4
BACKUP_NAME = 'emitracker'

REQUIRED_MODULES = {
    'flask': 'Flask',
    'flask_cors': 'Flask-Cors',
    'flask_login': 'Flask-Login',
    'bcrypt': 'bcrypt',
    'dotenv': 'python-dotenv',
    'jwt': 'PyJWT',
    'faker': 'Faker',
}


# =============================================================================
# BACKUP AND RESTORE
# =============================================================================

def get_backup_dir():
    if Config.BACKUP_DIR:
        backup_dir = Path(Config.BACKUP_DIR)
    else:
        backup_dir = Path.home() / 'Documents' / 'EMITracker_Data'
    backup_dir.mkdir(parents=True, exist_ok=True)
    return backup_dir


def backup_database(db_path, backup_dir=None, today=None):
    """
    Copy the database into the backup folder.

    - Always refresh emitracker.db (latest)
    - Daily: daily/emitracker_YYYY-MM-DD.db (keep 3)
    - Weekly: weekly/emitracker_YYYY-week-NN.db on Sundays, ISO year and week (keep 4)

    Returns:
        tuple: (success bool, backup directory or reason str)
    """
    db_path = Path(db_path)
    if not db_path.exists():
        return False, "No database to backup"

    backup_dir = Path(backup_dir or get_backup_dir())
    daily_dir = backup_dir / 'daily'
    weekly_dir = backup_dir / 'weekly'
    daily_dir.mkdir(parents=True, exist_ok=True)
    weekly_dir.mkdir(parents=True, exist_ok=True)
    today = today or datetime.date.today()

    shutil.copy2(db_path, backup_dir / f'{BACKUP_NAME}.db')

    daily_file = daily_dir / f"{BACKUP_NAME}_{today.isoformat()}.db"
    if not daily_file.exists():
        shutil.copy2(db_path, daily_file)

    if today.weekday() == 6:
        iso_year, iso_week = today.isocalendar()[:2]
        shutil.copy2(db_path, weekly_dir / f"{BACKUP_NAME}_{iso_year}-week-{iso_week:02d}.db")

    cleanup_old_daily_backups(daily_dir, today)
    cleanup_old_weekly_backups(weekly_dir)
    return True, str(backup_dir)


def cleanup_old_daily_backups(daily_dir, today, days=DAILY_BACKUPS_KEPT):
    cutoff = today - datetime.timedelta(days=days)
    for f in daily_dir.glob(f'{BACKUP_NAME}_*.db'):
        try:
            file_date = datetime.datetime.strptime(f.stem.replace(f'{BACKUP_NAME}_', ''), '%Y-%m-%d').date()
        except ValueError:
            # Not one of ours
            continue
        if file_date < cutoff:
            f.unlink()


def cleanup_old_weekly_backups(weekly_dir, weeks=WEEKLY_BACKUPS_KEPT):
    # YYYY-week-NN names sort chronologically
    files = sorted(weekly_dir.glob(f'{BACKUP_NAME}_*-week-*.db'), reverse=True)
    for f in files[weeks:]:
        f.unlink()


def restore_database(db_path, backup_dir=None):
    """
    Restore the latest backup into db_path.

    Returns:
        tuple: (restored bool, backup modification time or None)
    """
    latest = Path(backup_dir or get_backup_dir()) / f'{BACKUP_NAME}.db'
    if not latest.exists():
        return False, None
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(latest, db_path)
    return True, datetime.datetime.fromtimestamp(latest.stat().st_mtime)


# =============================================================================
# STARTUP CHECKS
# =============================================================================

def check_python_version():
    click.echo("[1/5] Checking Python version... ", nl=False)
    if sys.version_info < (3, 9):
        click.echo("[ERROR]")
        raise click.ClickException(
            f"Python 3.9 or higher is required (found {sys.version_info.major}.{sys.version_info.minor})"
        )
    click.echo(f"[OK] Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")


def missing_dependencies():
    return [package for module, package in REQUIRED_MODULES.items() if importlib.util.find_spec(module) is None]


def check_dependencies():
    click.echo("[2/5] Checking dependencies... ", nl=False)
    missing = missing_dependencies()
    if missing:
        click.echo("[ERROR]")
        raise click.ClickException(
            f"Missing packages: {', '.join(missing)}. Install them with: pip install -e ."
        )
    click.echo("[OK]")


def setup_database(db_path, backup=True):
    from .migration_runner import run_all_pending
    from .setup_sqlite import create_database

    db_path = Path(db_path)
    if not db_path.exists():
        restored, backup_date = restore_database(db_path) if backup else (False, None)
        if restored:
            click.echo(f"[3/5] Restored data from backup of {backup_date:%B %d, %Y}")
        else:
            click.echo("[3/5] Creating new database... ", nl=False)
            if not create_database(db_path):
                click.echo("[ERROR]")
                raise click.ClickException("Failed to create database. Check the log above.")
            click.echo("[OK]")
    else:
        click.echo("[3/5] Database found... [OK]")

    if backup:
        ok, location = backup_database(db_path)
        click.echo(f"      Backup: {'saved to ' + location if ok else location}")

    applied = run_all_pending(db_path)
    click.echo(f"[4/5] Migrations... [OK] {applied} applied")


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=Config.PORT, show_default=True)
@click.option("--no-backup", is_flag=True, help="Skip restore and backup of the database.")
def main(host, port, no_backup):
    """Start the EMI Tracker API server."""
    click.echo("=" * 60)
    click.echo("EMI Tracker - Personal Finance API")
    click.echo("=" * 60)

    check_python_version()
    check_dependencies()
    setup_database(Config.DATABASE_PATH, backup=not no_backup)

    from .api import create_app
    app = create_app()
    click.echo(f"[5/5] Serving on http://{host}:{port}/api  (Ctrl+C to stop)")
    app.run(host=host, port=port, debug=False, use_reloader=False)


if __name__ == "__main__":
    main()
