"""
EMI Tracker - Database Migration Runner

This module handles automatic schema migrations for the SQLite database.
Migrations are SQL files in the package's migrations/ folder that are applied
in order.

Migration files should be named: 001_description.sql, 002_description.sql, etc.

The schema_version table tracks which migrations have been applied.
"""

import logging
import re
import sqlite3
from pathlib import Path

from .setup_sqlite import get_db_path

logger = logging.getLogger(__name__)

MIGRATION_PATTERN = re.compile(r'^(\d{3})_(.+)\.sql$')


def get_migrations_path():
    """Return the path to the migrations folder"""
    return Path(__file__).parent / "migrations"


def get_current_version(conn):
    """
    Get the current schema version from the database.

    Returns:
        int: The highest migration version applied, or 0 if no migrations
    """
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT MAX(version) FROM schema_version")
        result = cursor.fetchone()
        return result[0] if result[0] is not None else 0
    except sqlite3.OperationalError:
        # schema_version table doesn't exist yet (fresh database)
        return 0
    finally:
        cursor.close()


def get_all_migrations(migrations_path=None):
    """
    List migration files in version order.

    Returns:
        list: Tuples of (version, filepath, description)
    """
    migrations_path = Path(migrations_path or get_migrations_path())
    migrations = []
    if migrations_path.exists():
        for file in sorted(migrations_path.glob('*.sql')):
            match = MIGRATION_PATTERN.match(file.name)
            if match:
                version = int(match.group(1))
                description = match.group(2).replace('_', ' ')
                migrations.append((version, file, description))
    return migrations


def apply_migration(conn, version, filepath, description):
    """
    Apply a single migration file to the database.

    Returns:
        bool: True if successful, False otherwise
    """
    cursor = conn.cursor()
    try:
        logger.info("Applying migration %03d: %s", version, description)
        sql = Path(filepath).read_text(encoding='utf-8')

        # Migration files may contain multiple statements
        cursor.executescript(sql)
        cursor.execute(
            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
            (version, description)
        )
        conn.commit()
        return True
    except sqlite3.Error as e:
        logger.error("Migration %03d failed: %s", version, e)
        conn.rollback()
        return False
    finally:
        cursor.close()


def run_all_pending(db_path=None, migrations_path=None):
    """
    Run all pending migrations.

    Returns:
        int: Number of migrations applied
    """
    db_path = get_db_path(db_path)
    if not db_path.exists():
        logger.warning("Database does not exist. Run create_database() first.")
        return 0

    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA foreign_keys = ON;")
    try:
        current_version = get_current_version(conn)
        pending = [m for m in get_all_migrations(migrations_path) if m[0] > current_version]
        if not pending:
            return 0

        logger.info("Found %d pending migration(s)", len(pending))
        applied = 0
        for version, filepath, description in pending:
            if not apply_migration(conn, version, filepath, description):
                logger.error("Migration %03d failed. Stopping.", version)
                break
            applied += 1
        return applied
    finally:
        conn.close()


def migration_status(db_path=None, migrations_path=None):
    """
    Report each known migration as applied or pending.

    Returns:
        list: Dicts with version, description and applied flag
    """
    db_path = get_db_path(db_path)
    current_version = 0
    if db_path.exists():
        conn = sqlite3.connect(str(db_path))
        try:
            current_version = get_current_version(conn)
        finally:
            conn.close()

    return [
        {'version': version, 'description': description, 'applied': version <= current_version}
        for version, _, description in get_all_migrations(migrations_path)
    ]
