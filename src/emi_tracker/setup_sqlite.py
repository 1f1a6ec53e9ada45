"""
EMI Tracker - SQLite Database Setup & Initialization

This module creates and initializes the EMI Tracker SQLite database schema.
It creates all tables with proper foreign key relationships and indexes.

Database Schema Overview:
------------------------
- users: Authentication, role, profile (income, currency, house savings goal)
- emis: Loans and installment plans with progress counters
- payments: Monthly payment schedules (ending or recurring)
- payment_transactions: One row per scheduled payment occurrence
- house_savings: Dated savings deposits per user
- categories: User-defined income/expense categories with colors
- transactions: Generic income/expense ledger
- role_permissions: Menu paths each role may open
- schema_version: Track applied database migrations

Key Design Features:
- Foreign key constraints for referential integrity
- Cascade deletes for user data (complete user removal)
- TEXT storage for monetary values (preserves exact precision)
- Unique (payment_id, payment_date) so occurrences are materialized once

License: MIT
"""

import logging
import sqlite3
from pathlib import Path

from .config import Config

logger = logging.getLogger(__name__)


TABLES = {
    'users': """
        CREATE TABLE IF NOT EXISTS users (
            user_id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            password_hash TEXT NOT NULL,
            role TEXT CHECK(role IN ('user', 'admin', 'super_admin')) NOT NULL DEFAULT 'user',
            monthly_income TEXT NOT NULL DEFAULT '0.00',
            currency TEXT NOT NULL DEFAULT 'INR',
            house_savings_goal TEXT NOT NULL DEFAULT '0.00',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """,
    'emis': """
        CREATE TABLE IF NOT EXISTS emis (
            emi_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'personal_loan',
            payment_type TEXT CHECK(payment_type IN ('emi', 'subscription', 'full_payment')) NOT NULL DEFAULT 'emi',
            emi_amount TEXT NOT NULL,
            total_installments INTEGER NOT NULL DEFAULT 0,
            paid_installments INTEGER NOT NULL DEFAULT 0,
            start_date TEXT NOT NULL,
            next_due_date TEXT,
            status TEXT CHECK(status IN ('active', 'completed', 'defaulted')) NOT NULL DEFAULT 'active',
            interest_rate REAL DEFAULT NULL,
            notes TEXT DEFAULT '',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
        )
    """,
    'payments': """
        CREATE TABLE IF NOT EXISTS payments (
            payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            emi_type TEXT CHECK(emi_type IN ('ending', 'recurring')) NOT NULL DEFAULT 'ending',
            category TEXT CHECK(category IN ('expense', 'savings')) NOT NULL DEFAULT 'expense',
            amount TEXT NOT NULL,
            emi_day INTEGER NOT NULL CHECK(emi_day BETWEEN 1 AND 31),
            start_date TEXT NOT NULL,
            end_date TEXT DEFAULT NULL,
            status TEXT CHECK(status IN ('active', 'completed')) NOT NULL DEFAULT 'active',
            notes TEXT DEFAULT '',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
        )
    """,
    'payment_transactions': """
        CREATE TABLE IF NOT EXISTS payment_transactions (
            transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
            payment_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            payment_date TEXT NOT NULL,
            amount TEXT NOT NULL,
            status TEXT CHECK(status IN ('pending', 'paid')) NOT NULL DEFAULT 'pending',
            paid_at TEXT DEFAULT NULL,
            FOREIGN KEY (payment_id) REFERENCES payments(payment_id) ON DELETE CASCADE,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
            UNIQUE(payment_id, payment_date)
        )
    """,
    'house_savings': """
        CREATE TABLE IF NOT EXISTS house_savings (
            entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            amount TEXT NOT NULL,
            notes TEXT DEFAULT '',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
        )
    """,
    'categories': """
        CREATE TABLE IF NOT EXISTS categories (
            category_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            type TEXT CHECK(type IN ('income', 'expense')) NOT NULL,
            color TEXT DEFAULT '#6366f1',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
            UNIQUE(user_id, name, type)
        )
    """,
    'transactions': """
        CREATE TABLE IF NOT EXISTS transactions (
            transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT CHECK(type IN ('income', 'expense')) NOT NULL,
            amount TEXT NOT NULL,
            description TEXT NOT NULL,
            date TEXT NOT NULL,
            payment_method TEXT NOT NULL DEFAULT 'other',
            category_id INTEGER DEFAULT NULL,
            emi_id INTEGER DEFAULT NULL,
            notes TEXT DEFAULT '',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
            FOREIGN KEY (category_id) REFERENCES categories(category_id) ON DELETE SET NULL,
            FOREIGN KEY (emi_id) REFERENCES emis(emi_id) ON DELETE SET NULL
        )
    """,
    'role_permissions': """
        CREATE TABLE IF NOT EXISTS role_permissions (
            role TEXT CHECK(role IN ('user', 'admin', 'super_admin')) NOT NULL,
            path TEXT NOT NULL,
            allowed INTEGER NOT NULL DEFAULT 1,
            PRIMARY KEY (role, path)
        )
    """,
    'schema_version': """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_emis_user_id ON emis(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_payments_user_id ON payments(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_payment_tx_payment_id ON payment_transactions(payment_id);",
    "CREATE INDEX IF NOT EXISTS idx_house_savings_user_date ON house_savings(user_id, date);",
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date);",
]

# Dropped children first so foreign keys never block a reset
DROP_ORDER = [
    'payment_transactions', 'transactions', 'house_savings', 'payments',
    'emis', 'categories', 'role_permissions', 'users', 'schema_version',
]


def get_db_path(db_path=None):
    """Return the path to the SQLite database file"""
    return Path(db_path or Config.DATABASE_PATH)


def create_database(db_path=None):
    """
    Create a fresh EMI Tracker SQLite database with all tables.

    [WARNING] If the database already exists, this will NOT drop it.
    Use reset_database() if you want to start fresh.

    Returns:
        bool: True when every table and index exists afterwards
    """
    db_path = get_db_path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    cursor = conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON;")
    logger.info("Creating EMI Tracker database at %s", db_path)

    try:
        for name, ddl in TABLES.items():
            cursor.execute(ddl)
            logger.debug("Table '%s' OK", name)
        for ddl in INDEXES:
            cursor.execute(ddl)
        conn.commit()
        return True
    except sqlite3.Error as e:
        logger.error("Database creation failed: %s", e)
        conn.rollback()
        return False
    finally:
        cursor.close()
        conn.close()


def reset_database(db_path=None):
    """DROP ALL tables and rebuild from scratch. Deletes every row."""
    db_path = get_db_path(db_path)
    if db_path.exists():
        conn = sqlite3.connect(str(db_path))
        try:
            conn.execute("PRAGMA foreign_keys = OFF;")
            for table in DROP_ORDER:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
            conn.commit()
            logger.warning("All tables dropped from %s", db_path)
        finally:
            conn.close()
    return create_database(db_path)


def verify_schema(db_path=None):
    """
    Check that every expected table exists.

    Returns:
        list: Names of missing tables (empty when the schema is complete)
    """
    db_path = get_db_path(db_path)
    if not db_path.exists():
        return list(TABLES)

    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        existing = {row[0] for row in cursor.fetchall()}
    finally:
        conn.close()

    missing = [name for name in TABLES if name not in existing]
    for name in missing:
        logger.warning("Missing table '%s'", name)
    return missing


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if create_database():
        missing = verify_schema()
        print("[OK] Schema verification complete" if not missing else f"[ERROR] Missing: {missing}")
