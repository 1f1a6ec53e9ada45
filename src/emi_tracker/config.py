"""
EMI Tracker - Configuration

Settings are read from the environment (and a .env file via python-dotenv)
when the module is imported. create_app() copies them onto app.config and
applies any test overrides on top.

License: MIT
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables (for SECRET_KEY, JWT_SECRET, etc.)
load_dotenv()


def default_db_path():
    """Return the default SQLite database location (next to the package)."""
    return Path(__file__).parent / "data" / "emitracker.db"


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_SECRET = os.getenv("JWT_SECRET", SECRET_KEY)
    JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    DATABASE_PATH = os.getenv("DATABASE_PATH", str(default_db_path()))
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", "5000"))
    BACKUP_DIR = os.getenv("BACKUP_DIR")
