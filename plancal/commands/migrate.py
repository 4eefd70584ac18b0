"""Database migration/bootstrap command.

Creates the settings and move-log tables if they are missing.  Idempotent,
safe to run on every start.
"""

import os

from plancal.appconfig import get_db_path_from_env
from plancal.db import configure_db, get_db, migrate_tables


def run():
    """Bootstrap / migrate the database schema."""
    backend = "DATABASE_URL" if os.environ.get("DATABASE_URL") else f"SQLite ({get_db_path_from_env()})"
    print(f"Running database migrations on {backend}...")
    configure_db(get_db_path_from_env())
    try:
        migrate_tables()
    except Exception as e:
        print(f"Migration failed: {e}")
        raise
    finally:
        get_db().close()
    print("Migrations complete.")
