"""Storage for settings and the move log.

Models bind to the ``db`` proxy at import time; ``configure_db`` points the
proxy at a real database once per process.
"""

import os

from peewee import Database, Proxy, SqliteDatabase

db = Proxy()

_configured = False

SQLITE_PRAGMAS = {
    "journal_mode": "wal",
    # verification threads write the move log while the CLI reads it
    "busy_timeout": 5000,
    "foreign_keys": 1,
}


def _open_database(db_path: str) -> Database:
    url = os.environ.get("DATABASE_URL")
    if url:
        from playhouse.db_url import connect

        return connect(url)
    return SqliteDatabase(db_path, pragmas=SQLITE_PRAGMAS)


def configure_db(db_path: str = "plancal.sqlite3"):
    """Bind the proxy to ``DATABASE_URL`` if set, else to SQLite at *db_path*.

    Only the first call has an effect.
    """
    global _configured
    if not _configured:
        db.initialize(_open_database(db_path))
        _configured = True
    return db


def get_db():
    if not _configured:
        raise RuntimeError("Database not configured. Call configure_db() first.")
    return db


def get_all_models() -> list:
    from .appconfig import AppConfig
    from .move_log import MoveLog

    return [AppConfig, MoveLog]


def migrate_tables(models: list | None = None) -> None:
    """Create any missing tables; safe to run on every start."""
    database = get_db()
    database.connect(reuse_if_open=True)
    database.create_tables(models or get_all_models(), safe=True)
