"""Application configuration model and helpers.

The DB (``appconfig`` table) is the source of truth once it is configured.

On every ``load_config()`` call the JSON file is checked:
  - If ``plancal_config.json`` exists *and* differs from the DB, the DB is
    updated to match the file (key-level merge, DB-only keys survive).
  - If the DB is empty and no file exists, built-in defaults are seeded.

Keys missing from the stored config are filled from ``DEFAULT_CONFIG`` on
read, so older databases keep working when new settings are added.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

from peewee import CharField, Model, TextField

from .db import db
from .user_context import current_user_identity

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: dict[str, Any] = {
    "api_base_url": "http://localhost:8000",
    "cache_dir": ".plancal/months",
    "http_cache_dir": ".plancal/http",
    "http_cache_ttl": 60,
    "http_cache_max_memory_bytes": 2 * 1024 * 1024,
    "request_timeout": 30,
    "accept_language": "",
    "home_timezone": "UTC",
    "debug": False,
}

# Candidate JSON config file locations (searched in order)
_FILE_PATHS: list[Path] = [
    Path("plancal_config.json"),
    Path("../plancal_config.json"),
]


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class AppConfig(Model):
    """Key-value store for configuration, one JSON-encoded row per top-level key.

    Rows are scoped by ``user`` (the user identity, empty for the CLI default).
    """

    key = CharField(max_length=128)
    value = TextField()  # JSON-encoded value
    user = CharField(default="")

    class Meta:
        database = db
        table_name = "appconfig"
        indexes = ((("key", "user"), True),)  # unique together


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _scope() -> str:
    return current_user_identity() or ""


def _with_defaults(config: dict[str, Any]) -> dict[str, Any]:
    return {**copy.deepcopy(DEFAULT_CONFIG), **config}


def _load_from_db() -> dict[str, Any] | None:
    """Return config dict from DB rows, or ``None`` if there are none."""
    try:
        rows = list(AppConfig.select().where(AppConfig.user == _scope()))
        if not rows:
            return None
        return {r.key: json.loads(r.value) for r in rows}
    except Exception as e:
        log.debug("Config table not readable: %s", e)
        return None


def _load_from_file() -> dict[str, Any] | None:
    """Try each candidate path; return parsed JSON or ``None``."""
    for path in _FILE_PATHS:
        if path.exists():
            try:
                with open(path) as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                log.warning("Ignoring unreadable config file %s: %s", path, e)
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config() -> dict[str, Any]:
    """Return the current configuration.

    Falls back to the JSON file or built-in defaults (nothing persisted) when
    the DB has not been configured yet.
    """
    try:
        from .db import get_db

        get_db()
    except RuntimeError:
        return _with_defaults(_load_from_file() or {})

    file_cfg = _load_from_file()
    db_cfg = _load_from_db()

    if db_cfg is None:
        source = file_cfg if file_cfg is not None else copy.deepcopy(DEFAULT_CONFIG)
        save_config(source)
        return _with_defaults(source)

    if file_cfg is not None and any(db_cfg.get(k) != v for k, v in file_cfg.items()):
        merged = {**db_cfg, **file_cfg}
        save_config(merged)
        return _with_defaults(merged)

    return _with_defaults(db_cfg)


def save_config(config: dict[str, Any]) -> None:
    """Persist every top-level key of *config* to the DB as JSON values.

    Uses upsert semantics so it is safe to call repeatedly.
    """
    try:
        scope = _scope()
        for key, value in config.items():
            (
                AppConfig.insert(key=key, value=json.dumps(value), user=scope)
                .on_conflict(
                    conflict_target=[AppConfig.key, AppConfig.user],
                    update={AppConfig.value: json.dumps(value)},
                )
                .execute()
            )
    except Exception as e:
        log.warning("Could not save config to DB: %s", e)


def get_db_path_from_env() -> str:
    """Return the SQLite path to use when no DATABASE_URL is set.

    Checks the ``PLANCAL_DB`` environment variable first, then falls back to
    ``plancal.sqlite3`` in the current working directory.
    """
    return os.environ.get("PLANCAL_DB", "plancal.sqlite3")
