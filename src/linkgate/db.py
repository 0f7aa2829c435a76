"""SQLite access through APSW: per-request connections, transactions, schema setup."""

import os
import secrets
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import apsw

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
SCHEMA_VERSION = 1

_PRAGMAS = (
    "PRAGMA busy_timeout = 5000;",
    "PRAGMA foreign_keys = ON;",
    "PRAGMA journal_mode = WAL;",
)


def _project_root() -> Path:
    if "LINKGATE_ROOT" in os.environ:
        return Path(os.environ["LINKGATE_ROOT"])
    checkout = Path(__file__).parent.parent.parent
    if (checkout / "src" / "linkgate" / "__init__.py").exists():
        return checkout
    return Path.cwd()


def resolve_db_path(config: Mapping[str, Any] | None = None) -> str:
    """Pick the database file.

    ``LINKGATE_DB`` wins, then ``DATABASE_PATH`` from ``config``, then
    ``instance/linkgate.sqlite3`` under the project root.
    """
    env_path = os.environ.get("LINKGATE_DB")
    if env_path:
        return env_path
    if config is not None and config.get("DATABASE_PATH"):
        return str(config["DATABASE_PATH"])
    return str(_project_root() / "instance" / "linkgate.sqlite3")


def get_db_path() -> str:
    """Database file for the current app, or the default outside an app context."""
    from flask import current_app, has_app_context

    return resolve_db_path(current_app.config if has_app_context() else None)


def connect(db_path: str) -> apsw.Connection:
    """Open ``db_path`` (creating its directory) with the standard PRAGMAs applied."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = apsw.Connection(db_path)
    for pragma in _PRAGMAS:
        conn.execute(pragma)
    return conn


def get_db() -> apsw.Connection:
    """Connection shared by everything running in the current app context."""
    from flask import g

    if "db" not in g:
        g.db = connect(get_db_path())
    return g.db


def close_db(e: BaseException | None = None) -> None:
    """Teardown hook closing the app-context connection."""
    from flask import g

    conn = g.pop("db", None)
    if conn is not None:
        conn.close()


@contextmanager
def transaction() -> Generator[apsw.Cursor]:
    """Run the block in an immediate write transaction on the app-context connection."""
    cursor = get_db().cursor()
    cursor.execute("BEGIN IMMEDIATE;")
    try:
        yield cursor
    except Exception:
        cursor.execute("ROLLBACK;")
        raise
    cursor.execute("COMMIT;")


def init_db_at(db_path: str) -> None:
    """Create missing tables at ``db_path`` and a signing secret on first run.

    Needs no Flask context, so the app factory can call it before the app exists.
    """
    conn = connect(db_path)
    try:
        for _ in conn.execute(SCHEMA_PATH.read_text()):
            pass
        conn.execute(
            "INSERT OR IGNORE INTO app_setting (key, value, description) VALUES (?, ?, ?)",
            ("secret_key", secrets.token_urlsafe(32), "Secret for login link and session signatures"),
        )
    finally:
        conn.close()


def get_schema_version() -> int:
    """Schema version recorded in ``db_metadata`` (0 before initialisation)."""
    try:
        row = get_db().execute(
            "SELECT value FROM db_metadata WHERE key = 'schema_version'"
        ).fetchone()
    except apsw.SQLError:
        return 0
    return int(row[0]) if row else 0
