"""SQLite storage for soundboard users, sound records and admin settings.

``store`` is the only module that issues SQL; everything here is connection
plumbing plus the schema.  Sound rows belong to a user and cascade away with
them, and a row's ``filename`` names the transcoded ``.ogg`` under that
user's upload directory.  Settings are a flat key/value table holding JSON
values that :class:`soundboard.settings.SettingsService` merges over its
defaults.

The file lives at ``$SOUNDBOARD_DATA_DIR/soundboard.db`` (``./data`` when
unset).  Request handlers and executor threads each get their own
connection; tests point everything at a temporary file with
:func:`set_db_path` followed by :func:`init_db`.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from pathlib import Path

_DB_PATH: Path | None = None
_LOCAL = threading.local()


def _db_path() -> Path:
    global _DB_PATH
    if _DB_PATH is None:
        data_dir = Path(os.environ.get("SOUNDBOARD_DATA_DIR", "./data"))
        data_dir.mkdir(parents=True, exist_ok=True)
        _DB_PATH = data_dir / "soundboard.db"
    return _DB_PATH


def set_db_path(path: str | Path) -> None:
    """Override the database path (useful for tests)."""
    global _DB_PATH, _LOCAL
    _DB_PATH = Path(path)
    _LOCAL = threading.local()


def get_db() -> sqlite3.Connection:
    """Return a per-thread SQLite connection (WAL mode, FK enabled)."""
    conn = getattr(_LOCAL, "conn", None)
    if conn is None:
        conn = sqlite3.connect(str(_db_path()), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        _LOCAL.conn = conn
    return conn


def init_db(path: str | Path | None = None) -> None:
    """Create all tables (idempotent, safe to run multiple times)."""
    if path:
        set_db_path(path)
    conn = get_db()
    _create_schema(conn)
    conn.commit()


_SCHEMA_SQL = """
-- ───────── Users ─────────

CREATE TABLE IF NOT EXISTS users (
    id           TEXT PRIMARY KEY,
    steam_id_64  TEXT NOT NULL UNIQUE,
    username     TEXT NOT NULL,
    avatar_url   TEXT,
    is_admin     BOOLEAN NOT NULL DEFAULT FALSE,
    is_banned    BOOLEAN NOT NULL DEFAULT FALSE,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);

-- ───────── Sounds ─────────

CREATE TABLE IF NOT EXISTS sounds (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL CHECK (length(name) BETWEEN 1 AND 32),
    filename    TEXT NOT NULL UNIQUE,
    duration    REAL NOT NULL,
    size        INTEGER NOT NULL,
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_sounds_user_created ON sounds(user_id, created_at);

-- ───────── Settings ─────────

CREATE TABLE IF NOT EXISTS settings (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


def _create_schema(conn: sqlite3.Connection) -> None:
    """Execute all CREATE TABLE / INDEX statements in one transaction."""
    conn.executescript(_SCHEMA_SQL)
