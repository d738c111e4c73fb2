"""SQL access for users, sounds and settings rows.

Thin helpers over :func:`soundboard.db.get_db`.  Rows come back as plain
dicts; callers own the shape they expose over HTTP or the plugin socket.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from soundboard.db import get_db


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row(cur: sqlite3.Cursor) -> dict | None:
    r = cur.fetchone()
    if r is None:
        return None
    cols = [d[0] for d in cur.description]
    return dict(zip(cols, r))


def _rows(cur: sqlite3.Cursor) -> list[dict]:
    cols = [d[0] for d in cur.description] if cur.description else []
    return [dict(zip(cols, r)) for r in cur.fetchall()]


def _user(row: dict | None) -> dict | None:
    if row is None:
        return None
    row["is_admin"] = bool(row["is_admin"])
    row["is_banned"] = bool(row["is_banned"])
    return row


# ══════════════════════════════════════════════════════════════════
# USERS
# ══════════════════════════════════════════════════════════════════

def get_user(steam_id_64: str) -> dict | None:
    """Look up a user by external identity."""
    cur = get_db().execute("SELECT * FROM users WHERE steam_id_64 = ?", (steam_id_64,))
    return _user(_row(cur))


def upsert_user(steam_id_64: str, username: str, avatar_url: str | None = None) -> dict:
    """Create or refresh a user after the identity provider exchange."""
    db = get_db()
    now = _now()
    db.execute(
        """INSERT INTO users (id, steam_id_64, username, avatar_url, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(steam_id_64) DO UPDATE SET
               username = excluded.username,
               avatar_url = COALESCE(excluded.avatar_url, avatar_url),
               updated_at = excluded.updated_at""",
        (uuid.uuid4().hex, steam_id_64, username, avatar_url, now, now),
    )
    db.commit()
    return get_user(steam_id_64)  # type: ignore[return-value]


def update_user_flags(
    steam_id_64: str,
    is_admin: bool | None = None,
    is_banned: bool | None = None,
) -> dict | None:
    fields: dict[str, Any] = {}
    if is_admin is not None:
        fields["is_admin"] = int(is_admin)
    if is_banned is not None:
        fields["is_banned"] = int(is_banned)
    if fields:
        fields["updated_at"] = _now()
        sets = ", ".join(f"{k} = ?" for k in fields)
        db = get_db()
        db.execute(
            f"UPDATE users SET {sets} WHERE steam_id_64 = ?",
            (*fields.values(), steam_id_64),
        )
        db.commit()
    return get_user(steam_id_64)


def delete_user(user_id: str) -> None:
    """Delete a user row; their sound rows go with it (ON DELETE CASCADE)."""
    db = get_db()
    db.execute("DELETE FROM users WHERE id = ?", (user_id,))
    db.commit()


# ══════════════════════════════════════════════════════════════════
# SOUNDS
# ══════════════════════════════════════════════════════════════════

def list_sound_infos(user_id: str) -> list[dict]:
    """Return ``{id, name, duration}`` for every sound of a user, newest first."""
    cur = get_db().execute(
        "SELECT id, name, duration FROM sounds WHERE user_id = ? "
        "ORDER BY created_at DESC, rowid DESC",
        (user_id,),
    )
    return _rows(cur)


def list_sounds(
    user_id: str,
    offset: int = 0,
    limit: int = 20,
    search: str | None = None,
) -> tuple[list[dict], int]:
    """Return one page of full sound rows plus the total matching count."""
    where = "user_id = ?"
    params: list[Any] = [user_id]
    if search:
        where += " AND name LIKE ? COLLATE NOCASE"
        params.append(f"%{search}%")

    db = get_db()
    total = db.execute(f"SELECT COUNT(*) FROM sounds WHERE {where}", params).fetchone()[0]
    cur = db.execute(
        f"SELECT * FROM sounds WHERE {where} "
        "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
        (*params, limit, offset),
    )
    return _rows(cur), total


def count_sounds(user_id: str) -> int:
    return get_db().execute(
        "SELECT COUNT(*) FROM sounds WHERE user_id = ?", (user_id,)
    ).fetchone()[0]


def get_sound(user_id: str, sound_id: str) -> dict | None:
    """Fetch a sound only if it belongs to *user_id*."""
    cur = get_db().execute(
        "SELECT * FROM sounds WHERE id = ? AND user_id = ?", (sound_id, user_id)
    )
    return _row(cur)


def get_sound_with_owner(sound_id: str) -> dict | None:
    """Fetch any sound joined with its owner's identity (admin use)."""
    cur = get_db().execute(
        """SELECT s.*, u.steam_id_64 AS owner_steam_id_64
           FROM sounds s JOIN users u ON u.id = s.user_id
           WHERE s.id = ?""",
        (sound_id,),
    )
    return _row(cur)


def insert_sound(
    user_id: str,
    name: str,
    filename: str,
    duration: float,
    size: int,
) -> dict:
    sound_id = uuid.uuid4().hex
    now = _now()
    db = get_db()
    db.execute(
        """INSERT INTO sounds (id, name, filename, duration, size, user_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (sound_id, name, filename, duration, size, user_id, now, now),
    )
    db.commit()
    return _row(db.execute("SELECT * FROM sounds WHERE id = ?", (sound_id,)))  # type: ignore[return-value]


def rename_sound(sound_id: str, name: str) -> dict | None:
    db = get_db()
    db.execute(
        "UPDATE sounds SET name = ?, updated_at = ? WHERE id = ?",
        (name, _now(), sound_id),
    )
    db.commit()
    return _row(db.execute("SELECT * FROM sounds WHERE id = ?", (sound_id,)))


def delete_sound(sound_id: str) -> bool:
    db = get_db()
    cur = db.execute("DELETE FROM sounds WHERE id = ?", (sound_id,))
    db.commit()
    return cur.rowcount > 0


# ══════════════════════════════════════════════════════════════════
# SETTINGS
# ══════════════════════════════════════════════════════════════════

def read_settings() -> dict[str, Any]:
    """Return every stored setting as ``{key: decoded JSON value}``."""
    cur = get_db().execute("SELECT key, value FROM settings")
    return {row["key"]: json.loads(row["value"]) for row in cur.fetchall()}


def write_settings(values: dict[str, Any]) -> None:
    """Upsert the given keys in a single transaction."""
    db = get_db()
    now = _now()
    with db:
        db.executemany(
            """INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                              updated_at = excluded.updated_at""",
            [(key, json.dumps(value), now) for key, value in values.items()],
        )
