from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from .settings import settings

log = logging.getLogger("hikup.db")


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a missing bind-mounted file makes
    Docker create a directory in its place), the journal lives inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "hikup.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              container TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS updates (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              container_name TEXT NOT NULL,
              old_id TEXT NOT NULL,
              new_id TEXT,
              status TEXT NOT NULL, -- updated|failed
              failed_step TEXT,
              detail TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_updates_container ON updates(container_name);
            """
        )


def log_event(level: str, message: str, container: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, container, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level.upper(), container, message),
        )


def guarded(write: Callable[..., None], *args: Any, **kwargs: Any) -> bool:
    """Run a journal write from the update path; failures are logged, not raised."""
    try:
        write(*args, **kwargs)
    except sqlite3.Error as e:
        log.error("Journal write failed: %s: %s", type(e).__name__, e)
        return False
    return True


@dataclass(frozen=True)
class UpdateRow:
    id: int
    ts: str
    container_name: str
    old_id: str
    new_id: str | None
    status: str
    failed_step: str | None
    detail: str | None


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def record_update(
    container_name: str,
    old_id: str,
    status: str,
    new_id: str | None = None,
    failed_step: str | None = None,
    detail: str | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO updates (ts, container_name, old_id, new_id, status, failed_step, detail)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (utc_now(), container_name, old_id, new_id, status, failed_step, detail),
        )


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def latest_updates(container_name: str | None = None, limit: int = 100) -> list[UpdateRow]:
    with connect() as conn:
        if container_name:
            rows = conn.execute(
                "SELECT * FROM updates WHERE container_name=? ORDER BY id DESC LIMIT ?",
                (container_name, limit),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM updates ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, UpdateRow)
