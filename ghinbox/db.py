from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from .config import DEFAULT_DB_PATH

MEMORY_DB = ":memory:"

__all__ = ["DEFAULT_DB_PATH", "MEMORY_DB", "connect", "from_json", "initialize_schema", "to_json"]


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    if str(db_path) == MEMORY_DB:
        conn = sqlite3.connect(MEMORY_DB, check_same_thread=check_same_thread)
    else:
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS notification_threads (
            id TEXT PRIMARY KEY,
            repository_json TEXT NOT NULL,
            repo_full_name TEXT NOT NULL,
            subject_type TEXT NOT NULL,
            subject_id INTEGER,
            subject_url TEXT,
            subject_title TEXT NOT NULL DEFAULT '',
            reason TEXT NOT NULL,
            url TEXT NOT NULL DEFAULT '',
            remote_unread INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL,
            last_synced_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_notification_threads_updated
            ON notification_threads(updated_at DESC);

        CREATE TABLE IF NOT EXISTS local_notification_state (
            thread_id TEXT PRIMARY KEY,
            is_done INTEGER NOT NULL DEFAULT 0,
            done_at TEXT,
            is_read INTEGER NOT NULL DEFAULT 0,
            is_snoozed INTEGER NOT NULL DEFAULT 0,
            snoozed_until TEXT
        );

        CREATE TABLE IF NOT EXISTS issue_pr (
            repo TEXT NOT NULL,
            number INTEGER NOT NULL,
            remote_id INTEGER NOT NULL DEFAULT 0,
            type TEXT NOT NULL,
            state TEXT NOT NULL,
            title TEXT NOT NULL,
            author_json TEXT,
            assignees_json TEXT,
            html_url TEXT NOT NULL DEFAULT '',
            updated_at TEXT NOT NULL,
            last_synced_at TEXT NOT NULL,
            PRIMARY KEY (repo, number)
        );
        """
    )
    conn.commit()


def to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False)


def from_json(text: str | None) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None
