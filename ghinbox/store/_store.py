from __future__ import annotations

import functools
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, TypeVar

from .. import db
from ..config import DEFAULT_API_BASE_URL
from ..errors import DecodeFailure, StoreFailure
from ..models import (
    DetailSnapshot,
    LocalOverlayState,
    MergedThread,
    NotificationThread,
    Owner,
    Reason,
    ResourceDetail,
    ResourceState,
    ResourceType,
    SubjectType,
    decode_owner,
    decode_repository,
    now_timestamp,
    resource_api_url,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _degrades_to(default: Callable[[], Any]) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Turn sqlite failures into a logged no-op returning ``default()``."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(self: NotificationStore, *args: Any, **kwargs: Any) -> T:
            try:
                return func(self, *args, **kwargs)
            except sqlite3.Error as exc:
                logger.warning("store: %s failed", func.__name__, exc_info=exc)
                return default()

        return wrapper

    return decorator


class NotificationStore:
    """SQLite-backed cache of notification threads, local overlay state and
    resolved issue/PR snapshots.

    Every mutation is a single upsert statement committed on its own, so
    concurrent writers converge instead of interleaving partial rows. If the
    database file cannot be opened the store keeps working against an
    in-memory database for the rest of the session (``memory_only``).
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
    ) -> None:
        self.api_base_url = api_base_url
        self._lock = threading.RLock()
        self.memory_only = str(db_path) == db.MEMORY_DB
        self.db_path = db_path if self.memory_only else Path(db_path).expanduser()
        try:
            self.conn = _open(self.db_path)
        except StoreFailure as exc:
            logger.warning("store: %s, continuing in memory-only mode", exc, exc_info=exc)
            self.conn = _open(db.MEMORY_DB)
            self.memory_only = True

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # Notification threads

    @_degrades_to(lambda: None)
    def upsert_thread(self, thread: NotificationThread) -> None:
        # Remote fields are last-write-wins, but never move updated_at backwards;
        # overlay rows live in their own table and are not touched here.
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO notification_threads(
                    id, repository_json, repo_full_name, subject_type, subject_id,
                    subject_url, subject_title, reason, url, remote_unread,
                    updated_at, last_synced_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    repository_json = excluded.repository_json,
                    repo_full_name = excluded.repo_full_name,
                    subject_type = excluded.subject_type,
                    subject_id = excluded.subject_id,
                    subject_url = excluded.subject_url,
                    subject_title = excluded.subject_title,
                    reason = excluded.reason,
                    url = excluded.url,
                    remote_unread = excluded.remote_unread,
                    updated_at = excluded.updated_at,
                    last_synced_at = excluded.last_synced_at
                WHERE excluded.updated_at >= notification_threads.updated_at
                """,
                (
                    thread.id,
                    db.to_json(thread.repository.to_dict()),
                    thread.repo_full_name,
                    thread.subject_type.value,
                    thread.subject_id,
                    thread.subject_url,
                    thread.subject_title,
                    thread.reason.value,
                    thread.url,
                    1 if thread.remote_unread else 0,
                    thread.updated_at,
                    now_timestamp(),
                ),
            )

    def upsert_threads(self, threads: Iterable[NotificationThread]) -> int:
        count = 0
        for thread in threads:
            self.upsert_thread(thread)
            count += 1
        return count

    @_degrades_to(lambda: None)
    def get_last_sync_time(self) -> str | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT MAX(updated_at) AS last FROM notification_threads"
            ).fetchone()
        if row is None or row["last"] is None:
            return None
        return str(row["last"])

    @_degrades_to(lambda: None)
    def get_thread(self, thread_id: str) -> NotificationThread | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM notification_threads WHERE id = ?", (thread_id,)
            ).fetchone()
        if row is None:
            return None
        return self._thread_from_row(row)

    @_degrades_to(list)
    def get_all_merged_threads(self) -> list[MergedThread]:
        with self._lock:
            thread_rows = self.conn.execute(
                "SELECT * FROM notification_threads ORDER BY updated_at DESC, id"
            ).fetchall()
            overlay_rows = self.conn.execute("SELECT * FROM local_notification_state").fetchall()
            detail_rows = self.conn.execute("SELECT * FROM issue_pr").fetchall()

        overlays = {str(row["thread_id"]): self._overlay_from_row(row) for row in overlay_rows}
        details: dict[tuple[str, int], ResourceDetail] = {}
        for row in detail_rows:
            snapshot = self._snapshot_from_row(row)
            details[(snapshot.repo_full_name, snapshot.number)] = snapshot.to_detail()

        merged: list[MergedThread] = []
        for row in thread_rows:
            thread = self._thread_from_row(row)
            if thread is None:
                continue
            detail = None
            # Subjects are addressed by their repo-scoped number, never by the
            # resource's global id.
            if thread.subject_id is not None:
                detail = details.get((thread.repo_full_name, thread.subject_id))
            merged.append(
                MergedThread(
                    thread=thread,
                    overlay=overlays.get(thread.id) or LocalOverlayState(thread_id=thread.id),
                    detail=detail,
                )
            )
        return merged

    # Local overlay state

    @_degrades_to(lambda: None)
    def mark_done(self, thread_id: str) -> None:
        # Archiving also marks read; snooze columns are left as they are.
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO local_notification_state(thread_id, is_done, done_at, is_read)
                VALUES (?, 1, ?, 1)
                ON CONFLICT(thread_id) DO UPDATE SET
                    is_done = 1,
                    done_at = excluded.done_at,
                    is_read = 1
                """,
                (thread_id, now_timestamp()),
            )

    def mark_many_done(self, thread_ids: Iterable[str]) -> None:
        for thread_id in thread_ids:
            self.mark_done(thread_id)

    @_degrades_to(lambda: None)
    def mark_read(self, thread_id: str) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO local_notification_state(thread_id, is_read)
                VALUES (?, 1)
                ON CONFLICT(thread_id) DO UPDATE SET is_read = 1
                """,
                (thread_id,),
            )

    def get_overlay(self, thread_id: str) -> LocalOverlayState:
        row = self._fetch_overlay_row(thread_id)
        if row is None:
            return LocalOverlayState(thread_id=thread_id)
        return self._overlay_from_row(row)

    @_degrades_to(lambda: None)
    def _fetch_overlay_row(self, thread_id: str) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(
                "SELECT * FROM local_notification_state WHERE thread_id = ?", (thread_id,)
            ).fetchone()

    # Issue / PR snapshots

    @_degrades_to(lambda: None)
    def upsert_detail(
        self,
        repo_full_name: str,
        number: int,
        detail: ResourceDetail,
        *,
        resource_type: ResourceType = ResourceType.ISSUE,
    ) -> None:
        assignees = [owner.to_dict() for owner in detail.assignees]
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO issue_pr(
                    repo, number, remote_id, type, state, title, author_json,
                    assignees_json, html_url, updated_at, last_synced_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(repo, number) DO UPDATE SET
                    remote_id = excluded.remote_id,
                    type = excluded.type,
                    state = excluded.state,
                    title = excluded.title,
                    author_json = excluded.author_json,
                    assignees_json = excluded.assignees_json,
                    html_url = excluded.html_url,
                    updated_at = excluded.updated_at,
                    last_synced_at = excluded.last_synced_at
                """,
                (
                    repo_full_name,
                    int(number),
                    detail.id,
                    resource_type.value,
                    detail.stored_state,
                    detail.title,
                    db.to_json(detail.user.to_dict()),
                    db.to_json(assignees),
                    detail.html_url,
                    detail.updated_at,
                    now_timestamp(),
                ),
            )

    @_degrades_to(lambda: None)
    def get_detail(self, repo_full_name: str, number: int) -> DetailSnapshot | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM issue_pr WHERE repo = ? AND number = ?",
                (repo_full_name, int(number)),
            ).fetchone()
        if row is None:
            return None
        return self._snapshot_from_row(row)

    @_degrades_to(dict)
    def get_all_details(self) -> dict[str, ResourceDetail]:
        """Return cached details keyed by the subject's API URL."""
        with self._lock:
            rows = self.conn.execute("SELECT * FROM issue_pr").fetchall()
        results: dict[str, ResourceDetail] = {}
        for row in rows:
            snapshot = self._snapshot_from_row(row)
            url = resource_api_url(
                self.api_base_url, snapshot.repo_full_name, snapshot.type, snapshot.number
            )
            results[url] = snapshot.to_detail()
        return results

    @_degrades_to(dict)
    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._lock:
            for table in ("notification_threads", "local_notification_state", "issue_pr"):
                row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
                counts[table] = int(row["n"]) if row else 0
            row = self.conn.execute(
                "SELECT COUNT(*) AS n FROM local_notification_state WHERE is_done = 1"
            ).fetchone()
        counts["done"] = int(row["n"]) if row else 0
        return counts

    # Row decoding

    @staticmethod
    def _thread_from_row(row: sqlite3.Row) -> NotificationThread | None:
        try:
            repository = decode_repository(db.from_json(row["repository_json"]))
        except DecodeFailure as exc:
            logger.warning(
                "store: skipping thread %s with unreadable repository", row["id"], exc_info=exc
            )
            return None
        return NotificationThread(
            id=str(row["id"]),
            repository=repository,
            subject_type=SubjectType.parse(row["subject_type"]),
            subject_title=str(row["subject_title"] or ""),
            subject_url=row["subject_url"] or None,
            reason=Reason.parse(row["reason"]),
            updated_at=str(row["updated_at"]),
            url=str(row["url"] or ""),
            remote_unread=bool(row["remote_unread"]),
        )

    @staticmethod
    def _overlay_from_row(row: sqlite3.Row) -> LocalOverlayState:
        return LocalOverlayState(
            thread_id=str(row["thread_id"]),
            is_done=bool(row["is_done"]),
            done_at=row["done_at"],
            is_read=bool(row["is_read"]),
            is_snoozed=bool(row["is_snoozed"]),
            snoozed_until=row["snoozed_until"],
        )

    @staticmethod
    def _snapshot_from_row(row: sqlite3.Row) -> DetailSnapshot:
        author = _owner_or_unknown(db.from_json(row["author_json"]))
        assignees_raw = db.from_json(row["assignees_json"])
        assignees: list[Owner] = []
        if isinstance(assignees_raw, list):
            for item in assignees_raw:
                try:
                    assignees.append(decode_owner(item))
                except DecodeFailure:
                    continue
        return DetailSnapshot(
            repo_full_name=str(row["repo"]),
            number=int(row["number"]),
            type=ResourceType.parse(row["type"]),
            state=ResourceState.parse(row["state"]),
            title=str(row["title"]),
            author=author,
            assignees=tuple(assignees),
            updated_at=str(row["updated_at"]),
            remote_id=int(row["remote_id"] or 0),
            html_url=str(row["html_url"] or ""),
        )


def _open(db_path: Path | str) -> sqlite3.Connection:
    try:
        conn = db.connect(db_path, check_same_thread=False)
        db.initialize_schema(conn)
    except (sqlite3.Error, OSError) as exc:
        raise StoreFailure(f"cannot open {db_path}: {exc}") from exc
    return conn


def _owner_or_unknown(payload: Any) -> Owner:
    try:
        return decode_owner(payload)
    except DecodeFailure:
        return Owner(login="unknown")
