from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from .errors import GhinboxError
from .events import STATE_CHANGED, EventChannel
from .models import Comment, MergedThread, ResourceDetail, SyncResult
from .remote import RemoteFeedClient, comments_url_for
from .store import NotificationStore
from .sync import SyncEngine
from .view import FilterState, apply_filters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetailPane:
    thread_id: str
    detail: ResourceDetail | None = None
    comments: tuple[Comment, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class InboxState:
    threads: tuple[MergedThread, ...] = ()
    visible: tuple[MergedThread, ...] = ()
    filters: FilterState = field(default_factory=FilterState)
    selected_ids: frozenset[str] = frozenset()
    selected_id: str | None = None
    last_viewed_id: str | None = None
    error: str | None = None
    needs_credential: bool = False
    detail_errors: tuple[tuple[str, str], ...] = ()
    loading: frozenset[str] = frozenset()
    syncing: bool = False
    memory_only: bool = False

    def detail_error(self, thread_id: str) -> str | None:
        return dict(self.detail_errors).get(thread_id)


class Inbox:
    """Owns the in-memory working list and applies user actions to it.

    Every operation returns a fresh ``InboxState`` and publishes it on
    ``events`` as a ``state_changed`` event.
    """

    def __init__(
        self,
        store: NotificationStore,
        client: RemoteFeedClient,
        *,
        engine: SyncEngine | None = None,
        filters: FilterState | None = None,
        events: EventChannel | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.events = events or EventChannel()
        self.engine = engine or SyncEngine(store, client, events=self.events)
        self._lock = threading.RLock()
        self._threads: list[MergedThread] = []
        self._filters = filters or FilterState()
        self._selected_ids: set[str] = set()
        self._selected_id: str | None = None
        self._last_viewed_id: str | None = None
        self._error: str | None = None
        self._needs_credential = False
        self._detail_errors: dict[str, str] = {}
        self._loading: set[str] = set()
        self._syncing = False
        self._comments: dict[str, tuple[Comment, ...]] = {}

    # Snapshots

    def state(self) -> InboxState:
        with self._lock:
            keep = {i for i in (self._selected_id, self._last_viewed_id) if i}
            visible = apply_filters(self._threads, self._filters, keep_visible=keep)
            return InboxState(
                threads=tuple(self._threads),
                visible=tuple(visible),
                filters=self._filters,
                selected_ids=frozenset(self._selected_ids),
                selected_id=self._selected_id,
                last_viewed_id=self._last_viewed_id,
                error=self._error,
                needs_credential=self._needs_credential,
                detail_errors=tuple(sorted(self._detail_errors.items())),
                loading=frozenset(self._loading),
                syncing=self._syncing,
                memory_only=self.store.memory_only,
            )

    def _publish(self) -> InboxState:
        snapshot = self.state()
        self.events.publish(STATE_CHANGED, snapshot)
        return snapshot

    def _set_threads(self, rows: Iterable[MergedThread]) -> None:
        # Archived threads never appear in the working list.
        self._threads = [row for row in rows if not row.overlay.is_done]

    def _find(self, thread_id: str) -> MergedThread | None:
        for row in self._threads:
            if row.id == thread_id:
                return row
        return None

    def is_known(self, thread_id: str) -> bool:
        with self._lock:
            if self._find(thread_id) is not None:
                return True
        return self.store.get_thread(thread_id) is not None

    def _replace_row(self, thread_id: str, **changes: object) -> None:
        for index, row in enumerate(self._threads):
            if row.id == thread_id:
                self._threads[index] = replace(row, **changes)
                return

    # Loading

    def load(self) -> InboxState:
        """Populate the working list from the store without touching the network."""
        rows = self.store.get_all_merged_threads()
        with self._lock:
            self._set_threads(rows)
        return self._publish()

    def refresh(self) -> tuple[InboxState, SyncResult]:
        with self._lock:
            self._syncing = True
        self._publish()
        try:
            result = self.engine.sync()
        finally:
            with self._lock:
                self._syncing = False
        with self._lock:
            self._set_threads(result.threads)
            self._error = str(result.error) if result.error is not None else None
            self._needs_credential = result.needs_credential
            self._detail_errors.update(result.detail_errors)
            for thread_id in list(self._detail_errors):
                row = self._find(thread_id)
                if thread_id in result.detail_errors:
                    continue
                if row is not None and row.detail is not None:
                    del self._detail_errors[thread_id]
        return self._publish(), result

    # Filters and selection

    def set_filters(self, filters: FilterState) -> InboxState:
        with self._lock:
            self._filters = filters
        return self._publish()

    def toggle_repo(self, repo: str) -> InboxState:
        return self.set_filters(self._filters.toggle_repo(repo))

    def toggle_type(self, subject_type: str) -> InboxState:
        return self.set_filters(self._filters.toggle_type(subject_type))

    def select(self, thread_ids: Iterable[str]) -> InboxState:
        with self._lock:
            self._selected_ids = set(thread_ids)
        return self._publish()

    # Actions

    def archive(self, thread_ids: Iterable[str]) -> InboxState:
        ids: list[str] = []
        for thread_id in dict.fromkeys(thread_ids):
            if self.is_known(thread_id):
                ids.append(thread_id)
            else:
                logger.warning("inbox: ignoring archive for unknown thread %s", thread_id)
        if not ids:
            return self.state()
        for thread_id in ids:
            self.store.mark_done(thread_id)
        with self._lock:
            removed = set(ids)
            self._threads = [row for row in self._threads if row.id not in removed]
            self._selected_ids -= removed
            if self._selected_id in removed:
                self._selected_id = None
        snapshot = self._publish()
        for thread_id in ids:
            try:
                self.client.mark_thread_done(thread_id)
            except GhinboxError as exc:
                logger.warning("inbox: remote mark done failed for %s", thread_id, exc_info=exc)
        return snapshot

    def archive_selected(self) -> InboxState:
        with self._lock:
            ids = sorted(self._selected_ids)
        return self.archive(ids)

    def mark_read(self, thread_id: str) -> InboxState:
        if not self.is_known(thread_id):
            logger.warning("inbox: ignoring mark read for unknown thread %s", thread_id)
            return self.state()
        with self._lock:
            row = self._find(thread_id)
        if row is not None:
            was_unread = row.unread
        else:
            was_unread = not self.store.get_overlay(thread_id).is_read
        self.store.mark_read(thread_id)
        overlay = replace(self.store.get_overlay(thread_id), is_read=True)
        with self._lock:
            self._replace_row(thread_id, overlay=overlay)
        snapshot = self._publish()
        if was_unread:
            try:
                self.client.mark_thread_read(thread_id)
            except GhinboxError as exc:
                logger.warning("inbox: remote mark read failed for %s", thread_id, exc_info=exc)
        return snapshot

    def open_thread(self, thread_id: str, *, refresh: bool = False) -> DetailPane:
        with self._lock:
            self._selected_id = thread_id
            self._last_viewed_id = thread_id
        self.mark_read(thread_id)
        return self.load_detail(thread_id, refresh=refresh)

    def load_detail(self, thread_id: str, *, refresh: bool = False) -> DetailPane:
        with self._lock:
            row = self._find(thread_id)
        thread = row.thread if row is not None else self.store.get_thread(thread_id)
        if thread is None or not thread.wants_detail or thread.subject_id is None:
            return DetailPane(thread_id=thread_id)
        url = str(thread.subject_url)

        cached: ResourceDetail | None = row.detail if row is not None else None
        if cached is None:
            snapshot = self.store.get_detail(thread.repo_full_name, thread.subject_id)
            cached = snapshot.to_detail() if snapshot is not None else None

        with self._lock:
            if url in self._loading:
                return DetailPane(
                    thread_id=thread_id, detail=cached, comments=self._comments.get(url, ())
                )
            self._loading.add(url)
        self._publish()

        detail = cached
        comments = self._comments.get(url, ())
        error: str | None = None
        try:
            if detail is None or refresh:
                detail = self.engine.refresh_detail(thread)
            if refresh or url not in self._comments:
                comments = tuple(self.client.fetch_comments(comments_url_for(url)))
        except GhinboxError as exc:
            logger.warning("inbox: detail load failed for %s (%s)", thread_id, url, exc_info=exc)
            error = str(exc) or exc.__class__.__name__
        finally:
            with self._lock:
                self._loading.discard(url)

        with self._lock:
            if error is None:
                self._comments[url] = comments
                self._detail_errors.pop(thread_id, None)
            else:
                self._detail_errors[thread_id] = error
            if detail is not None:
                self._replace_row(thread_id, detail=detail)
        self._publish()
        return DetailPane(thread_id=thread_id, detail=detail, comments=comments, error=error)

    def retry_detail(self, thread_id: str) -> DetailPane:
        return self.load_detail(thread_id, refresh=True)
