from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from ..errors import GhinboxError, NoCredentialError
from ..events import SYNC_FINISHED, SYNC_STARTED, EventChannel
from ..models import NotificationThread, ResourceDetail, ResourceType, SyncResult
from ..remote import RemoteFeedClient
from ..store import NotificationStore

logger = logging.getLogger(__name__)


class SyncEngine:
    """Pulls the notification delta into the store and reads back the merged view.

    A failed list call never empties the view: the merged list is always read
    back from the store, and the failure is reported next to it.
    """

    def __init__(
        self,
        store: NotificationStore,
        client: RemoteFeedClient,
        *,
        detail_workers: int = 4,
        events: EventChannel | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.detail_workers = max(1, detail_workers)
        self.events = events or EventChannel()

    def sync(self) -> SyncResult:
        self.events.publish(SYNC_STARTED)
        result = SyncResult()
        last_sync = self.store.get_last_sync_time()
        try:
            threads = self.client.list_notifications(since=last_sync)
        except NoCredentialError as exc:
            logger.warning("sync: no credential, skipping remote pull")
            result.error = exc
        except GhinboxError as exc:
            logger.warning("sync: list notifications failed (since=%s)", last_sync, exc_info=exc)
            result.error = exc
        else:
            result.threads_in = self.store.upsert_threads(threads)
            result.details_ok, result.detail_errors = self.enrich_details(threads)

        result.threads = self.store.get_all_merged_threads()
        logger.info(
            "sync: threads_in=%s details_ok=%s details_failed=%s total=%s error=%s",
            result.threads_in,
            result.details_ok,
            len(result.detail_errors),
            len(result.threads),
            result.error,
        )
        self.events.publish(SYNC_FINISHED, result)
        return result

    def enrich_details(
        self, threads: Sequence[NotificationThread]
    ) -> tuple[int, dict[str, str]]:
        candidates = [thread for thread in threads if thread.wants_detail]
        if not candidates:
            return 0, {}
        workers = min(self.detail_workers, len(candidates))
        if workers <= 1:
            outcomes = [self._refresh_detail_quietly(thread) for thread in candidates]
        else:
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="ghinbox-detail"
            ) as pool:
                outcomes = list(pool.map(self._refresh_detail_quietly, candidates))
        errors = {
            thread.id: error for thread, error in zip(candidates, outcomes, strict=True) if error
        }
        return len(candidates) - len(errors), errors

    def refresh_detail(self, thread: NotificationThread) -> ResourceDetail:
        """Fetch one subject's detail and cache it under (repo, number)."""
        resource_type = ResourceType.for_subject(thread.subject_type)
        number = thread.subject_id
        if resource_type is None or number is None or not thread.subject_url:
            raise ValueError(f"thread {thread.id} has no issue or pull request subject")
        detail = self.client.fetch_detail(thread.subject_url)
        self.store.upsert_detail(
            thread.repo_full_name, number, detail, resource_type=resource_type
        )
        return detail

    def _refresh_detail_quietly(self, thread: NotificationThread) -> str | None:
        try:
            self.refresh_detail(thread)
        except GhinboxError as exc:
            logger.warning(
                "sync: detail fetch failed for %s (%s)", thread.id, thread.subject_url, exc_info=exc
            )
            return str(exc) or exc.__class__.__name__
        return None
