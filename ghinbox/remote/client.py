from __future__ import annotations

import http.client
import logging
from typing import Any, Protocol
from urllib.parse import quote, urlencode, urlparse

from .. import __version__
from ..config import DEFAULT_API_BASE_URL
from ..credentials import CredentialProvider
from ..errors import ApiError, InvalidURLError, NetworkFailure, NoCredentialError
from ..models import (
    Comment,
    NotificationThread,
    ResourceDetail,
    decode_comments,
    decode_detail,
    decode_threads,
)
from . import http_client

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"


class RemoteFeedClient(Protocol):
    def list_notifications(self, since: str | None = None) -> list[NotificationThread]: ...

    def fetch_detail(self, resource_url: str) -> ResourceDetail: ...

    def fetch_comments(self, comments_url: str) -> list[Comment]: ...

    def mark_thread_done(self, thread_id: str) -> None: ...

    def mark_thread_read(self, thread_id: str) -> None: ...


def comments_url_for(resource_url: str) -> str:
    return resource_url.rstrip("/") + "/comments"


def _error_detail(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    message = payload.get("message")
    if isinstance(message, str) and message:
        return message
    error = payload.get("error")
    if isinstance(error, str) and error:
        return error
    return None


class GitHubClient:
    """Authenticated calls against the GitHub notifications API. Holds no state
    besides its settings; every call reads the token fresh from ``credentials``."""

    def __init__(
        self,
        credentials: CredentialProvider,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout_s: float = 10.0,
        per_page: int = 50,
        max_pages: int = 10,
    ) -> None:
        self.credentials = credentials
        self.api_base_url = http_client.build_base_url(api_base_url)
        self.timeout_s = timeout_s
        self.per_page = max(1, min(per_page, 50))
        self.max_pages = max(1, max_pages)

    def has_credential(self) -> bool:
        return self.credentials.get_token() is not None

    def _headers(self) -> dict[str, str]:
        token = self.credentials.get_token()
        if not token:
            raise NoCredentialError()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": f"ghinbox/{__version__}",
        }

    def _request(self, method: str, url: str, *, expected: int) -> Any:
        headers = self._headers()
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise InvalidURLError(f"invalid url: {url!r}")
        try:
            status, payload = http_client.request_json(
                method, url, headers=headers, timeout_s=self.timeout_s
            )
        except ValueError as exc:
            raise InvalidURLError(str(exc)) from exc
        except (OSError, http.client.HTTPException) as exc:
            raise NetworkFailure(f"{method} {url} failed: {exc}") from exc
        logger.debug("github: %s %s -> %s", method, url, status)
        if status != expected:
            raise ApiError(status, _error_detail(payload))
        return payload

    def list_notifications(self, since: str | None = None) -> list[NotificationThread]:
        threads: list[NotificationThread] = []
        for page in range(1, self.max_pages + 1):
            params: dict[str, Any] = {"all": "true", "per_page": self.per_page, "page": page}
            if since:
                params["since"] = since
            url = f"{self.api_base_url}/notifications?{urlencode(params)}"
            payload = self._request("GET", url, expected=200)
            batch = decode_threads(payload)
            threads.extend(batch)
            if len(batch) < self.per_page:
                break
        else:
            logger.info("github: stopped paging notifications after %s pages", self.max_pages)
        return threads

    def fetch_detail(self, resource_url: str) -> ResourceDetail:
        return decode_detail(self._request("GET", resource_url, expected=200))

    def fetch_comments(self, comments_url: str) -> list[Comment]:
        return decode_comments(self._request("GET", comments_url, expected=200))

    def mark_thread_done(self, thread_id: str) -> None:
        url = f"{self.api_base_url}/notifications/threads/{quote(thread_id, safe='')}"
        self._request("DELETE", url, expected=204)

    def mark_thread_read(self, thread_id: str) -> None:
        url = f"{self.api_base_url}/notifications/threads/{quote(thread_id, safe='')}"
        self._request("PATCH", url, expected=205)
