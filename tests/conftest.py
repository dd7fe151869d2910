from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ghinbox.errors import ApiError
from ghinbox.models import (
    Comment,
    NotificationThread,
    ResourceDetail,
    decode_comments,
    decode_detail,
    decode_threads,
)
from ghinbox.store import NotificationStore

API = "https://api.github.com"


def subject_url(repo: str, number: int, kind: str = "issues") -> str:
    return f"{API}/repos/{repo}/{kind}/{number}"


def make_thread_payload(
    thread_id: str = "T1",
    *,
    repo: str = "acme/widgets",
    subject_type: str = "Issue",
    number: int | None = 42,
    title: str = "Subject title",
    reason: str = "mention",
    updated_at: str = "2024-01-01T00:00:00Z",
    unread: bool = True,
) -> dict[str, Any]:
    owner, name = repo.split("/", 1)
    kind = "pulls" if subject_type == "PullRequest" else "issues"
    url = subject_url(repo, number, kind) if number is not None else None
    return {
        "id": thread_id,
        "repository": {
            "id": sum(map(ord, repo)),
            "name": name,
            "full_name": repo,
            "owner": {"login": owner, "avatar_url": f"https://avatars.example/{owner}"},
        },
        "subject": {"title": title, "type": subject_type, "url": url},
        "reason": reason,
        "unread": unread,
        "updated_at": updated_at,
        "url": f"{API}/notifications/threads/{thread_id}",
    }


def make_detail_payload(
    number: int = 42,
    *,
    title: str = "Bug",
    state: str = "open",
    merged: bool | None = None,
    remote_id: int = 987654,
    updated_at: str = "2024-01-01T00:00:00Z",
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": remote_id,
        "number": number,
        "title": title,
        "state": state,
        "body": "Steps to reproduce",
        "user": {"login": "octocat", "avatar_url": "https://avatars.example/octocat"},
        "assignees": [{"login": "hubot", "avatar_url": ""}],
        "html_url": f"https://github.com/acme/widgets/issues/{number}",
        "comments": 1,
        "updated_at": updated_at,
    }
    if merged is not None:
        payload["merged"] = merged
    return payload


class FakeClient:
    """In-memory stand-in for the GitHub client, recording every call."""

    def __init__(self) -> None:
        self.threads: list[dict[str, Any]] = []
        self.details: dict[str, dict[str, Any]] = {}
        self.comments: dict[str, list[dict[str, Any]]] = {}
        self.list_error: Exception | None = None
        self.detail_errors: dict[str, Exception] = {}
        self.done_error: Exception | None = None
        self.read_error: Exception | None = None
        self.on_done: Callable[[str], None] | None = None
        self.calls: list[tuple[str, Any]] = []

    def list_notifications(self, since: str | None = None) -> list[NotificationThread]:
        self.calls.append(("list", since))
        if self.list_error is not None:
            raise self.list_error
        threads = decode_threads(self.threads)
        if since:
            threads = [thread for thread in threads if thread.updated_at >= since]
        return threads

    def fetch_detail(self, resource_url: str) -> ResourceDetail:
        self.calls.append(("detail", resource_url))
        if resource_url in self.detail_errors:
            raise self.detail_errors[resource_url]
        if resource_url not in self.details:
            raise ApiError(404, "Not Found")
        return decode_detail(self.details[resource_url])

    def fetch_comments(self, comments_url: str) -> list[Comment]:
        self.calls.append(("comments", comments_url))
        return decode_comments(self.comments.get(comments_url, []))

    def mark_thread_done(self, thread_id: str) -> None:
        self.calls.append(("done", thread_id))
        if self.on_done is not None:
            self.on_done(thread_id)
        if self.done_error is not None:
            raise self.done_error

    def mark_thread_read(self, thread_id: str) -> None:
        self.calls.append(("read", thread_id))
        if self.read_error is not None:
            raise self.read_error

    def calls_of(self, kind: str) -> list[Any]:
        return [arg for name, arg in self.calls if name == kind]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GHINBOX_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("GHINBOX_DB", str(tmp_path / "env.sqlite"))
    for name in ("GHINBOX_TOKEN", "GITHUB_TOKEN", "GHINBOX_DETAIL_WORKERS", "GHINBOX_UNREAD_ONLY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path):
    store = NotificationStore(tmp_path / "ghinbox.sqlite")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()
