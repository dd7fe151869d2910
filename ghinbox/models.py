from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import DecodeFailure, NoCredentialError


class SubjectType(str, Enum):
    ISSUE = "Issue"
    PULL_REQUEST = "PullRequest"
    RELEASE = "Release"
    DISCUSSION = "Discussion"
    COMMIT = "Commit"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: object) -> SubjectType:
        try:
            return cls(str(value or ""))
        except ValueError:
            return cls.OTHER


class Reason(str, Enum):
    ASSIGN = "assign"
    AUTHOR = "author"
    COMMENT = "comment"
    INVITATION = "invitation"
    MANUAL = "manual"
    MENTION = "mention"
    REVIEW_REQUESTED = "review_requested"
    SECURITY_ALERT = "security_alert"
    STATE_CHANGE = "state_change"
    SUBSCRIBED = "subscribed"
    TEAM_MENTION = "team_mention"
    CI_ACTIVITY = "ci_activity"
    OTHER = "other"

    @classmethod
    def parse(cls, value: object) -> Reason:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class ResourceType(str, Enum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"

    @classmethod
    def for_subject(cls, subject_type: SubjectType) -> ResourceType | None:
        if subject_type is SubjectType.ISSUE:
            return cls.ISSUE
        if subject_type is SubjectType.PULL_REQUEST:
            return cls.PULL_REQUEST
        return None

    @classmethod
    def parse(cls, value: object) -> ResourceType:
        raw = str(value or "").strip()
        if raw in {"pull_request", "PullRequest", "pr"}:
            return cls.PULL_REQUEST
        return cls.ISSUE


class ResourceState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> ResourceState:
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


DETAIL_SUBJECT_TYPES = frozenset({SubjectType.ISSUE, SubjectType.PULL_REQUEST})


# Timestamps are stored as second-resolution UTC strings so that SQLite's text
# ordering matches chronological ordering.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def format_timestamp(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC).strftime(TIMESTAMP_FORMAT)


def normalize_timestamp(value: object, *, field_name: str) -> str:
    parsed = parse_iso8601(value) if isinstance(value, str) else None
    if parsed is None:
        raise DecodeFailure(f"invalid timestamp for {field_name}: {value!r}")
    return format_timestamp(parsed)


def now_timestamp() -> str:
    return format_timestamp(dt.datetime.now(dt.UTC))


def subject_number_from_url(url: str | None) -> int | None:
    if not url:
        return None
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    if not tail.isdigit():
        return None
    return int(tail)


def resource_api_url(
    api_base_url: str, repo_full_name: str, resource_type: ResourceType, number: int
) -> str:
    segment = "pulls" if resource_type is ResourceType.PULL_REQUEST else "issues"
    return f"{api_base_url.rstrip('/')}/repos/{repo_full_name}/{segment}/{number}"


def resource_html_url(repo_full_name: str, resource_type: ResourceType, number: int) -> str:
    segment = "pull" if resource_type is ResourceType.PULL_REQUEST else "issues"
    return f"https://github.com/{repo_full_name}/{segment}/{number}"


def encode_stored_state(state: str, merged: bool) -> str:
    """Collapse the remote (state, merged) pair into the single stored state."""
    if merged:
        return ResourceState.MERGED.value
    return ResourceState.parse(state).value


def decode_stored_state(stored: str) -> tuple[str, bool]:
    """Expand a stored state back into the remote (state, merged) pair."""
    parsed = ResourceState.parse(stored)
    if parsed is ResourceState.MERGED:
        return ResourceState.CLOSED.value, True
    return parsed.value, False


@dataclass(frozen=True)
class Owner:
    login: str
    avatar_url: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"login": self.login, "avatar_url": self.avatar_url}


@dataclass(frozen=True)
class Repository:
    id: int
    name: str
    full_name: str
    owner: Owner

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "owner": self.owner.to_dict(),
        }


@dataclass(frozen=True)
class NotificationThread:
    id: str
    repository: Repository
    subject_type: SubjectType
    subject_title: str
    subject_url: str | None
    reason: Reason
    updated_at: str
    url: str = ""
    remote_unread: bool = True

    @property
    def subject_id(self) -> int | None:
        return subject_number_from_url(self.subject_url)

    @property
    def repo_full_name(self) -> str:
        return self.repository.full_name

    @property
    def wants_detail(self) -> bool:
        return (
            self.subject_type in DETAIL_SUBJECT_TYPES
            and self.subject_id is not None
            and bool(self.subject_url)
        )


@dataclass(frozen=True)
class ResourceDetail:
    id: int
    number: int
    title: str
    state: str
    user: Owner
    updated_at: str
    merged: bool = False
    body: str | None = None
    assignees: tuple[Owner, ...] = ()
    html_url: str = ""
    comments: int = 0

    @property
    def stored_state(self) -> str:
        return encode_stored_state(self.state, self.merged)

    @property
    def is_open(self) -> bool:
        return self.state == ResourceState.OPEN.value


@dataclass(frozen=True)
class DetailSnapshot:
    repo_full_name: str
    number: int
    type: ResourceType
    state: ResourceState
    title: str
    author: Owner
    assignees: tuple[Owner, ...]
    updated_at: str
    remote_id: int = 0
    html_url: str = ""

    def to_detail(self) -> ResourceDetail:
        state, merged = decode_stored_state(self.state.value)
        return ResourceDetail(
            id=self.remote_id,
            number=self.number,
            title=self.title,
            state=state,
            merged=merged,
            user=self.author,
            assignees=self.assignees,
            html_url=self.html_url
            or resource_html_url(self.repo_full_name, self.type, self.number),
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class Comment:
    id: int
    body: str
    user: Owner
    created_at: str
    html_url: str = ""


@dataclass(frozen=True)
class LocalOverlayState:
    thread_id: str
    is_done: bool = False
    done_at: str | None = None
    is_read: bool = False
    is_snoozed: bool = False
    snoozed_until: str | None = None


@dataclass(frozen=True)
class MergedThread:
    thread: NotificationThread
    overlay: LocalOverlayState
    detail: ResourceDetail | None = None

    @property
    def id(self) -> str:
        return self.thread.id

    @property
    def unread(self) -> bool:
        return not self.overlay.is_done and not self.overlay.is_read

    @property
    def title(self) -> str:
        if self.detail is not None and self.detail.title:
            return self.detail.title
        return self.thread.subject_title

    @property
    def state(self) -> str | None:
        return self.detail.state if self.detail is not None else None

    @property
    def updated_at(self) -> str:
        return self.thread.updated_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.thread.id,
            "repository": self.thread.repo_full_name,
            "subject_type": self.thread.subject_type.value,
            "subject_id": self.thread.subject_id,
            "subject_url": self.thread.subject_url,
            "reason": self.thread.reason.value,
            "title": self.title,
            "state": self.state,
            "merged": self.detail.merged if self.detail is not None else None,
            "unread": self.unread,
            "done": self.overlay.is_done,
            "updated_at": self.thread.updated_at,
        }


@dataclass
class SyncResult:
    threads: list[MergedThread] = field(default_factory=list)
    error: Exception | None = None
    detail_errors: dict[str, str] = field(default_factory=dict)
    threads_in: int = 0
    details_ok: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def needs_credential(self) -> bool:
        return isinstance(self.error, NoCredentialError)


def _require_dict(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise DecodeFailure(f"expected object for {what}, got {type(payload).__name__}")
    return payload


def decode_owner(payload: Any) -> Owner:
    data = _require_dict(payload, "owner")
    login = data.get("login")
    if not isinstance(login, str):
        raise DecodeFailure("owner.login missing")
    return Owner(login=login, avatar_url=str(data.get("avatar_url") or ""))


def decode_repository(payload: Any) -> Repository:
    data = _require_dict(payload, "repository")
    full_name = data.get("full_name")
    if not isinstance(full_name, str) or not full_name:
        raise DecodeFailure("repository.full_name missing")
    try:
        repo_id = int(data.get("id") or 0)
    except (TypeError, ValueError) as exc:
        raise DecodeFailure("repository.id is not an integer") from exc
    name = data.get("name")
    if not isinstance(name, str) or not name:
        name = full_name.rsplit("/", 1)[-1]
    return Repository(
        id=repo_id,
        name=name,
        full_name=full_name,
        owner=decode_owner(data.get("owner") or {"login": full_name.split("/", 1)[0]}),
    )


def decode_thread(payload: Any) -> NotificationThread:
    data = _require_dict(payload, "notification")
    thread_id = data.get("id")
    if thread_id is None or str(thread_id) == "":
        raise DecodeFailure("notification.id missing")
    subject = _require_dict(data.get("subject") or {}, "subject")
    subject_url = subject.get("url")
    return NotificationThread(
        id=str(thread_id),
        repository=decode_repository(data.get("repository")),
        subject_type=SubjectType.parse(subject.get("type")),
        subject_title=str(subject.get("title") or ""),
        subject_url=subject_url if isinstance(subject_url, str) and subject_url else None,
        reason=Reason.parse(data.get("reason")),
        updated_at=normalize_timestamp(data.get("updated_at"), field_name="updated_at"),
        url=str(data.get("url") or ""),
        remote_unread=bool(data.get("unread", True)),
    )


def decode_threads(payload: Any) -> list[NotificationThread]:
    if not isinstance(payload, list):
        raise DecodeFailure(f"expected list of notifications, got {type(payload).__name__}")
    return [decode_thread(item) for item in payload]


def decode_detail(payload: Any) -> ResourceDetail:
    data = _require_dict(payload, "resource detail")
    try:
        remote_id = int(data["id"])
        number = int(data["number"])
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeFailure("resource detail id/number missing") from exc
    assignees_raw = data.get("assignees") or []
    if not isinstance(assignees_raw, list):
        raise DecodeFailure("resource detail assignees must be a list")
    try:
        comments = int(data.get("comments") or 0)
    except (TypeError, ValueError):
        comments = 0
    body = data.get("body")
    return ResourceDetail(
        id=remote_id,
        number=number,
        title=str(data.get("title") or ""),
        state=ResourceState.parse(data.get("state")).value,
        merged=data.get("merged") is True,
        body=body if isinstance(body, str) else None,
        user=decode_owner(data.get("user")),
        assignees=tuple(decode_owner(item) for item in assignees_raw),
        html_url=str(data.get("html_url") or ""),
        comments=comments,
        updated_at=normalize_timestamp(data.get("updated_at"), field_name="updated_at"),
    )


def decode_comment(payload: Any) -> Comment:
    data = _require_dict(payload, "comment")
    try:
        comment_id = int(data["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeFailure("comment.id missing") from exc
    return Comment(
        id=comment_id,
        body=str(data.get("body") or ""),
        user=decode_owner(data.get("user")),
        created_at=normalize_timestamp(data.get("created_at"), field_name="created_at"),
        html_url=str(data.get("html_url") or ""),
    )


def decode_comments(payload: Any) -> list[Comment]:
    if not isinstance(payload, list):
        raise DecodeFailure(f"expected list of comments, got {type(payload).__name__}")
    return [decode_comment(item) for item in payload]
