from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import make_detail_payload, make_thread_payload
from ghinbox.credentials import EnvCredentialProvider, StaticCredentialProvider
from ghinbox.errors import (
    ApiError,
    DecodeFailure,
    InvalidURLError,
    NetworkFailure,
    NoCredentialError,
)
from ghinbox.remote import GitHubClient, comments_url_for, http_client


class _Recorder:
    def __init__(self, responses: list[tuple[int, Any]]) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def __call__(self, method, url, *, headers=None, timeout_s=10.0):
        self.requests.append({"method": method, "url": url, "headers": headers or {}})
        return self.responses.pop(0)


def _client(**kwargs) -> GitHubClient:
    return GitHubClient(StaticCredentialProvider("tok-123"), **kwargs)


def test_missing_token_raises_before_any_request(monkeypatch) -> None:
    recorder = _Recorder([])
    monkeypatch.setattr(http_client, "request_json", recorder)
    client = GitHubClient(EnvCredentialProvider())

    assert client.has_credential() is False
    with pytest.raises(NoCredentialError):
        client.list_notifications()
    assert recorder.requests == []


def test_env_token_is_read_on_every_call(monkeypatch) -> None:
    provider = EnvCredentialProvider()
    assert provider.get_token() is None
    monkeypatch.setenv("GITHUB_TOKEN", "from-github")
    assert provider.get_token() == "from-github"
    monkeypatch.setenv("GHINBOX_TOKEN", " preferred ")
    assert provider.get_token() == "preferred"


def test_list_notifications_sends_headers_and_query(monkeypatch) -> None:
    recorder = _Recorder([(200, [make_thread_payload("T1")])])
    monkeypatch.setattr(http_client, "request_json", recorder)

    threads = _client().list_notifications(since="2024-01-01T00:00:00Z")

    assert [thread.id for thread in threads] == ["T1"]
    [request] = recorder.requests
    assert request["method"] == "GET"
    parsed = urlparse(request["url"])
    assert parsed.netloc == "api.github.com"
    assert parsed.path == "/notifications"
    query = parse_qs(parsed.query)
    assert query["all"] == ["true"]
    assert query["since"] == ["2024-01-01T00:00:00Z"]
    assert query["per_page"] == ["50"]
    headers = request["headers"]
    assert headers["Authorization"] == "Bearer tok-123"
    assert headers["Accept"] == "application/vnd.github+json"
    assert headers["X-GitHub-Api-Version"] == "2022-11-28"
    assert headers["User-Agent"].startswith("ghinbox/")


def test_list_notifications_omits_since_on_first_sync(monkeypatch) -> None:
    recorder = _Recorder([(200, [])])
    monkeypatch.setattr(http_client, "request_json", recorder)

    assert _client().list_notifications() == []
    assert "since" not in parse_qs(urlparse(recorder.requests[0]["url"]).query)


def test_list_notifications_follows_full_pages(monkeypatch) -> None:
    recorder = _Recorder(
        [
            (200, [make_thread_payload("T1", number=1), make_thread_payload("T2", number=2)]),
            (200, [make_thread_payload("T3", number=3)]),
        ]
    )
    monkeypatch.setattr(http_client, "request_json", recorder)

    threads = _client(per_page=2).list_notifications()

    assert [thread.id for thread in threads] == ["T1", "T2", "T3"]
    pages = [parse_qs(urlparse(r["url"]).query)["page"] for r in recorder.requests]
    assert pages == [["1"], ["2"]]


def test_list_notifications_stops_at_max_pages(monkeypatch) -> None:
    full_page = [make_thread_payload("T1", number=1)]
    recorder = _Recorder([(200, full_page), (200, full_page), (200, full_page)])
    monkeypatch.setattr(http_client, "request_json", recorder)

    _client(per_page=1, max_pages=2).list_notifications()

    assert len(recorder.requests) == 2


def test_non_success_status_raises_api_error(monkeypatch) -> None:
    monkeypatch.setattr(
        http_client, "request_json", _Recorder([(401, {"message": "Bad credentials"})])
    )

    with pytest.raises(ApiError) as excinfo:
        _client().list_notifications()

    assert excinfo.value.status == 401
    assert excinfo.value.detail == "Bad credentials"
    assert "401" in str(excinfo.value)


def test_transport_errors_become_network_failure(monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(http_client, "request_json", _boom)

    with pytest.raises(NetworkFailure, match="refused"):
        _client().fetch_detail("https://api.github.com/repos/acme/widgets/issues/42")


def test_invalid_url_is_rejected() -> None:
    with pytest.raises(InvalidURLError):
        _client().fetch_detail("not a url")


def test_unexpected_body_shape_raises_decode_failure(monkeypatch) -> None:
    monkeypatch.setattr(http_client, "request_json", _Recorder([(200, [make_detail_payload()])]))

    with pytest.raises(DecodeFailure):
        _client().fetch_detail("https://api.github.com/repos/acme/widgets/issues/42")


def test_fetch_detail_and_comments(monkeypatch) -> None:
    recorder = _Recorder(
        [
            (200, make_detail_payload(42, title="Bug")),
            (
                200,
                [
                    {
                        "id": 1,
                        "body": "+1",
                        "user": {"login": "hubot"},
                        "created_at": "2024-01-02T00:00:00Z",
                    }
                ],
            ),
        ]
    )
    monkeypatch.setattr(http_client, "request_json", recorder)
    client = _client()
    url = "https://api.github.com/repos/acme/widgets/issues/42"

    detail = client.fetch_detail(url)
    comments = client.fetch_comments(comments_url_for(url))

    assert detail.title == "Bug"
    assert [comment.body for comment in comments] == ["+1"]
    assert recorder.requests[1]["url"] == url + "/comments"


def test_mark_thread_done_expects_no_content(monkeypatch) -> None:
    recorder = _Recorder([(204, None), (200, {})])
    monkeypatch.setattr(http_client, "request_json", recorder)
    client = _client()

    client.mark_thread_done("123")
    with pytest.raises(ApiError):
        client.mark_thread_done("123")

    assert recorder.requests[0]["method"] == "DELETE"
    assert recorder.requests[0]["url"] == "https://api.github.com/notifications/threads/123"


def test_mark_thread_read_expects_reset_content(monkeypatch) -> None:
    recorder = _Recorder([(205, None)])
    monkeypatch.setattr(http_client, "request_json", recorder)

    _client(api_base_url="github.example.com/api/v3").mark_thread_read("9")

    [request] = recorder.requests
    assert request["method"] == "PATCH"
    assert request["url"] == "https://github.example.com/api/v3/notifications/threads/9"
