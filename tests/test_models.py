from __future__ import annotations

import pytest

from conftest import make_detail_payload, make_thread_payload
from ghinbox.errors import DecodeFailure, NoCredentialError
from ghinbox.models import (
    DetailSnapshot,
    LocalOverlayState,
    MergedThread,
    Owner,
    Reason,
    ResourceState,
    ResourceType,
    SubjectType,
    SyncResult,
    decode_comments,
    decode_detail,
    decode_thread,
    decode_threads,
    decode_stored_state,
    encode_stored_state,
    resource_api_url,
    subject_number_from_url,
)


def test_subject_type_unknown_values_fall_back_to_other() -> None:
    assert SubjectType.parse("PullRequest") is SubjectType.PULL_REQUEST
    assert SubjectType.parse("CheckSuite") is SubjectType.OTHER
    assert SubjectType.parse(None) is SubjectType.OTHER


def test_reason_parse_is_case_insensitive_with_fallback() -> None:
    assert Reason.parse("review_requested") is Reason.REVIEW_REQUESTED
    assert Reason.parse("MENTION") is Reason.MENTION
    assert Reason.parse("approval_requested") is Reason.OTHER


def test_subject_number_from_url() -> None:
    assert subject_number_from_url("https://api.github.com/repos/acme/widgets/issues/42") == 42
    assert subject_number_from_url("https://api.github.com/repos/acme/widgets/pulls/7/") == 7
    commit_url = "https://api.github.com/repos/acme/widgets/commits/abc123"
    assert subject_number_from_url(commit_url) is None
    assert subject_number_from_url(None) is None


def test_stored_state_collapses_merged_and_expands_back() -> None:
    assert encode_stored_state("closed", True) == "merged"
    assert encode_stored_state("closed", False) == "closed"
    assert encode_stored_state("open", False) == "open"
    assert decode_stored_state("merged") == ("closed", True)
    assert decode_stored_state("open") == ("open", False)
    assert decode_stored_state("closed") == ("closed", False)


def test_snapshot_to_detail_reports_merged_as_closed() -> None:
    snapshot = DetailSnapshot(
        repo_full_name="acme/widgets",
        number=7,
        type=ResourceType.PULL_REQUEST,
        state=ResourceState.MERGED,
        title="Add gears",
        author=Owner(login="octocat"),
        assignees=(),
        updated_at="2024-01-02T00:00:00Z",
    )
    detail = snapshot.to_detail()
    assert detail.state == "closed"
    assert detail.merged is True
    assert detail.html_url == "https://github.com/acme/widgets/pull/7"


def test_decode_thread_reads_subject_and_normalizes_timestamp() -> None:
    payload = make_thread_payload(updated_at="2024-01-01T02:00:00+02:00", reason="assign")
    thread = decode_thread(payload)
    assert thread.id == "T1"
    assert thread.repo_full_name == "acme/widgets"
    assert thread.repository.owner.login == "acme"
    assert thread.subject_type is SubjectType.ISSUE
    assert thread.subject_id == 42
    assert thread.reason is Reason.ASSIGN
    assert thread.updated_at == "2024-01-01T00:00:00Z"
    assert thread.wants_detail is True


def test_decode_thread_without_subject_url_needs_no_detail() -> None:
    thread = decode_thread(make_thread_payload(subject_type="Release", number=None))
    assert thread.subject_url is None
    assert thread.subject_id is None
    assert thread.wants_detail is False


def test_decode_thread_rejects_missing_fields() -> None:
    payload = make_thread_payload()
    del payload["updated_at"]
    with pytest.raises(DecodeFailure):
        decode_thread(payload)

    payload = make_thread_payload()
    payload["repository"] = "acme/widgets"
    with pytest.raises(DecodeFailure):
        decode_thread(payload)


def test_decode_threads_requires_a_list() -> None:
    with pytest.raises(DecodeFailure):
        decode_threads({"message": "Bad credentials"})


def test_decode_detail_merged_pull_request() -> None:
    detail = decode_detail(make_detail_payload(7, state="closed", merged=True, title="Add gears"))
    assert detail.number == 7
    assert detail.state == "closed"
    assert detail.merged is True
    assert detail.stored_state == "merged"
    assert detail.user.login == "octocat"
    assert [owner.login for owner in detail.assignees] == ["hubot"]


def test_decode_detail_unknown_state() -> None:
    detail = decode_detail(make_detail_payload(state="draft"))
    assert detail.state == "unknown"
    assert detail.is_open is False


def test_decode_comments() -> None:
    comments = decode_comments(
        [
            {
                "id": 1,
                "body": "Looks good",
                "user": {"login": "hubot"},
                "created_at": "2024-01-03T10:00:00Z",
            }
        ]
    )
    assert comments[0].user.login == "hubot"
    assert comments[0].created_at == "2024-01-03T10:00:00Z"


def test_resource_api_url_uses_pulls_segment_for_pull_requests() -> None:
    url = resource_api_url("https://api.github.com/", "acme/widgets", ResourceType.PULL_REQUEST, 7)
    assert url == "https://api.github.com/repos/acme/widgets/pulls/7"


def test_merged_thread_unread_and_title() -> None:
    thread = decode_thread(make_thread_payload(title="Subject"))
    fresh = MergedThread(thread=thread, overlay=LocalOverlayState(thread_id="T1"))
    read = MergedThread(thread=thread, overlay=LocalOverlayState(thread_id="T1", is_read=True))
    done = MergedThread(thread=thread, overlay=LocalOverlayState(thread_id="T1", is_done=True))
    assert fresh.unread is True
    assert read.unread is False
    assert done.unread is False
    assert fresh.title == "Subject"
    assert fresh.state is None

    detailed = MergedThread(
        thread=thread,
        overlay=LocalOverlayState(thread_id="T1"),
        detail=decode_detail(make_detail_payload(title="Bug")),
    )
    assert detailed.title == "Bug"
    assert detailed.state == "open"
    assert detailed.to_dict()["title"] == "Bug"


def test_sync_result_flags_missing_credential() -> None:
    assert SyncResult().ok is True
    result = SyncResult(error=NoCredentialError())
    assert result.ok is False
    assert result.needs_credential is True
