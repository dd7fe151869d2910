from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

from .models import MergedThread, ResourceDetail, ResourceState


@dataclass(frozen=True)
class FilterState:
    repos: frozenset[str] = field(default_factory=frozenset)
    types: frozenset[str] = field(default_factory=frozenset)
    unread_only: bool = True
    open_only: bool = False

    def toggle_repo(self, repo: str) -> FilterState:
        return replace(self, repos=toggle(self.repos, repo))

    def toggle_type(self, subject_type: str) -> FilterState:
        return replace(self, types=toggle(self.types, subject_type))


def toggle(values: frozenset[str], value: str) -> frozenset[str]:
    if value in values:
        return values - {value}
    return values | {value}


def _cached_detail(
    row: MergedThread, details: Mapping[str, ResourceDetail] | None
) -> ResourceDetail | None:
    if details is not None and row.thread.subject_url:
        found = details.get(row.thread.subject_url)
        if found is not None:
            return found
    return row.detail


def is_visible(
    row: MergedThread,
    filters: FilterState,
    *,
    keep_visible: frozenset[str] | set[str] = frozenset(),
    details: Mapping[str, ResourceDetail] | None = None,
) -> bool:
    if filters.repos and row.thread.repo_full_name not in filters.repos:
        return False
    if filters.types and row.thread.subject_type.value not in filters.types:
        return False
    # The thread being viewed stays listed after it flips to read.
    if filters.unread_only and not row.unread and row.id not in keep_visible:
        return False
    if filters.open_only:
        detail = _cached_detail(row, details)
        # Unknown state is not treated as closed.
        if detail is not None and detail.state != ResourceState.OPEN.value:
            return False
    return True


def apply_filters(
    rows: Iterable[MergedThread],
    filters: FilterState,
    *,
    keep_visible: frozenset[str] | set[str] = frozenset(),
    details: Mapping[str, ResourceDetail] | None = None,
) -> list[MergedThread]:
    visible = [
        row
        for row in rows
        if is_visible(row, filters, keep_visible=keep_visible, details=details)
    ]
    visible.sort(key=lambda row: row.updated_at, reverse=True)
    return visible


def available_repos(rows: Iterable[MergedThread]) -> list[str]:
    return sorted({row.thread.repo_full_name for row in rows})


def available_types(rows: Iterable[MergedThread]) -> list[str]:
    return sorted({row.thread.subject_type.value for row in rows})


def count_by_repo(rows: Iterable[MergedThread]) -> dict[str, int]:
    return dict(Counter(row.thread.repo_full_name for row in rows))


def count_by_type(rows: Iterable[MergedThread]) -> dict[str, int]:
    return dict(Counter(row.thread.subject_type.value for row in rows))
