from __future__ import annotations

from .client import GitHubClient, RemoteFeedClient, comments_url_for

__all__ = ["GitHubClient", "RemoteFeedClient", "comments_url_for"]
