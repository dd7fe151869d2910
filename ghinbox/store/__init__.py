from __future__ import annotations

from ._store import NotificationStore

__all__ = ["NotificationStore"]
