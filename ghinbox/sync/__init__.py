from __future__ import annotations

from .engine import SyncEngine

__all__ = ["SyncEngine"]
