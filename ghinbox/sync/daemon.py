from __future__ import annotations

import datetime as dt
import logging
import threading
import traceback
from collections.abc import Callable
from pathlib import Path

from ..models import SyncResult
from .engine import SyncEngine

logger = logging.getLogger(__name__)

SYNC_LOG_PATH = Path.home() / ".ghinbox" / "sync.log"


def run_sync_loop(
    engine: SyncEngine,
    interval_s: int,
    *,
    stop_event: threading.Event | None = None,
    on_result: Callable[[SyncResult], None] | None = None,
    log_path: Path | None = None,
) -> None:
    stop = stop_event or threading.Event()
    while True:
        try:
            result = engine.sync()
            if on_result is not None:
                on_result(result)
        except Exception as exc:
            logger.exception("sync loop: tick failed", exc_info=exc)
            _append_sync_log(traceback.format_exc(), log_path or SYNC_LOG_PATH)
        if stop.wait(max(1, interval_s)):
            return


def _append_sync_log(message: str, log_path: Path) -> None:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        ts = dt.datetime.now(dt.UTC).isoformat()
        with log_path.open("a", encoding="utf-8", errors="ignore") as handle:
            handle.write(f"\n[{ts}]\n{message}\n")
    except OSError:
        return
