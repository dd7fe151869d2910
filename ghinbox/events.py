from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SYNC_STARTED = "sync_started"
SYNC_FINISHED = "sync_finished"
STATE_CHANGED = "state_changed"


@dataclass(frozen=True)
class Event:
    kind: str
    payload: Any = None


Listener = Callable[[Event], None]


class EventChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, kind: str, payload: Any = None) -> None:
        event = Event(kind=kind, payload=payload)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:
                logger.warning("events: listener failed for %s", kind, exc_info=exc)
