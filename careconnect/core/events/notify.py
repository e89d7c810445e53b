from __future__ import annotations

import collections
import threading
import time
from typing import Any, Deque, Dict, List, Optional

from careconnect.core.events.bus import EventBus
from careconnect.core.events.models import BaseEvent, EventSeverity, SourceSubsystem


_SEVERITY = {
    "success": EventSeverity.INFO,
    "info": EventSeverity.INFO,
    "error": EventSeverity.ERROR,
}


class Notifier:
    """
    User-visible notifications ("toasts").

    Every notification is kept in a bounded recent list and, when a bus is
    attached, published as a `notify.<level>` event.
    """

    def __init__(self, *, bus: Optional[EventBus] = None, keep: int = 50):
        self.bus = bus
        self._lock = threading.Lock()
        self._recent: Deque[Dict[str, Any]] = collections.deque(maxlen=max(1, int(keep)))

    def success(self, message: str, **context: Any) -> None:
        self._emit("success", message, context)

    def info(self, message: str, **context: Any) -> None:
        self._emit("info", message, context)

    def error(self, message: str, **context: Any) -> None:
        self._emit("error", message, context)

    def recent(self, n: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[: max(1, int(n))]

    def clear(self) -> None:
        with self._lock:
            self._recent.clear()

    def _emit(self, level: str, message: str, context: Dict[str, Any]) -> None:
        entry = {"level": level, "message": str(message), "ts": time.time()}
        with self._lock:
            self._recent.appendleft(entry)
        if self.bus is None:
            return
        self.bus.publish(
            BaseEvent(
                event_type=f"notify.{level}",
                source_subsystem=SourceSubsystem.notify,
                severity=_SEVERITY[level],
                payload={"message": entry["message"], **context},
            )
        )
