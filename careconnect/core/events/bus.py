from __future__ import annotations

import collections
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from careconnect.core.events.models import BaseEvent


logger = logging.getLogger(__name__)

EventHandler = Callable[[BaseEvent], None]


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "DROP_OLDEST"
    DROP_NEWEST = "DROP_NEWEST"


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_queue_size: int = Field(default=1000, ge=10, le=100_000)
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    keep_recent: int = Field(default=200, ge=10, le=10_000)


@dataclass
class _Subscriber:
    pattern: str
    handler: EventHandler
    q: "queue.Queue[Optional[BaseEvent]]" = field(default_factory=queue.Queue)
    thread: Optional[threading.Thread] = None
    pending: int = 0


class EventBus:
    """
    In-process event bus for notifications and audit events.

    - publish never blocks; a full subscriber queue drops per policy
    - each subscriber has its own worker thread, so it sees events in publish order
    - handler failures are logged and counted, never propagated to publishers
    """

    def __init__(self, *, cfg: Optional[EventBusConfig] = None):
        self.cfg = cfg or EventBusConfig()
        self._lock = threading.Lock()
        self._subs: List[_Subscriber] = []
        self._recent: Deque[Dict[str, Any]] = collections.deque(maxlen=int(self.cfg.keep_recent))
        self._counters: Dict[str, int] = {"published": 0, "delivered": 0, "dropped": 0, "handler_errors": 0}
        self._closed = False

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        """
        pattern supports an exact type ("session.login"), a prefix ("notify.*") or "*".
        Returns a callable that removes the subscription.
        """
        if not callable(handler):
            raise ValueError("handler must be callable")
        sub = _Subscriber(pattern=str(pattern), handler=handler)
        sub.thread = threading.Thread(target=self._run, args=(sub,), name=f"eventbus-{pattern}", daemon=True)
        with self._lock:
            if self._closed:
                raise RuntimeError("event bus is shut down")
            self._subs.append(sub)
        sub.thread.start()
        return lambda: self._remove(sub)

    def publish(self, ev: BaseEvent) -> bool:
        if not self.cfg.enabled:
            return False
        with self._lock:
            if self._closed:
                return False
            self._counters["published"] += 1
            self._recent.appendleft(ev.model_dump())
            targets = [s for s in self._subs if _match(s.pattern, ev.event_type)]
            for s in targets:
                if s.pending >= int(self.cfg.max_queue_size):
                    self._counters["dropped"] += 1
                    if self.cfg.overflow_policy == OverflowPolicy.DROP_NEWEST:
                        continue
                    try:
                        s.q.get_nowait()
                        s.pending -= 1
                    except queue.Empty:
                        pass
                s.q.put_nowait(ev)
                s.pending += 1
        return True

    def recent(self, n: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[: max(1, int(n))]

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            out: Dict[str, Any] = dict(self._counters)
            out["subscribers"] = len(self._subs)
            out["queue_depth"] = sum(s.pending for s in self._subs)
        return out

    def shutdown(self, grace_seconds: float = 1.0) -> None:
        with self._lock:
            self._closed = True
            subs = list(self._subs)
            self._subs = []
        for s in subs:
            s.q.put(None)
        for s in subs:
            if s.thread is not None:
                s.thread.join(timeout=max(0.1, float(grace_seconds)))

    # ---- internals ----
    def _remove(self, sub: _Subscriber) -> None:
        with self._lock:
            if sub not in self._subs:
                return
            self._subs.remove(sub)
        sub.q.put(None)

    def _run(self, sub: _Subscriber) -> None:
        while True:
            ev = sub.q.get()
            if ev is None:
                return
            with self._lock:
                sub.pending = max(0, sub.pending - 1)
            try:
                sub.handler(ev)
                with self._lock:
                    self._counters["delivered"] += 1
            except Exception:  # noqa: BLE001
                with self._lock:
                    self._counters["handler_errors"] += 1
                logger.exception("Event handler failed for %s", ev.event_type)


def _match(pattern: str, event_type: str) -> bool:
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return str(event_type).startswith(pattern[:-1])
    return pattern == event_type
