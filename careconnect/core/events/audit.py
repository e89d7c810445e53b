from __future__ import annotations

"""
Audit trail for session activity, written as one JSON object per line.

Anything that looks like a credential is masked before it reaches disk or
the event bus: keys containing a sensitive fragment ("password", "token",
...) as well as the bare JWT field names the identity API uses.
"""

import json
import os
import threading
import time
from typing import Any, Dict, List, Optional

MASK = "***REDACTED***"

SENSITIVE_FRAGMENTS = ("password", "token", "secret", "authorization", "api_key")
SENSITIVE_EXACT = frozenset({"access", "refresh", "key"})


def is_sensitive(key: Any) -> bool:
    k = str(key).lower()
    return k in SENSITIVE_EXACT or any(frag in k for frag in SENSITIVE_FRAGMENTS)


def redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: (MASK if is_sensitive(k) else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj


class EventLogger:
    def __init__(self, path: str = os.path.join("logs", "events.jsonl")):
        self.path = path
        self._lock = threading.Lock()

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None, *, actor: Optional[str] = None) -> None:
        record: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "event": event_type,
            "details": redact(details or {}),
        }
        if actor:
            record["actor"] = actor
        line = json.dumps(record, ensure_ascii=False)
        with self._lock:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def record(self, event: Any) -> None:
        """Event-bus handler: appends a published BaseEvent to the trail."""
        details = dict(event.payload)
        details["severity"] = event.severity.value
        self.log(event.trace_id or event.event_id, event.event_type, details)

    def tail(self, n: int = 20) -> List[Dict[str, Any]]:
        """Last `n` parseable records, oldest first."""
        with self._lock:
            if not os.path.exists(self.path):
                return []
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        if n <= 0:
            return []
        out: List[Dict[str, Any]] = []
        for line in lines[-int(n):]:
            try:
                out.append(json.loads(line))
            except ValueError:
                continue
        return out
