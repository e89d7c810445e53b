from __future__ import annotations

import json
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from careconnect.core.events.audit import redact


class EventSeverity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SourceSubsystem(str, Enum):
    session = "session"
    guard = "guard"
    sync = "sync"
    api = "api"
    storage = "storage"
    web = "web"
    notify = "notify"


class BaseEvent(BaseModel):
    """
    One bus message. `event_type` is dotted (`session.login`,
    `notify.error`, `sync.error`) so subscribers can match on a prefix.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_type: str = Field(min_length=1, max_length=128)
    source_subsystem: SourceSubsystem
    severity: EventSeverity = EventSeverity.INFO
    payload: Dict[str, Any] = Field(default_factory=dict)
    trace_id: Optional[str] = None
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=time.time)

    @model_validator(mode="before")
    @classmethod
    def _clean(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["event_type"] = str(data.get("event_type") or "").strip()
        payload = data.get("payload")
        if payload is not None:
            if not isinstance(payload, dict):
                raise ValueError("payload must be an object")
            payload = redact(payload)
            try:
                json.dumps(payload, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                raise ValueError("payload must be JSON-serializable") from e
            data["payload"] = payload
        return data
