from __future__ import annotations

import json
import os
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from careconnect.core.errors import (
    AuthError,
    AuthErrorReason,
    CareConnectError,
    ConfigError,
    DataErrorReason,
    MutationError,
    SubscriptionError,
)
from careconnect.core.events import redact


@dataclass
class ErrorReporterConfig:
    include_tracebacks: bool = False


class ErrorReporter:
    """
    Writes normalized errors to logs/errors.jsonl (safe context only).
    """

    def __init__(self, *, path: str = os.path.join("logs", "errors.jsonl"), cfg: Optional[ErrorReporterConfig] = None):
        self.path = path
        self.cfg = cfg or ErrorReporterConfig()
        self._lock = threading.Lock()
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def report_exception(self, exc: BaseException, *, trace_id: str, subsystem: str, context: Optional[Dict[str, Any]] = None) -> CareConnectError:
        err = normalize_exception(exc, subsystem=subsystem, context=context or {})
        self.write_error(err, trace_id=trace_id, subsystem=subsystem, internal_exc=exc)
        return err

    def write_error(self, err: CareConnectError, *, trace_id: str, subsystem: str, internal_exc: Optional[BaseException] = None) -> None:
        entry: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "subsystem": subsystem,
            "error_code": err.code,
            "severity": err.severity.value,
            "recoverable": bool(err.recoverable),
            "user_message": err.user_message,
            "safe_context": redact(err.context or {}),
        }
        if self.cfg.include_tracebacks and internal_exc is not None:
            entry["traceback"] = "".join(traceback.format_exception(type(internal_exc), internal_exc, internal_exc.__traceback__, limit=30))
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def tail(self, n: int = 20) -> list[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
            return [json.loads(x) for x in lines[-max(1, int(n)) :]]
        except (OSError, json.JSONDecodeError):
            return []


def normalize_exception(exc: BaseException, *, subsystem: str, context: Dict[str, Any]) -> CareConnectError:
    if isinstance(exc, CareConnectError):
        return exc

    msg = str(exc)
    ctx = dict(context or {})
    offline = isinstance(exc, (requests.ConnectionError, requests.Timeout))

    if subsystem == "config":
        return ConfigError("Configuration error.", error=msg, **ctx)
    if subsystem in {"session", "identity"} and offline:
        return AuthError(AuthErrorReason.network_unavailable, error=msg, **ctx)
    if subsystem == "sync" and offline:
        return SubscriptionError(DataErrorReason.network_unavailable, partition=str(ctx.pop("partition", "")), error=msg, **ctx)
    if subsystem == "api" and offline:
        return MutationError(DataErrorReason.network_unavailable, partition=str(ctx.pop("partition", "")), error=msg, **ctx)

    return CareConnectError(code="unknown_error", user_message="Something went wrong.", context=ctx)
