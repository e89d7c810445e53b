from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from careconnect.core.errors import ValidationError
from careconnect.core.identity.models import SessionState
from careconnect.core.session.manager import SessionManager
from careconnect.core.sync.filters import OPS, Filter, subscription_key
from careconnect.core.sync.synchronizer import LiveQuerySynchronizer, SubscriptionHandle


logger = logging.getLogger(__name__)

MountKey = Tuple[str, Tuple[Tuple[str, str, str], ...]]


def parse_where(exprs: List[str]) -> Optional[Filter]:
    """
    Parse `field,op,value` query expressions. Values are JSON when they
    parse as JSON, plain strings otherwise; `in` takes `a|b|c`.
    """
    flt: Optional[Filter] = None
    for expr in exprs:
        parts = str(expr).split(",", 2)
        if len(parts) != 3 or parts[1] not in OPS:
            raise ValidationError("Invalid filter.", where=str(expr)[:120])
        field, op, raw = parts
        value: Any = [_scalar(x) for x in raw.split("|")] if op == "in" else _scalar(raw)
        try:
            flt = Filter.where(field, op, value) if flt is None else flt.and_where(field, op, value)
        except ValueError as e:
            raise ValidationError("Invalid filter.", where=str(expr)[:120]) from e
    return flt


def _scalar(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class PortalMounts:
    """
    Subscriptions held on behalf of portal clients, one per (partition, filter).

    Everything is released when the signed-in identity goes away or changes,
    and on shutdown.
    """

    def __init__(self, synchronizer: LiveQuerySynchronizer):
        self.synchronizer = synchronizer
        self._lock = threading.Lock()
        self._handles: Dict[MountKey, SubscriptionHandle] = {}
        self._owner: Optional[str] = None

    def mount(self, partition: str, flt: Optional[Filter] = None) -> SubscriptionHandle:
        key = subscription_key(partition, flt)
        with self._lock:
            handle = self._handles.get(key)
            if handle is not None and handle.active:
                return handle
            handle = self.synchronizer.subscribe(partition, flt)
            self._handles[key] = handle
        logger.debug("Portal mounted %s", partition)
        return handle

    def release(self, partition: str, flt: Optional[Filter] = None, *, all_filters: bool = False) -> int:
        key = subscription_key(partition, flt)
        with self._lock:
            if all_filters:
                keys = [k for k in self._handles if k[0] == partition]
            else:
                keys = [key] if key in self._handles else []
            handles = [self._handles.pop(k) for k in keys]
        for handle in handles:
            self.synchronizer.unsubscribe(handle)
        return len(handles)

    def release_all(self) -> int:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            self.synchronizer.unsubscribe(handle)
        if handles:
            logger.info("Released %s portal subscription(s).", len(handles))
        return len(handles)

    def count(self) -> int:
        with self._lock:
            return len(self._handles)

    def bind(self, session: SessionManager) -> Callable[[], None]:
        def _on_session(state: SessionState) -> None:
            owner = str(state.identity.id) if state.identity is not None else None
            with self._lock:
                changed = owner != self._owner
                self._owner = owner
            if changed or owner is None:
                self.release_all()

        return session.subscribe(_on_session)
