from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional

from careconnect.core.api.client import ApiClient
from careconnect.core.errors import AuthError, AuthErrorReason, DataErrorReason, SubscriptionError
from careconnect.core.sync.filters import Filter
from careconnect.core.sync.sources import OnError, OnNext, Record, Unsubscribe


logger = logging.getLogger(__name__)


@dataclass
class _RestListener:
    partition: str
    flt: Optional[Filter]
    on_next: OnNext
    on_error: OnError
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    cancelled: bool = False
    issued: int = 0
    applied: int = 0


class RestPartitionSource:
    """
    Push-shaped adapter over the request/response API.

    Each listener is fed by background fetches: one on subscribe, one per
    `refetch()` (mutations through this source refetch their partition),
    plus one per poll tick when polling is enabled. Completions older than
    the newest applied one, success or failure, are dropped.
    """

    def __init__(self, api: ApiClient, *, poll_interval_seconds: Optional[float] = None):
        if poll_interval_seconds is not None and poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self.api = api
        self.poll_interval_seconds = poll_interval_seconds
        self._lock = threading.Lock()
        self._listeners: List[_RestListener] = []
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None

    def subscribe(self, partition: str, flt: Optional[Filter], on_next: OnNext, on_error: OnError) -> Unsubscribe:
        listener = _RestListener(partition, flt, on_next, on_error)
        with self._lock:
            self._listeners.append(listener)
            self._ensure_poller_locked()
        self._fetch_async(listener)

        def _unsubscribe() -> None:
            with listener.lock:
                listener.cancelled = True
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def refetch(self, partition: Optional[str] = None) -> int:
        with self._lock:
            targets = [x for x in self._listeners if partition is None or x.partition == partition]
        for listener in targets:
            self._fetch_async(listener)
        return len(targets)

    def create(self, partition: str, data: Record) -> Record:
        created = self.api.create(partition, data)
        self.refetch(partition)
        return created

    def update(self, partition: str, record_id: Any, data: Record, *, replace: bool = False) -> Record:
        if replace:
            updated = self.api.update(partition, record_id, data)
        else:
            updated = self.api.patch(partition, record_id, data)
        self.refetch(partition)
        return updated

    def delete(self, partition: str, record_id: Any) -> None:
        self.api.delete(partition, record_id)
        self.refetch(partition)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def close(self) -> None:
        self._stop.set()
        with self._lock:
            listeners, self._listeners = self._listeners, []
            poller, self._poller = self._poller, None
        for listener in listeners:
            with listener.lock:
                listener.cancelled = True
        if poller is not None and poller is not threading.current_thread():
            poller.join(timeout=2.0)

    # ---------- internals ----------
    def _ensure_poller_locked(self) -> None:
        if self.poll_interval_seconds is None or self._poller is not None or self._stop.is_set():
            return
        self._poller = threading.Thread(target=self._poll_loop, name="rest-source-poller", daemon=True)
        self._poller.start()

    def _poll_loop(self) -> None:
        interval = float(self.poll_interval_seconds or 0)
        while not self._stop.wait(interval):
            self.refetch()

    def _fetch_async(self, listener: _RestListener) -> None:
        with listener.lock:
            if listener.cancelled:
                return
            listener.issued += 1
            generation = listener.issued
        t = threading.Thread(
            target=self._fetch,
            args=(listener, generation),
            name=f"rest-fetch-{listener.partition}",
            daemon=True,
        )
        t.start()

    def _fetch(self, listener: _RestListener, generation: int) -> None:
        try:
            params = listener.flt.to_params() if listener.flt is not None else None
            records = self.api.list(listener.partition, params)
            if listener.flt is not None:
                records = listener.flt.apply(records)
        except SubscriptionError as e:
            self._emit_error(listener, generation, e)
            return
        except AuthError as e:
            reason = DataErrorReason.network_unavailable if e.reason == AuthErrorReason.network_unavailable else DataErrorReason.permission_denied
            self._emit_error(listener, generation, SubscriptionError(reason, listener.partition, e.user_message, auth=e.reason.value))
            return
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected error fetching partition %s", listener.partition)
            self._emit_error(
                listener,
                generation,
                SubscriptionError(DataErrorReason.network_unavailable, listener.partition, error=type(e).__name__),
            )
            return

        with listener.lock:
            if listener.cancelled or generation <= listener.applied:
                logger.debug("Dropping stale fetch of %s (gen %s)", listener.partition, generation)
                return
            listener.applied = generation
            try:
                listener.on_next(records)
            except Exception:  # noqa: BLE001
                logger.exception("Partition listener failed (%s)", listener.partition)

    def _emit_error(self, listener: _RestListener, generation: int, error: SubscriptionError) -> None:
        with listener.lock:
            if listener.cancelled or generation <= listener.applied:
                return
            listener.applied = generation
            try:
                listener.on_error(error)
            except Exception:  # noqa: BLE001
                logger.exception("Partition listener failed on error delivery (%s)", listener.partition)
