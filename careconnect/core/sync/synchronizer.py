from __future__ import annotations

"""
Live query synchronizer: mirrors remote partitions into subscription handles.

A handle is acquired with `subscribe()` and released with `unsubscribe()`
(or `handle.close()`, or by leaving `scope()`). Releasing marks the handle
dead under its lock before the remote listener is cancelled, so a delivery
that arrives afterwards is discarded instead of written into it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from careconnect.core.errors import CareConnectError, DataErrorReason, MutationError, SubscriptionError
from careconnect.core.events import BaseEvent, EventBus, EventSeverity, SourceSubsystem
from careconnect.core.sync.filters import Filter, tag_records
from careconnect.core.sync.sources import PartitionSource, Record, Unsubscribe


logger = logging.getLogger(__name__)


class SubscriptionSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    partition: str
    filter: List[Dict[str, Any]] = Field(default_factory=list)
    items: List[Dict[str, Any]] = Field(default_factory=list)
    loading: bool = True
    error: Optional[Dict[str, Any]] = None
    active: bool = True
    version: int = 0


HandleListener = Callable[[SubscriptionSnapshot], None]


class SubscriptionHandle:
    def __init__(self, owner: "LiveQuerySynchronizer", partition: str, flt: Optional[Filter]):
        self._owner = owner
        self.partition = partition
        self.filter = flt
        self._lock = threading.RLock()
        self._cond = threading.Condition(self._lock)
        self._items: List[Record] = []
        self._loading = True
        self._error: Optional[SubscriptionError] = None
        self._active = True
        self._version = 0
        self._listeners: List[HandleListener] = []
        self._release: Optional[Unsubscribe] = None

    # ---------- reads ----------
    @property
    def items(self) -> List[Record]:
        with self._lock:
            return [dict(x) for x in self._items]

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    @property
    def error(self) -> Optional[SubscriptionError]:
        with self._lock:
            return self._error

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def snapshot(self) -> SubscriptionSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def wait_for_version(self, version: int, timeout: Optional[float] = None) -> bool:
        """Block until at least `version` updates were applied (or the handle is released)."""
        with self._cond:
            return self._cond.wait_for(lambda: self._version >= version or not self._active, timeout)

    def on_change(self, listener: HandleListener) -> Callable[[], None]:
        if not callable(listener):
            raise ValueError("listener must be callable")
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    # ---------- control ----------
    def refresh(self) -> bool:
        return self._owner.refresh(self)

    def close(self) -> None:
        self._owner.unsubscribe(self)

    def __enter__(self) -> "SubscriptionHandle":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # ---------- source callbacks ----------
    def _deliver(self, records: List[Record]) -> bool:
        with self._lock:
            if not self._active:
                return False
            self._items = tag_records(records)
            self._loading = False
            self._error = None
            self._applied_locked()
            return True

    def _fail(self, error: SubscriptionError) -> bool:
        with self._lock:
            if not self._active:
                return False
            self._error = error
            self._loading = False
            self._applied_locked()
            return True

    def _attach(self, release: Unsubscribe) -> bool:
        with self._lock:
            if not self._active:
                return False
            self._release = release
            return True

    def _kill(self) -> Optional[Unsubscribe]:
        with self._lock:
            if not self._active:
                return None
            self._active = False
            self._listeners.clear()
            release, self._release = self._release, None
            self._cond.notify_all()
            return release or (lambda: None)

    def _applied_locked(self) -> None:
        self._version += 1
        self._cond.notify_all()
        snap = self._snapshot_locked()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:  # noqa: BLE001
                logger.exception("Subscription listener failed (%s)", self.partition)

    def _snapshot_locked(self) -> SubscriptionSnapshot:
        return SubscriptionSnapshot(
            partition=self.partition,
            filter=self.filter.describe() if self.filter is not None else [],
            items=[dict(x) for x in self._items],
            loading=self._loading,
            error=self._error.to_dict() if self._error is not None else None,
            active=self._active,
            version=self._version,
        )


class LiveQuerySynchronizer:
    def __init__(self, source: PartitionSource, *, bus: Optional[EventBus] = None):
        self.source = source
        self.bus = bus
        self._lock = threading.Lock()
        self._handles: Set[SubscriptionHandle] = set()

    def subscribe(self, partition: str, flt: Optional[Filter] = None) -> SubscriptionHandle:
        """Acquire a live handle. Never raises; setup failures land in `handle.error`."""
        handle = SubscriptionHandle(self, str(partition), flt)
        with self._lock:
            self._handles.add(handle)
        logger.debug("Subscribing to %s %s", handle.partition, flt.describe() if flt is not None else "")
        try:
            release = self.source.subscribe(
                handle.partition,
                flt,
                handle._deliver,
                lambda err: self._on_error(handle, err),
            )
        except Exception as e:  # noqa: BLE001
            self._on_error(handle, e)
            return handle
        if not handle._attach(release):
            # released while the listener was being attached
            self._release(handle.partition, release)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        release = handle._kill()
        with self._lock:
            self._handles.discard(handle)
        if release is None:
            return
        self._release(handle.partition, release)
        logger.debug("Unsubscribed from %s", handle.partition)

    @contextmanager
    def scope(self, partition: str, flt: Optional[Filter] = None) -> Iterator[SubscriptionHandle]:
        handle = self.subscribe(partition, flt)
        try:
            yield handle
        finally:
            self.unsubscribe(handle)

    def refresh(self, handle: SubscriptionHandle) -> bool:
        """Manual re-fetch for request/response sources; push sources update on their own."""
        if not handle.active:
            return False
        refetch = getattr(self.source, "refetch", None)
        if not callable(refetch):
            return False
        refetch(handle.partition)
        return True

    def active_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def close(self) -> None:
        with self._lock:
            handles = list(self._handles)
        for handle in handles:
            self.unsubscribe(handle)

    # ---------- mutations ----------
    def create(self, partition: str, data: Record) -> Record:
        return self._mutate("create", partition, lambda: self.source.create(partition, data))

    def update(self, partition: str, record_id: Any, data: Record, *, replace: bool = False) -> Record:
        return self._mutate("update", partition, lambda: self.source.update(partition, record_id, data, replace=replace))

    def delete(self, partition: str, record_id: Any) -> None:
        self._mutate("delete", partition, lambda: self.source.delete(partition, record_id))

    def _mutate(self, op: str, partition: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except CareConnectError as e:
            logger.info("Mutation %s on %s failed: %s", op, partition, e.code)
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected error during %s on %s", op, partition)
            raise MutationError(DataErrorReason.network_unavailable, partition, error=type(e).__name__) from e

    # ---------- internals ----------
    def _on_error(self, handle: SubscriptionHandle, err: BaseException) -> None:
        error = _as_subscription_error(err, handle.partition)
        if not handle._fail(error):
            return
        logger.info("Subscription %s failed: %s", handle.partition, error.code)
        if self.bus is not None:
            self.bus.publish(
                BaseEvent(
                    event_type="sync.error",
                    source_subsystem=SourceSubsystem.sync,
                    severity=EventSeverity.WARN,
                    payload={"partition": handle.partition, "code": error.code},
                )
            )

    @staticmethod
    def _release(partition: str, release: Unsubscribe) -> None:
        try:
            release()
        except Exception:  # noqa: BLE001
            logger.exception("Releasing the %s listener failed", partition)


def _as_subscription_error(err: BaseException, partition: str) -> SubscriptionError:
    if isinstance(err, SubscriptionError):
        return err
    if isinstance(err, CareConnectError):
        return SubscriptionError(DataErrorReason.network_unavailable, partition, err.user_message, cause=err.code)
    return SubscriptionError(DataErrorReason.network_unavailable, partition, error=type(err).__name__)
