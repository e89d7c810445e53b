from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional, Set

from careconnect.core.errors import DataErrorReason, MutationError, SubscriptionError
from careconnect.core.sync.filters import Filter
from careconnect.core.sync.sources import OnError, OnNext, Record, Unsubscribe


logger = logging.getLogger(__name__)

MUTATION_OPS = ("create", "update", "delete")


@dataclass
class _Listener:
    partition: str
    flt: Optional[Filter]
    on_next: OnNext
    on_error: OnError
    live: bool = True


class MemoryPartitionStore:
    """
    Thread-safe in-process push store (demo backend and tests).

    Every write notifies the listeners of its partition synchronously, in
    the writing thread, before the write returns.
    """

    def __init__(self, known_partitions: Optional[Iterable[str]] = None):
        self._lock = threading.RLock()
        self._docs: Dict[str, Dict[str, Record]] = {}
        self._listeners: List[_Listener] = []
        self._known: Optional[Set[str]] = set(known_partitions) if known_partitions is not None else None
        self._failures: Dict[str, Deque[BaseException]] = {op: deque() for op in MUTATION_OPS}

    # ---------- push source ----------
    def subscribe(self, partition: str, flt: Optional[Filter], on_next: OnNext, on_error: OnError) -> Unsubscribe:
        if not self._is_known(partition):
            on_error(SubscriptionError(DataErrorReason.partition_not_found, partition))
            return lambda: None

        listener = _Listener(partition, flt, on_next, on_error)
        with self._lock:
            self._listeners.append(listener)
            self._deliver_locked(listener)

        def _unsubscribe() -> None:
            with self._lock:
                listener.live = False
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def create(self, partition: str, data: Record) -> Record:
        with self._lock:
            self._check_write("create", partition)
            doc_id = uuid.uuid4().hex
            self._docs.setdefault(partition, {})[doc_id] = _strip_id(data)
            self._notify_locked(partition)
            return self._record_locked(partition, doc_id)

    def update(self, partition: str, record_id: Any, data: Record, *, replace: bool = False) -> Record:
        with self._lock:
            self._check_write("update", partition)
            docs = self._docs.get(partition, {})
            key = str(record_id)
            if key not in docs:
                raise MutationError(DataErrorReason.partition_not_found, partition, "This record no longer exists.", id=key)
            docs[key] = _strip_id(data) if replace else {**docs[key], **_strip_id(data)}
            self._notify_locked(partition)
            return self._record_locked(partition, key)

    def delete(self, partition: str, record_id: Any) -> None:
        with self._lock:
            self._check_write("delete", partition)
            docs = self._docs.get(partition, {})
            key = str(record_id)
            if key not in docs:
                raise MutationError(DataErrorReason.partition_not_found, partition, "This record no longer exists.", id=key)
            del docs[key]
            self._notify_locked(partition)

    # ---------- test / demo hooks ----------
    def seed(self, partition: str, records: Iterable[Record]) -> List[str]:
        """Insert records (keeping their `id` when given) with a single notification."""
        ids: List[str] = []
        with self._lock:
            docs = self._docs.setdefault(partition, {})
            for r in records:
                doc_id = str(r.get("id") or uuid.uuid4().hex)
                docs[doc_id] = _strip_id(r)
                ids.append(doc_id)
            self._notify_locked(partition)
        return ids

    def fail_next(self, op: str, error: BaseException) -> None:
        if op not in MUTATION_OPS:
            raise ValueError(f"unknown op {op!r}")
        with self._lock:
            self._failures[op].append(error)

    def emit_error(self, partition: str, error: SubscriptionError) -> None:
        with self._lock:
            for listener in [x for x in self._listeners if x.partition == partition]:
                try:
                    listener.on_error(error)
                except Exception:  # noqa: BLE001
                    logger.exception("Partition listener failed on error delivery (%s)", partition)

    def snapshot(self, partition: str) -> List[Record]:
        with self._lock:
            return [self._record_locked(partition, k) for k in self._docs.get(partition, {})]

    def listener_count(self, partition: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for x in self._listeners if partition is None or x.partition == partition)

    # ---------- internals ----------
    def _is_known(self, partition: str) -> bool:
        return self._known is None or partition in self._known

    def _check_write(self, op: str, partition: str) -> None:
        if not self._is_known(partition):
            raise MutationError(DataErrorReason.partition_not_found, partition)
        if self._failures[op]:
            raise self._failures[op].popleft()

    def _record_locked(self, partition: str, doc_id: str) -> Record:
        return {**self._docs[partition][doc_id], "id": doc_id}

    def _deliver_locked(self, listener: _Listener) -> None:
        if not listener.live:
            return
        records = [self._record_locked(listener.partition, k) for k in self._docs.get(listener.partition, {})]
        if listener.flt is not None:
            records = listener.flt.apply(records)
        try:
            listener.on_next(records)
        except Exception:  # noqa: BLE001
            logger.exception("Partition listener failed (%s)", listener.partition)

    def _notify_locked(self, partition: str) -> None:
        for listener in [x for x in self._listeners if x.partition == partition]:
            self._deliver_locked(listener)


def _strip_id(data: Record) -> Record:
    return {k: v for k, v in dict(data).items() if k != "id"}
