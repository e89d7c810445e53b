from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, List, Optional

import requests


def wait_until(pred: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if pred():
            return True
        time.sleep(interval)
    return pred()


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, raw: Optional[bytes] = None):
        self.status_code = status_code
        self._body = body
        if raw is not None:
            self.content = raw
        else:
            self.content = b"" if body is None else json.dumps(body).encode("utf-8")

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json body")
        return self._body


class FakeHttp:
    """
    Stands in for requests.Session. Responses are queued per (METHOD, path);
    the last queued entry repeats. Exceptions in the queue are raised.
    """

    def __init__(self, base_url: str = "http://api.test"):
        self.base_url = base_url
        self.headers: Dict[str, str] = {}
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, path: str, *responses: Any) -> "FakeHttp":
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        self.calls.append({"method": method.upper(), "path": path, **kwargs})
        queue = self.routes.get((method.upper(), path))
        if not queue:
            return FakeResponse(404, {"detail": "Not found."})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method.upper() and c["path"] == path]


def offline() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")


class ManualSource:
    """
    Push source whose deliveries are driven by the test. Released listeners
    can still be fed (`late=True`) to simulate completions that arrive after
    unsubscribe.
    """

    def __init__(self):
        self.listeners: List[Dict[str, Any]] = []
        self.released = 0
        self.refetched: List[str] = []
        self.writes: List[tuple] = []
        self.fail_subscribe: Optional[BaseException] = None
        self.fail_mutation: Optional[BaseException] = None

    def subscribe(self, partition, flt, on_next, on_error):  # noqa: ANN001
        if self.fail_subscribe is not None:
            raise self.fail_subscribe
        entry = {"partition": partition, "filter": flt, "on_next": on_next, "on_error": on_error, "live": True}
        self.listeners.append(entry)

        def _release() -> None:
            entry["live"] = False
            self.released += 1

        return _release

    def push(self, partition: str, records: List[Dict[str, Any]], *, late: bool = False) -> None:
        for e in list(self.listeners):
            if e["partition"] == partition and (e["live"] or late):
                e["on_next"](records)

    def fail(self, partition: str, error: BaseException, *, late: bool = False) -> None:
        for e in list(self.listeners):
            if e["partition"] == partition and (e["live"] or late):
                e["on_error"](error)

    def live_count(self) -> int:
        return sum(1 for e in self.listeners if e["live"])

    def refetch(self, partition: str) -> None:
        self.refetched.append(partition)

    def create(self, partition, data):  # noqa: ANN001
        return self._write("create", partition, None, data)

    def update(self, partition, record_id, data, *, replace=False):  # noqa: ANN001
        return self._write("replace" if replace else "update", partition, record_id, data)

    def delete(self, partition, record_id):  # noqa: ANN001
        self._write("delete", partition, record_id, None)

    def _write(self, op, partition, record_id, data):  # noqa: ANN001
        if self.fail_mutation is not None:
            raise self.fail_mutation
        self.writes.append((op, partition, record_id, data))
        return {**(data or {}), "id": record_id or "new"}
