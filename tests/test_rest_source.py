from __future__ import annotations

import threading
import time

import pytest

from careconnect.core.api import ApiClient
from careconnect.core.errors import DataErrorReason
from careconnect.core.sync import Filter, LiveQuerySynchronizer, RestPartitionSource

from .helpers.fakes import FakeHttp, FakeResponse, offline, wait_until


@pytest.fixture
def logged_in(ready_session):
    ready_session.login("admin", "admin123")
    return ready_session


def _source(session, http, **kw):  # noqa: ANN001
    return RestPartitionSource(ApiClient("http://api.test", session=session, http=http), **kw)


def test_subscribe_fetches_in_background(logged_in):
    http = FakeHttp().add("GET", "/clients/", FakeResponse(200, [{"id": 1, "name": "X"}]))
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("clients")
    assert h.wait_for_version(1, timeout=2.0)
    assert h.items == [{"id": 1, "name": "X"}]
    assert h.loading is False
    sync.close()
    src.close()


def test_filter_goes_to_server_and_client(logged_in):
    rows = [{"id": 1, "status": "pending"}, {"id": 2, "status": "approved"}]
    http = FakeHttp().add("GET", "/leave/", FakeResponse(200, rows))
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("leave", Filter.where("status", "==", "pending"))
    assert h.wait_for_version(1, timeout=2.0)
    assert [r["id"] for r in h.items] == [1]
    assert http.calls[0]["params"] == {"status": "pending"}
    src.close()


def test_mutation_refetches_partition(logged_in):
    http = (
        FakeHttp()
        .add("GET", "/clients/", FakeResponse(200, [{"id": 1}]), FakeResponse(200, [{"id": 1}, {"id": 2}]))
        .add("POST", "/clients/", FakeResponse(201, {"id": 2}))
    )
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("clients")
    assert h.wait_for_version(1, timeout=2.0)
    assert sync.create("clients", {"name": "Y"}) == {"id": 2}
    assert h.wait_for_version(2, timeout=2.0)
    assert [r["id"] for r in h.items] == [1, 2]
    src.close()


def test_update_uses_put_for_replace_and_patch_otherwise(logged_in):
    http = (
        FakeHttp()
        .add("GET", "/clients/", FakeResponse(200, []))
        .add("PUT", "/clients/3/", FakeResponse(200, {"id": 3, "name": "Y"}))
        .add("PATCH", "/clients/3/", FakeResponse(200, {"id": 3, "name": "Z"}))
    )
    src = _source(logged_in, http)
    assert src.update("clients", 3, {"name": "Y"}, replace=True)["name"] == "Y"
    assert src.update("clients", 3, {"name": "Z"})["name"] == "Z"
    assert [c["method"] for c in http.calls if c["path"] == "/clients/3/"] == ["PUT", "PATCH"]
    src.close()


def test_manual_refresh(logged_in):
    http = FakeHttp().add("GET", "/messages/", FakeResponse(200, []), FakeResponse(200, [{"id": 9}]))
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("messages")
    assert h.wait_for_version(1, timeout=2.0)
    assert h.refresh() is True
    assert h.wait_for_version(2, timeout=2.0)
    assert h.items == [{"id": 9}]
    src.close()


def test_network_error_keeps_items(logged_in):
    http = FakeHttp().add("GET", "/schedules/", FakeResponse(200, [{"id": 1}]), offline())
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("schedules")
    assert h.wait_for_version(1, timeout=2.0)
    h.refresh()
    assert h.wait_for_version(2, timeout=2.0)
    assert h.error is not None and h.error.reason == DataErrorReason.network_unavailable
    assert h.items == [{"id": 1}]
    src.close()


def test_expired_session_surfaces_as_permission_denied(logged_in, demo_client, store):
    demo_client.revoke(store.get("refresh_token"))
    http = FakeHttp().add("GET", "/clients/", FakeResponse(401))
    src = _source(logged_in, http)
    h = LiveQuerySynchronizer(src).subscribe("clients")
    assert h.wait_for_version(1, timeout=2.0)
    assert h.error.reason == DataErrorReason.permission_denied
    assert logged_in.identity() is None
    src.close()


class _GatedHttp(FakeHttp):
    """Holds the first GET until released, so a later fetch completes first."""

    def __init__(self, later=None):  # noqa: ANN001
        super().__init__()
        self.later = later if later is not None else FakeResponse(200, [{"id": "new"}])
        self.gate = threading.Event()
        self._first = True
        self._mu = threading.Lock()

    def request(self, method, url, **kwargs):  # noqa: ANN001
        with self._mu:
            first, self._first = self._first, False
        if first:
            self.gate.wait(2.0)
            return FakeResponse(200, [{"id": "old"}])
        if isinstance(self.later, BaseException):
            raise self.later
        return self.later


def test_stale_fetch_is_dropped(logged_in):
    http = _GatedHttp()
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("clients")
    assert wait_until(lambda: not http._first)
    h.refresh()
    assert h.wait_for_version(1, timeout=2.0)
    http.gate.set()
    time.sleep(0.2)
    assert h.items == [{"id": "new"}]
    assert h.version == 1
    src.close()


def test_stale_fetch_does_not_replace_newer_error(logged_in):
    http = _GatedHttp(later=offline())
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("clients")
    assert wait_until(lambda: not http._first)
    h.refresh()
    assert h.wait_for_version(1, timeout=2.0)
    assert h.error is not None and h.error.reason == DataErrorReason.network_unavailable
    http.gate.set()
    time.sleep(0.2)
    assert h.error is not None
    assert h.items == []
    assert h.version == 1
    src.close()


def test_unsubscribe_before_fetch_completes(logged_in):
    http = _GatedHttp()
    src = _source(logged_in, http)
    sync = LiveQuerySynchronizer(src)
    h = sync.subscribe("clients")
    changes = []
    h.on_change(changes.append)
    sync.unsubscribe(h)
    http.gate.set()
    time.sleep(0.2)
    assert changes == []
    assert h.items == []
    assert src.listener_count() == 0


def test_polling_refetches(logged_in):
    http = FakeHttp().add("GET", "/leave/", FakeResponse(200, []))
    src = _source(logged_in, http, poll_interval_seconds=0.05)
    h = LiveQuerySynchronizer(src).subscribe("leave")
    assert wait_until(lambda: len(http.calls) >= 3)
    src.close()
    assert h.loading is False


def test_rejects_bad_poll_interval(logged_in):
    with pytest.raises(ValueError):
        _source(logged_in, FakeHttp(), poll_interval_seconds=0)
