from __future__ import annotations

import threading

import pytest

from careconnect.core.errors import AuthError, AuthErrorReason
from careconnect.core.events import Notifier
from careconnect.core.identity import Role
from careconnect.core.session import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SessionManager


def _messages(notifier, level=None):  # noqa: ANN001
    return [n["message"] for n in notifier.recent(50) if level is None or n["level"] == level]


def test_state_is_loading_until_initialized(session):
    assert session.state().loading is True
    st = session.initialize()
    assert st.loading is False
    assert st.identity is None
    assert session.wait_initialized(0) is True


def test_login_settles_loading_and_sets_identity(ready_session, notifier):
    seen = []
    ready_session.subscribe(seen.append)

    ident = ready_session.login("admin", "admin123")

    assert ident.role == Role.admin
    assert any(s.loading for s in seen)
    assert seen[-1].loading is False
    assert seen[-1].identity == ident
    assert ready_session.is_admin()
    assert "Welcome back!" in _messages(notifier, "success")


def test_login_maps_caretaker_to_carer(ready_session):
    ident = ready_session.login("carer", "carer123")
    assert ident.role == Role.carer
    assert ready_session.is_carer()
    assert not ready_session.is_admin()


def test_login_invalid_credentials(ready_session, store, notifier):
    with pytest.raises(AuthError) as ei:
        ready_session.login("admin", "wrong")
    assert ei.value.reason == AuthErrorReason.invalid_credentials
    st = ready_session.state()
    assert st.loading is False
    assert st.identity is None
    assert store.get(ACCESS_TOKEN_KEY) is None
    assert "Invalid username or password." in _messages(notifier, "error")


def test_login_network_failure_is_distinguishable(ready_session, demo_client, notifier):
    demo_client.offline = True
    with pytest.raises(AuthError) as ei:
        ready_session.login("admin", "admin123")
    assert ei.value.reason == AuthErrorReason.network_unavailable
    assert ei.value.user_message != AuthError(AuthErrorReason.invalid_credentials).user_message
    assert ready_session.state().loading is False
    assert ei.value.user_message in _messages(notifier, "error")


def test_failed_login_leaves_previous_identity(ready_session):
    first = ready_session.login("admin", "admin123")
    with pytest.raises(AuthError):
        ready_session.login("carer", "nope")
    assert ready_session.identity() == first


def test_failed_profile_fetch_keeps_previous_tokens(ready_session, demo_client, store):
    first = ready_session.login("admin", "admin123")
    access, refresh = store.get(ACCESS_TOKEN_KEY), store.get(REFRESH_TOKEN_KEY)
    demo_client.users["carer"].profile["role"] = "janitor"
    with pytest.raises(AuthError) as ei:
        ready_session.login("carer", "carer123")
    assert ei.value.reason == AuthErrorReason.invalid_profile
    assert ready_session.identity() == first
    assert store.get(ACCESS_TOKEN_KEY) == access
    assert store.get(REFRESH_TOKEN_KEY) == refresh
    assert ready_session.state().loading is False


def test_logout_twice_notifies_once(ready_session, store, notifier):
    ready_session.login("admin", "admin123")
    notifier.clear()
    seen = []
    ready_session.subscribe(seen.append)

    ready_session.logout()
    ready_session.logout()

    assert ready_session.identity() is None
    assert store.get(ACCESS_TOKEN_KEY) is None
    assert store.get(REFRESH_TOKEN_KEY) is None
    assert _messages(notifier) == ["Logged out successfully"]
    assert len(seen) == 1


def test_restore_valid_token_on_startup(demo_client, store):
    first = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    first.initialize()
    first.login("carer", "carer123")

    restarted = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    st = restarted.initialize()
    assert st.loading is False
    assert st.identity is not None
    assert st.identity.role == Role.carer


def test_restore_with_expired_token_clears_tokens(demo_client, store):
    store.set(ACCESS_TOKEN_KEY, "stale")
    s = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    st = s.initialize()
    assert st.identity is None
    assert st.loading is False
    assert store.get(ACCESS_TOKEN_KEY) is None


def test_restore_refreshes_expired_access_token(demo_client, store):
    first = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    first.initialize()
    first.login("admin", "admin123")
    old = store.get(ACCESS_TOKEN_KEY)
    demo_client.expire_all_access()

    restarted = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    st = restarted.initialize()
    assert st.identity is not None
    assert store.get(ACCESS_TOKEN_KEY) not in (None, old)


def test_restore_offline_clears_session(demo_client, store):
    first = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    first.initialize()
    first.login("admin", "admin123")
    demo_client.offline = True

    restarted = SessionManager(identity_client=demo_client, store=store, notifier=Notifier())
    st = restarted.initialize()
    assert st.identity is None
    assert store.get(ACCESS_TOKEN_KEY) is None


def test_initialize_runs_once(session, demo_client, store):
    store.set(ACCESS_TOKEN_KEY, "whatever")
    session.initialize()
    calls = demo_client.calls["fetch_profile"]
    session.initialize()
    assert demo_client.calls["fetch_profile"] == calls


def test_concurrent_initialize_waits_for_first(session):
    results = []
    threads = [threading.Thread(target=lambda: results.append(session.initialize())) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(2.0)
    assert len(results) == 4
    assert all(r.loading is False for r in results)


def test_expire_runs_once(ready_session, notifier):
    ready_session.login("admin", "admin123")
    notifier.clear()
    assert ready_session.expire("revoked") is True
    assert ready_session.expire("revoked") is False
    assert _messages(notifier) == ["Your session has expired, please log in again."]


def test_refresh_is_single_flight(ready_session, demo_client, store):
    ready_session.login("admin", "admin123")
    stale = store.get(ACCESS_TOKEN_KEY)

    fresh = ready_session.refresh_access_token(stale)
    again = ready_session.refresh_access_token(stale)

    assert fresh and fresh != stale
    assert again == fresh
    assert demo_client.calls["refresh"] == 1


def test_refresh_rejected_expires_session(ready_session, demo_client, store, notifier):
    ready_session.login("admin", "admin123")
    demo_client.revoke(store.get(REFRESH_TOKEN_KEY))

    assert ready_session.refresh_access_token(store.get(ACCESS_TOKEN_KEY)) is None
    assert ready_session.identity() is None
    assert store.get(ACCESS_TOKEN_KEY) is None
    assert "Your session has expired, please log in again." in _messages(notifier, "error")


def test_refresh_offline_keeps_session(ready_session, demo_client, store):
    ready_session.login("admin", "admin123")
    demo_client.offline = True
    with pytest.raises(AuthError) as ei:
        ready_session.refresh_access_token(store.get(ACCESS_TOKEN_KEY))
    assert ei.value.reason == AuthErrorReason.network_unavailable
    assert ready_session.identity() is not None


def test_refresh_without_session_returns_none(ready_session):
    assert ready_session.refresh_access_token("anything") is None


def test_refresh_with_identity_but_no_tokens_expires(ready_session, store, notifier):
    ready_session.login("admin", "admin123")
    store.remove(ACCESS_TOKEN_KEY)
    assert ready_session.refresh_access_token(None) is None
    assert ready_session.identity() is None
    assert "Your session has expired, please log in again." in _messages(notifier, "error")


def test_listener_errors_are_isolated(ready_session):
    seen = []

    def bad(_state):  # noqa: ANN001
        raise RuntimeError("boom")

    ready_session.subscribe(bad)
    ready_session.subscribe(seen.append)
    ready_session.login("admin", "admin123")
    assert seen[-1].identity is not None


def test_unsubscribed_listener_gets_nothing(ready_session):
    seen = []
    unsubscribe = ready_session.subscribe(seen.append)
    unsubscribe()
    ready_session.login("admin", "admin123")
    assert seen == []


def test_audit_events_written_and_redacted(tmp_path, demo_client, store):
    from careconnect.core.events import EventLogger

    path = tmp_path / "events.jsonl"
    s = SessionManager(identity_client=demo_client, store=store, notifier=Notifier(), event_logger=EventLogger(str(path)))
    s.initialize()
    with pytest.raises(AuthError):
        s.login("admin", "bad")
    s.login("admin", "admin123")
    text = path.read_text(encoding="utf-8")
    assert "session.login_failed" in text
    assert '"session.login"' in text
    assert "admin123" not in text
    records = EventLogger(str(path)).tail(2)
    assert [r["event"] for r in records] == ["session.login_failed", "session.login"]
    assert records[0]["actor"] == "admin"
