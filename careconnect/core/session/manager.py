from __future__ import annotations

"""
SessionManager: the single writer of "who is logged in, with what role".

State lives on this instance (inject it, don't import a global). Every
mutation is broadcast to listeners synchronously, in the mutating thread,
before the mutating call returns.
"""

import logging
import threading
import uuid
from typing import Any, Callable, List, Optional

from careconnect.core.errors import AuthError, AuthErrorReason
from careconnect.core.events import BaseEvent, EventBus, EventLogger, EventSeverity, Notifier, SourceSubsystem
from careconnect.core.identity.client import IdentityClient
from careconnect.core.identity.models import Identity, Role, SessionState
from careconnect.core.storage.durable import DurableStore


logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"

SessionListener = Callable[[SessionState], None]


class SessionManager:
    def __init__(
        self,
        *,
        identity_client: IdentityClient,
        store: DurableStore,
        notifier: Optional[Notifier] = None,
        bus: Optional[EventBus] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self.identity_client = identity_client
        self.store = store
        self.notifier = notifier or Notifier(bus=bus)
        self.bus = bus
        self.event_logger = event_logger

        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._listeners: List[SessionListener] = []
        self._identity: Optional[Identity] = None
        self._init_started = False
        self._initialized = threading.Event()
        self._logins_in_flight = 0

    # ---------- reads ----------
    def state(self) -> SessionState:
        with self._lock:
            return self._snapshot_locked()

    def identity(self) -> Optional[Identity]:
        with self._lock:
            return self._identity

    def is_admin(self) -> bool:
        ident = self.identity()
        return ident is not None and ident.role == Role.admin

    def is_carer(self) -> bool:
        ident = self.identity()
        return ident is not None and ident.role == Role.carer

    def access_token(self) -> Optional[str]:
        return self.store.get(ACCESS_TOKEN_KEY)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        if not callable(listener):
            raise ValueError("listener must be callable")
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def wait_initialized(self, timeout: Optional[float] = None) -> bool:
        return self._initialized.wait(timeout)

    # ---------- lifecycle ----------
    def initialize(self) -> SessionState:
        """
        Restore the session from the durable store. Runs once; later calls
        return the current state (blocking until the first run finishes).
        """
        with self._lock:
            first = not self._init_started
            self._init_started = True
        if not first:
            self._initialized.wait()
            return self.state()

        identity: Optional[Identity] = None
        failure: Optional[str] = None
        try:
            identity = self._restore()
        except AuthError as e:
            failure = e.reason.value
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected error while restoring the session")
            failure = f"unexpected:{type(e).__name__}"

        with self._lock:
            if failure is not None:
                self._clear_tokens_locked()
            if self._identity is None:
                self._identity = identity
            self._initialized.set()
            snap = self._snapshot_locked()
            self._broadcast_locked(snap)

        if failure is not None:
            logger.info("Stored session could not be restored (%s); tokens cleared.", failure)
            self._audit("session.restore_failed", {"reason": failure}, severity=EventSeverity.WARN)
        elif identity is not None:
            logger.info("Session restored for user %s (%s).", identity.id, identity.role.value)
            self._audit("session.restored", {"user_id": str(identity.id), "role": identity.role.value})
        return snap

    def start_initialize(self) -> threading.Thread:
        t = threading.Thread(target=self.initialize, name="session-initialize", daemon=True)
        t.start()
        return t

    def login(self, username: str, password: str) -> Identity:
        """
        Authenticate and fetch the profile, then persist tokens and set the
        identity together.

        Raises AuthError on failure after publishing a user-visible error; the
        previous identity is left untouched.
        """
        self.initialize()
        with self._lock:
            self._logins_in_flight += 1
            self._broadcast_locked(self._snapshot_locked())

        try:
            tokens = self.identity_client.authenticate(username, password)
            # Nothing is persisted until the profile is known to be valid.
            identity = self.identity_client.fetch_profile(tokens.access)
        except Exception as e:  # noqa: BLE001
            err = e if isinstance(e, AuthError) else AuthError(AuthErrorReason.network_unavailable, error=type(e).__name__)
            if not isinstance(e, AuthError):
                logger.exception("Unexpected error during login")
            with self._lock:
                self._logins_in_flight -= 1
                self._broadcast_locked(self._snapshot_locked())
            logger.info("Login failed for %r: %s", username, err.reason.value)
            self.notifier.error(err.user_message, reason=err.reason.value)
            self._audit("session.login_failed", {"reason": err.reason.value}, severity=EventSeverity.WARN, actor=username)
            if err is e:
                raise
            raise err from e

        with self._lock:
            self.store.set(ACCESS_TOKEN_KEY, tokens.access)
            if tokens.refresh:
                self.store.set(REFRESH_TOKEN_KEY, tokens.refresh)
            else:
                self.store.remove(REFRESH_TOKEN_KEY)
            self._identity = identity
            self._logins_in_flight -= 1
            self._broadcast_locked(self._snapshot_locked())
        logger.info("User %s logged in (%s).", identity.id, identity.role.value)
        self.notifier.success("Welcome back!")
        self._audit("session.login", {"user_id": str(identity.id), "role": identity.role.value}, actor=identity.username)
        return identity

    def logout(self) -> None:
        with self._lock:
            had_session = self._identity is not None or self._has_tokens_locked()
            if not had_session:
                return
            user_id = str(self._identity.id) if self._identity is not None else None
            self._clear_tokens_locked()
            self._identity = None
            self._broadcast_locked(self._snapshot_locked())
        logger.info("User %s logged out.", user_id)
        self.notifier.info("Logged out successfully")
        self._audit("session.logout", {"user_id": user_id})

    def expire(self, reason: str = AuthErrorReason.expired_token.value) -> bool:
        """
        Credential invalidation after login (refresh failed, token revoked).
        Only the first call for a given session has any effect.
        """
        with self._lock:
            if self._identity is None:
                self._clear_tokens_locked()
                return False
            user_id = str(self._identity.id)
            self._clear_tokens_locked()
            self._identity = None
            self._broadcast_locked(self._snapshot_locked())
        logger.warning("Session for user %s expired (%s).", user_id, reason)
        self.notifier.error("Your session has expired, please log in again.", reason=reason)
        self._audit("session.expired", {"user_id": user_id, "reason": reason}, severity=EventSeverity.WARN)
        return True

    def refresh_access_token(self, stale_token: Optional[str]) -> Optional[str]:
        """
        Single-flight refresh for callers that got a 401 with `stale_token`.

        Returns the token to retry with, or None when the session is gone. A
        rejected refresh expires the session; an unreachable server raises
        AuthError(network_unavailable) and keeps it.
        """
        with self._refresh_lock:
            current = self.store.get(ACCESS_TOKEN_KEY)
            if current is None:
                self.expire("no_access_token")
                return None
            if stale_token is not None and current != stale_token:
                return current
            refresh = self.store.get(REFRESH_TOKEN_KEY)
            if not refresh:
                self.expire("no_refresh_token")
                return None
            try:
                new_access = self.identity_client.refresh(refresh)
            except AuthError as e:
                if e.reason == AuthErrorReason.network_unavailable:
                    raise
                self.expire(e.reason.value)
                return None
            with self._lock:
                if self._identity is None:
                    return None
                self.store.set(ACCESS_TOKEN_KEY, new_access)
            logger.debug("Access token refreshed.")
            return new_access

    # ---------- internals ----------
    def _restore(self) -> Optional[Identity]:
        access = self.store.get(ACCESS_TOKEN_KEY)
        if not access:
            return None
        try:
            return self.identity_client.fetch_profile(access)
        except AuthError as e:
            if e.reason != AuthErrorReason.expired_token:
                raise
            refresh = self.store.get(REFRESH_TOKEN_KEY)
            if not refresh:
                raise
        new_access = self.identity_client.refresh(refresh)
        self.store.set(ACCESS_TOKEN_KEY, new_access)
        return self.identity_client.fetch_profile(new_access)

    def _snapshot_locked(self) -> SessionState:
        loading = (not self._initialized.is_set()) or self._logins_in_flight > 0
        return SessionState(identity=self._identity, loading=loading)

    def _has_tokens_locked(self) -> bool:
        return self.store.get(ACCESS_TOKEN_KEY) is not None or self.store.get(REFRESH_TOKEN_KEY) is not None

    def _clear_tokens_locked(self) -> None:
        self.store.remove(ACCESS_TOKEN_KEY)
        self.store.remove(REFRESH_TOKEN_KEY)

    def _broadcast_locked(self, snap: SessionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:  # noqa: BLE001
                logger.exception("Session listener failed")

    def _audit(
        self,
        event_type: str,
        details: dict[str, Any],
        *,
        severity: EventSeverity = EventSeverity.INFO,
        actor: Optional[str] = None,
    ) -> None:
        trace_id = uuid.uuid4().hex
        if self.event_logger is not None:
            self.event_logger.log(trace_id, event_type, details, actor=actor)
        if self.bus is not None:
            self.bus.publish(BaseEvent(event_type=event_type, trace_id=trace_id, source_subsystem=SourceSubsystem.session, severity=severity, payload=details))
