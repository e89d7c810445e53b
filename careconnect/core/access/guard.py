from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict

from careconnect.core.access.routes import RouteTable, Screen, default_routes, home_for, normalize_path
from careconnect.core.events import BaseEvent, EventBus, SourceSubsystem
from careconnect.core.identity.models import SessionState
from careconnect.core.session.manager import SessionManager


logger = logging.getLogger(__name__)


class GuardState(str, Enum):
    PENDING = "PENDING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    WRONG_ROLE = "WRONG_ROLE"
    AUTHORIZED = "AUTHORIZED"
    NOT_FOUND = "NOT_FOUND"


class GuardDecision(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    state: GuardState
    path: str
    redirect_to: Optional[str] = None
    screen: Optional[Screen] = None

    @property
    def allowed(self) -> bool:
        return self.state == GuardState.AUTHORIZED

    def same_outcome(self, other: Optional["GuardDecision"]) -> bool:
        return other is not None and (self.state, self.path, self.redirect_to) == (other.state, other.path, other.redirect_to)


class AccessGuard:
    """
    Route-time gate over SessionManager state.

    Reads the session, never writes it. While the session is still loading
    the decision is PENDING and carries no redirect.
    """

    def __init__(
        self,
        *,
        session: SessionManager,
        routes: Optional[RouteTable] = None,
        login_path: str = "/login",
        preserve_deep_link: bool = False,
        bus: Optional[EventBus] = None,
    ):
        self.session = session
        self.login_path = normalize_path(login_path)
        self.routes = routes or default_routes(self.login_path)
        self.preserve_deep_link = preserve_deep_link
        self.bus = bus

    def decide(self, path: str, state: Optional[SessionState] = None) -> GuardDecision:
        st = state if state is not None else self.session.state()
        target = normalize_path(path)
        screen = self.routes.resolve(target)

        if screen is None:
            decision = GuardDecision(state=GuardState.NOT_FOUND, path=target)
        elif screen.public:
            decision = GuardDecision(state=GuardState.AUTHORIZED, path=target, screen=screen)
        elif st.loading:
            decision = GuardDecision(state=GuardState.PENDING, path=target, screen=screen)
        elif st.identity is None:
            decision = GuardDecision(state=GuardState.UNAUTHENTICATED, path=target, redirect_to=self._login_redirect(target))
        elif not screen.allows(st.identity.role):
            decision = GuardDecision(state=GuardState.WRONG_ROLE, path=target, redirect_to=home_for(st.identity.role))
        else:
            decision = GuardDecision(state=GuardState.AUTHORIZED, path=target, screen=screen)

        logger.debug("Guard %s -> %s%s", target, decision.state.value, f" ({decision.redirect_to})" if decision.redirect_to else "")
        if decision.redirect_to and self.bus is not None:
            self.bus.publish(
                BaseEvent(
                    event_type="guard.redirect",
                    source_subsystem=SourceSubsystem.guard,
                    payload={"path": target, "state": decision.state.value, "redirect_to": decision.redirect_to},
                )
            )
        return decision

    def watch(self, path: str, on_change: Callable[[GuardDecision], None]) -> "GuardedView":
        return GuardedView(self, path, on_change)

    def _login_redirect(self, target: str) -> str:
        if not self.preserve_deep_link or target == self.login_path:
            return self.login_path
        return f"{self.login_path}?next={quote(target, safe='/')}"


class GuardedView:
    """
    A mounted screen: re-gated on every navigation and on every session
    mutation. `on_change` fires whenever the outcome changes.
    """

    def __init__(self, guard: AccessGuard, path: str, on_change: Callable[[GuardDecision], None]):
        self.guard = guard
        self._on_change = on_change
        self._lock = threading.Lock()
        self._path = normalize_path(path)
        self._decision: Optional[GuardDecision] = None
        self._closed = False
        # Evaluations are numbered; one that finishes after a newer one is dropped.
        self._issued = 0
        self._applied = 0
        self._unsubscribe = guard.session.subscribe(self._on_session)
        self._evaluate(None)

    @property
    def decision(self) -> Optional[GuardDecision]:
        with self._lock:
            return self._decision

    @property
    def path(self) -> str:
        with self._lock:
            return self._path

    def navigate(self, path: str) -> GuardDecision:
        with self._lock:
            self._path = normalize_path(path)
        return self._evaluate(None)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._unsubscribe()

    def __enter__(self) -> "GuardedView":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _on_session(self, state: SessionState) -> None:
        self._evaluate(state)

    def _evaluate(self, state: Optional[SessionState]) -> GuardDecision:
        with self._lock:
            if self._closed and self._decision is not None:
                return self._decision
            path = self._path
            self._issued += 1
            seq = self._issued
        decision = self.guard.decide(path, state)
        with self._lock:
            if self._closed:
                return decision
            if seq < self._applied and self._decision is not None:
                return self._decision
            self._applied = seq
            changed = not decision.same_outcome(self._decision)
            self._decision = decision
        if changed:
            self._on_change(decision)
        return decision
