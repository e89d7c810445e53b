from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from careconnect.core.access.guard import AccessGuard
from careconnect.core.access.routes import home_for
from careconnect.core.error_reporter import ErrorReporter
from careconnect.core.errors import CareConnectError, DataErrorReason, SubscriptionError, ValidationError
from careconnect.core.events import Notifier
from careconnect.core.identity.models import Identity, SessionState
from careconnect.core.session.manager import SessionManager
from careconnect.core.sync.synchronizer import LiveQuerySynchronizer
from careconnect.web.models import (
    IdentityInfo,
    LoginRequest,
    MutationRequest,
    MutationResponse,
    NavigateResponse,
    NotificationsResponse,
    ReleaseResponse,
    SessionResponse,
)
from careconnect.web.mounts import PortalMounts, parse_where


logger = logging.getLogger(__name__)


def http_status_for(exc: CareConnectError) -> int:
    code = exc.code
    if code in {"auth_invalid_credentials", "auth_expired_token"}:
        return 401
    if code == "auth_invalid_profile":
        return 502
    if code.endswith("permission_denied"):
        return 403
    if code.endswith("partition_not_found"):
        return 404
    if code.endswith("validation_failed") or code == "validation_error":
        return 400
    if code.endswith("network_unavailable"):
        return 503
    return 500


def _session_response(state: SessionState) -> SessionResponse:
    ident = state.identity
    return SessionResponse(
        authenticated=ident is not None,
        loading=state.loading,
        identity=_identity_info(ident) if ident is not None else None,
        home=home_for(ident.role) if ident is not None else None,
    )


def _identity_info(ident: Identity) -> IdentityInfo:
    return IdentityInfo(id=str(ident.id), username=ident.username, display_name=ident.display_name, role=ident.role.value, email=ident.email)


def create_app(
    *,
    session: SessionManager,
    guard: AccessGuard,
    synchronizer: LiveQuerySynchronizer,
    notifier: Notifier,
    allowed_origins: Optional[List[str]] = None,
    error_reporter: Optional[ErrorReporter] = None,
    init_wait_seconds: float = 5.0,
) -> FastAPI:
    mounts = PortalMounts(synchronizer)
    unbind = mounts.bind(session)
    reporter = error_reporter or ErrorReporter()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        unbind()
        released = mounts.release_all()
        logger.info("Portal shutting down (%s subscription(s) released).", released)

    app = FastAPI(title="CareConnect Portal", version="0.1.0", lifespan=lifespan)
    app.state.mounts = mounts

    if allowed_origins:
        if any(o == "*" for o in allowed_origins):
            raise ValueError("Wildcard CORS origins are not allowed.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(CareConnectError)
    async def careconnect_error_handler(request: Request, exc: CareConnectError):
        status = http_status_for(exc)
        if status >= 500:
            reporter.write_error(exc, trace_id=uuid.uuid4().hex, subsystem="web")
        return JSONResponse(status_code=status, content={"detail": exc.user_message, "code": exc.code})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        trace_id = uuid.uuid4().hex
        logger.error("Unhandled error on %s %s (trace %s)", request.method, request.url.path, trace_id, exc_info=exc)
        err = reporter.report_exception(exc, trace_id=trace_id, subsystem="web", context={"path": request.url.path})
        return JSONResponse(status_code=http_status_for(err), content={"detail": err.user_message, "code": err.code, "trace_id": trace_id})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    def _require_identity() -> Identity:
        session.wait_initialized(init_wait_seconds)
        ident = session.identity()
        if ident is None:
            raise HTTPException(status_code=401, detail="Please log in.")
        return ident

    def _require_partition(name: str) -> Identity:
        ident = _require_identity()
        if name not in guard.routes.partitions_for(ident.role):
            raise SubscriptionError(DataErrorReason.permission_denied, name)
        return ident

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ---------- session ----------
    @app.get("/v1/session", response_model=SessionResponse)
    def get_session():
        return _session_response(session.state())

    @app.post("/v1/session/login", response_model=SessionResponse)
    def login(req: LoginRequest):
        session.login(req.username, req.password)
        return _session_response(session.state())

    @app.post("/v1/session/logout", response_model=SessionResponse)
    def logout():
        session.logout()
        return _session_response(session.state())

    @app.get("/v1/navigate", response_model=NavigateResponse)
    def navigate(path: str = Query(min_length=1, max_length=512)):
        d = guard.decide(path)
        return NavigateResponse(
            state=d.state.value,
            path=d.path,
            redirect_to=d.redirect_to,
            title=d.screen.title if d.screen is not None else None,
            partitions=list(d.screen.partitions) if d.screen is not None else [],
        )

    # ---------- partitions ----------
    @app.get("/v1/partitions/{name}")
    def read_partition(name: str, where: List[str] = Query(default=[]), wait: float = Query(default=2.0, ge=0, le=30)):
        _require_partition(name)
        handle = mounts.mount(name, parse_where(where))
        if handle.version == 0 and wait > 0:
            handle.wait_for_version(1, timeout=wait)
        return handle.snapshot().model_dump()

    @app.post("/v1/partitions/{name}/refresh")
    def refresh_partition(name: str, where: List[str] = Query(default=[])):
        _require_partition(name)
        handle = mounts.mount(name, parse_where(where))
        return {"refreshed": synchronizer.refresh(handle)}

    @app.delete("/v1/partitions/{name}/mount", response_model=ReleaseResponse)
    def release_partition(name: str, where: List[str] = Query(default=[])):
        _require_identity()
        flt = parse_where(where)
        return ReleaseResponse(released=mounts.release(name, flt, all_filters=flt is None))

    @app.post("/v1/partitions/{name}", response_model=MutationResponse)
    def create_record(name: str, req: MutationRequest):
        _require_partition(name)
        if not req.data:
            raise ValidationError("Nothing to save.")
        return MutationResponse(ok=True, record=synchronizer.create(name, req.data))

    @app.put("/v1/partitions/{name}/{record_id}", response_model=MutationResponse)
    def replace_record(name: str, record_id: str, req: MutationRequest):
        return _update(name, record_id, req.data, replace=True)

    @app.patch("/v1/partitions/{name}/{record_id}", response_model=MutationResponse)
    def patch_record(name: str, record_id: str, req: MutationRequest):
        return _update(name, record_id, req.data)

    @app.delete("/v1/partitions/{name}/{record_id}", response_model=MutationResponse)
    def delete_record(name: str, record_id: str):
        _require_partition(name)
        synchronizer.delete(name, record_id)
        return MutationResponse(ok=True)

    def _update(name: str, record_id: str, data: Dict[str, Any], *, replace: bool = False) -> MutationResponse:
        _require_partition(name)
        if not data:
            raise ValidationError("Nothing to save.")
        return MutationResponse(ok=True, record=synchronizer.update(name, record_id, data, replace=replace))

    # ---------- notifications ----------
    @app.get("/v1/notifications", response_model=NotificationsResponse)
    def notifications(n: int = Query(default=20, ge=1, le=200)):
        return NotificationsResponse(notifications=notifier.recent(n))

    return app
