from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import requests

from careconnect.core.errors import AuthError, AuthErrorReason
from careconnect.core.identity.models import Identity, TokenPair, normalize_role


logger = logging.getLogger(__name__)


class IdentityClient(Protocol):
    def authenticate(self, username: str, password: str) -> TokenPair: ...

    def fetch_profile(self, access_token: str) -> Identity: ...

    def refresh(self, refresh_token: str) -> str: ...


def _detail(r: requests.Response) -> Optional[str]:
    try:
        body = r.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])[:300]
    return None


@dataclass
class RestIdentityClient:
    """
    Token endpoints of the portal API:

    - POST {base}/token/          {username, password} -> {access, refresh}
    - POST {base}/token/refresh/  {refresh} -> {access}
    - GET  {base}/users/me/       Authorization: Bearer <access>
    """

    base_url: str
    timeout_seconds: float = 10.0
    http: requests.Session = field(default_factory=requests.Session)

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self.http.request(method, self._url(path), timeout=self.timeout_seconds, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning("Identity service unreachable: %s %s (%s)", method, path, type(e).__name__)
            raise AuthError(AuthErrorReason.network_unavailable, path=path) from e

    def authenticate(self, username: str, password: str) -> TokenPair:
        r = self._send("POST", "/token/", json={"username": username, "password": password})
        if r.status_code in {400, 401, 403}:
            raise AuthError(AuthErrorReason.invalid_credentials, _detail(r), status=r.status_code)
        if r.status_code >= 500:
            raise AuthError(AuthErrorReason.network_unavailable, status=r.status_code)
        if r.status_code != 200:
            raise AuthError(AuthErrorReason.invalid_credentials, _detail(r), status=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise AuthError(AuthErrorReason.network_unavailable, "Unexpected response from the server.") from e
        access = str((data or {}).get("access") or "")
        if not access:
            raise AuthError(AuthErrorReason.network_unavailable, "Unexpected response from the server.")
        return TokenPair(access=access, refresh=data.get("refresh"))

    def fetch_profile(self, access_token: str) -> Identity:
        r = self._send("GET", "/users/me/", headers={"Authorization": f"Bearer {access_token}"})
        if r.status_code in {401, 403}:
            raise AuthError(AuthErrorReason.expired_token, status=r.status_code)
        if r.status_code >= 500:
            raise AuthError(AuthErrorReason.network_unavailable, status=r.status_code)
        if r.status_code != 200:
            raise AuthError(AuthErrorReason.invalid_profile, status=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise AuthError(AuthErrorReason.invalid_profile) from e
        return Identity.from_profile(data)

    def refresh(self, refresh_token: str) -> str:
        r = self._send("POST", "/token/refresh/", json={"refresh": refresh_token})
        if r.status_code in {400, 401, 403}:
            raise AuthError(AuthErrorReason.expired_token, status=r.status_code)
        if r.status_code != 200:
            raise AuthError(AuthErrorReason.network_unavailable, status=r.status_code)
        try:
            access = str((r.json() or {}).get("access") or "")
        except ValueError:
            access = ""
        if not access:
            raise AuthError(AuthErrorReason.expired_token)
        return access


@dataclass
class DemoUser:
    username: str
    password: str
    profile: Dict[str, Any]


def default_demo_users() -> Dict[str, DemoUser]:
    return {
        "admin": DemoUser("admin", "admin123", {"id": "admin", "username": "admin", "first_name": "Admin", "role": "admin", "email": "admin@care.com"}),
        "carer": DemoUser("carer", "carer123", {"id": "carer", "username": "carer", "first_name": "Carer", "role": "caretaker", "email": "carer@care.com"}),
    }


class DemoIdentityClient:
    """
    In-process identity service for local runs and tests.

    Tokens are random strings with an optional lifetime; `revoke()` and
    `offline` let tests drive the failure paths.
    """

    def __init__(self, users: Optional[Dict[str, DemoUser]] = None, *, access_ttl_seconds: Optional[float] = None):
        self.users = users if users is not None else default_demo_users()
        self.access_ttl_seconds = access_ttl_seconds
        self.offline = False
        self.calls: Dict[str, int] = {"authenticate": 0, "fetch_profile": 0, "refresh": 0}
        self._lock = threading.Lock()
        self._access: Dict[str, tuple[str, Optional[float]]] = {}
        self._refresh: Dict[str, str] = {}

    def authenticate(self, username: str, password: str) -> TokenPair:
        self._count("authenticate")
        u = self.users.get(str(username))
        if u is None or not secrets.compare_digest(u.password, str(password)):
            raise AuthError(AuthErrorReason.invalid_credentials)
        return TokenPair(access=self._issue_access(u.username), refresh=self._issue_refresh(u.username))

    def fetch_profile(self, access_token: str) -> Identity:
        self._count("fetch_profile")
        username = self._check_access(access_token)
        profile = dict(self.users[username].profile)
        profile["role"] = normalize_role(profile.get("role")).value
        return Identity.from_profile(profile)

    def refresh(self, refresh_token: str) -> str:
        self._count("refresh")
        with self._lock:
            username = self._refresh.get(str(refresh_token))
        if username is None or username not in self.users:
            raise AuthError(AuthErrorReason.expired_token)
        return self._issue_access(username)

    def revoke(self, token: str) -> None:
        with self._lock:
            self._access.pop(token, None)
            self._refresh.pop(token, None)

    def expire_all_access(self) -> None:
        with self._lock:
            self._access.clear()

    # ---- internals ----
    def _count(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1
        if self.offline:
            raise AuthError(AuthErrorReason.network_unavailable)

    def _issue_access(self, username: str) -> str:
        tok = secrets.token_urlsafe(24)
        exp = (time.time() + float(self.access_ttl_seconds)) if self.access_ttl_seconds else None
        with self._lock:
            self._access[tok] = (username, exp)
        return tok

    def _issue_refresh(self, username: str) -> str:
        tok = secrets.token_urlsafe(24)
        with self._lock:
            self._refresh[tok] = username
        return tok

    def _check_access(self, token: str) -> str:
        with self._lock:
            entry = self._access.get(str(token))
        if entry is None:
            raise AuthError(AuthErrorReason.expired_token)
        username, exp = entry
        if exp is not None and time.time() >= exp:
            raise AuthError(AuthErrorReason.expired_token)
        if username not in self.users:
            raise AuthError(AuthErrorReason.invalid_profile)
        return username
