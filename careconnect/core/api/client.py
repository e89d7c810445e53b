from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, Union

import requests

from careconnect.core.errors import AuthError, AuthErrorReason, DataErrorReason, MutationError, SubscriptionError
from careconnect.core.session.manager import SessionManager


logger = logging.getLogger(__name__)

DataError = Union[SubscriptionError, MutationError]

PARTITION_PATHS: Dict[str, str] = {
    "users": "/users/",
    "carers": "/users/",
    "clients": "/clients/",
    "schedules": "/schedules/",
    "visit-notes": "/visit-notes/",
    "timelogs": "/timelogs/",
    "messages": "/messages/",
    "leave": "/leave/",
}

# Partitions that are a fixed view over another endpoint.
PARTITION_DEFAULT_PARAMS: Dict[str, Dict[str, str]] = {
    "carers": {"role": "carer"},
}


def _status_reason(status: int) -> Optional[DataErrorReason]:
    if 200 <= status < 300:
        return None
    if status == 403:
        return DataErrorReason.permission_denied
    if status == 404:
        return DataErrorReason.partition_not_found
    if status in {400, 409, 422}:
        return DataErrorReason.validation_failed
    return DataErrorReason.network_unavailable


class ApiClient:
    """
    Authenticated client for the portal REST API.

    Reads raise SubscriptionError, writes raise MutationError. A 401 is
    retried once with a refreshed token; if the refresh is rejected the
    session is expired (by SessionManager, once) and AuthError is raised.
    """

    def __init__(self, base_url: str, *, session: SessionManager, timeout_seconds: float = 10.0, http: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout_seconds = float(timeout_seconds)
        self.http = http or requests.Session()
        self.http.headers.setdefault("Content-Type", "application/json")

    # ---------- partitions ----------
    def list(self, partition: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        merged = {**PARTITION_DEFAULT_PARAMS.get(partition, {}), **(params or {})}
        r = self._call("GET", self._path(partition, SubscriptionError), SubscriptionError, partition, params=merged or None)
        body = _json(r, SubscriptionError, partition)
        # paginated responses: {"count": n, "results": [...]}
        if isinstance(body, dict) and isinstance(body.get("results"), list):
            body = body["results"]
        if not isinstance(body, list):
            raise SubscriptionError(DataErrorReason.network_unavailable, partition, "Unexpected response from the server.")
        return [x for x in body if isinstance(x, dict)]

    def get(self, partition: str, record_id: Any) -> Dict[str, Any]:
        r = self._call("GET", self._path(partition, SubscriptionError, record_id), SubscriptionError, partition)
        return _json(r, SubscriptionError, partition)

    def create(self, partition: str, data: Dict[str, Any]) -> Dict[str, Any]:
        r = self._call("POST", self._path(partition, MutationError), MutationError, partition, json=data)
        return _json(r, MutationError, partition)

    def update(self, partition: str, record_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        r = self._call("PUT", self._path(partition, MutationError, record_id), MutationError, partition, json=data)
        return _json(r, MutationError, partition)

    def patch(self, partition: str, record_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        r = self._call("PATCH", self._path(partition, MutationError, record_id), MutationError, partition, json=data)
        return _json(r, MutationError, partition)

    def delete(self, partition: str, record_id: Any) -> None:
        self._call("DELETE", self._path(partition, MutationError, record_id), MutationError, partition)

    # ---------- extras ----------
    def my_schedules_today(self) -> List[Dict[str, Any]]:
        r = self._call("GET", "/schedules/my_today/", SubscriptionError, "schedules")
        body = _json(r, SubscriptionError, "schedules")
        return [x for x in body if isinstance(x, dict)] if isinstance(body, list) else []

    def change_password(self, old_password: str, new_password: str) -> None:
        self._call(
            "POST",
            "/auth/change-password/",
            MutationError,
            "users",
            json={"old_password": old_password, "new_password": new_password},
        )

    # ---------- internals ----------
    def _path(self, partition: str, error_cls: Type[DataError], record_id: Any = None) -> str:
        base = PARTITION_PATHS.get(partition)
        if base is None:
            raise error_cls(DataErrorReason.partition_not_found, partition)
        return base if record_id is None else f"{base}{record_id}/"

    def _send(self, method: str, path: str, token: Optional[str], error_cls: Type[DataError], partition: str, **kwargs: Any) -> requests.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return self.http.request(method, f"{self.base_url}{path}", headers=headers, timeout=self.timeout_seconds, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning("API unreachable: %s %s (%s)", method, path, type(e).__name__)
            raise error_cls(DataErrorReason.network_unavailable, partition, error=type(e).__name__) from e

    def _call(self, method: str, path: str, error_cls: Type[DataError], partition: str, **kwargs: Any) -> requests.Response:
        token = self.session.access_token()
        r = self._send(method, path, token, error_cls, partition, **kwargs)
        if r.status_code == 401:
            fresh = self.session.refresh_access_token(token)
            if fresh is None:
                raise AuthError(AuthErrorReason.expired_token, path=path)
            r = self._send(method, path, fresh, error_cls, partition, **kwargs)
            if r.status_code == 401:
                self.session.expire("unauthorized_after_refresh")
                raise AuthError(AuthErrorReason.expired_token, path=path)
        reason = _status_reason(r.status_code)
        if reason is not None:
            logger.info("API %s %s -> HTTP %s", method, path, r.status_code)
            raise error_cls(reason, partition, _detail(r), status=r.status_code)
        return r


def _json(r: requests.Response, error_cls: Type[DataError], partition: str) -> Any:
    if r.status_code == 204 or not r.content:
        return {}
    try:
        return r.json()
    except ValueError as e:
        raise error_cls(DataErrorReason.network_unavailable, partition, "Unexpected response from the server.") from e


def _detail(r: requests.Response) -> Optional[str]:
    try:
        body = r.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])[:300]
    return None
