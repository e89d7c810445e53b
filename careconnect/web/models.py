from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1, max_length=512)


class IdentityInfo(BaseModel):
    id: str
    username: Optional[str] = None
    display_name: str
    role: str
    email: Optional[str] = None


class SessionResponse(BaseModel):
    authenticated: bool
    loading: bool
    identity: Optional[IdentityInfo] = None
    home: Optional[str] = None


class NavigateResponse(BaseModel):
    state: str
    path: str
    redirect_to: Optional[str] = None
    title: Optional[str] = None
    partitions: List[str] = Field(default_factory=list)


class MutationRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class MutationResponse(BaseModel):
    ok: bool
    record: Optional[Dict[str, Any]] = None


class ReleaseResponse(BaseModel):
    released: int


class NotificationsResponse(BaseModel):
    notifications: List[Dict[str, Any]]
