from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from careconnect.core.errors import AuthError, AuthErrorReason


class Role(str, Enum):
    admin = "admin"
    carer = "carer"
    manager = "manager"


# External spellings seen across backends; only mapped here, at the boundary.
ROLE_SYNONYMS: Dict[str, Role] = {
    "admin": Role.admin,
    "administrator": Role.admin,
    "carer": Role.carer,
    "caretaker": Role.carer,
    "care_worker": Role.carer,
    "manager": Role.manager,
}


def normalize_role(raw: Any) -> Role:
    if isinstance(raw, Role):
        return raw
    key = str(raw or "").strip().lower()
    try:
        return ROLE_SYNONYMS[key]
    except KeyError:
        raise AuthError(AuthErrorReason.invalid_profile, role=key) from None


class Identity(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: Union[int, str]
    username: str = ""
    display_name: str = ""
    role: Role
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def _canonical_role(cls, v: Any) -> Role:
        return normalize_role(v)

    @classmethod
    def from_profile(cls, data: Dict[str, Any]) -> "Identity":
        """
        Build from a whoami payload. Raises AuthError(invalid_profile) when the
        payload has no id or an unknown role.
        """
        if not isinstance(data, dict) or data.get("id") in (None, ""):
            raise AuthError(AuthErrorReason.invalid_profile)
        role = normalize_role(data.get("role"))
        first = str(data.get("first_name") or "").strip()
        last = str(data.get("last_name") or "").strip()
        username = str(data.get("username") or "")
        display = str(data.get("display_name") or "").strip() or " ".join(p for p in (first, last) if p) or username
        return cls(
            id=data["id"],
            username=username,
            display_name=display,
            role=role,
            email=data.get("email"),
            first_name=first,
            last_name=last,
            phone=data.get("phone"),
        )


class TokenPair(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    access: str = Field(min_length=1)
    refresh: Optional[str] = None


class SessionState(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    identity: Optional[Identity] = None
    loading: bool = False

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    @property
    def role(self) -> Optional[Role]:
        return self.identity.role if self.identity is not None else None
