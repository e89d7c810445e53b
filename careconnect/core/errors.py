from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from careconnect.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class CareConnectError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Auth ----
class AuthErrorReason(str, Enum):
    invalid_credentials = "invalid_credentials"
    expired_token = "expired_token"
    network_unavailable = "network_unavailable"
    invalid_profile = "invalid_profile"


AUTH_MESSAGES: Dict[AuthErrorReason, str] = {
    AuthErrorReason.invalid_credentials: "Invalid username or password.",
    AuthErrorReason.expired_token: "Your session has expired, please log in again.",
    AuthErrorReason.network_unavailable: "Unable to reach the server. Check your connection and try again.",
    AuthErrorReason.invalid_profile: "Your account profile could not be loaded.",
}


class AuthError(CareConnectError):
    def __init__(self, reason: AuthErrorReason, user_message: Optional[str] = None, **ctx: Any):
        self.reason = AuthErrorReason(reason)
        super().__init__(
            f"auth_{self.reason.value}",
            user_message or AUTH_MESSAGES[self.reason],
            severity=Severity.WARN,
            recoverable=self.reason != AuthErrorReason.invalid_profile,
            context=ctx,
        )


# ---- Data (subscriptions + mutations) ----
class DataErrorReason(str, Enum):
    permission_denied = "permission_denied"
    network_unavailable = "network_unavailable"
    partition_not_found = "partition_not_found"
    validation_failed = "validation_failed"


DATA_MESSAGES: Dict[DataErrorReason, str] = {
    DataErrorReason.permission_denied: "You do not have access to this data.",
    DataErrorReason.network_unavailable: "Unable to reach the server. Showing the last known data.",
    DataErrorReason.partition_not_found: "This data could not be found.",
    DataErrorReason.validation_failed: "Some fields are invalid.",
}


class SubscriptionError(CareConnectError):
    def __init__(self, reason: DataErrorReason, partition: str = "", user_message: Optional[str] = None, **ctx: Any):
        self.reason = DataErrorReason(reason)
        self.partition = str(partition)
        super().__init__(
            f"subscription_{self.reason.value}",
            user_message or DATA_MESSAGES[self.reason],
            severity=Severity.WARN,
            recoverable=True,
            context={"partition": self.partition, **ctx},
        )


class MutationError(CareConnectError):
    def __init__(self, reason: DataErrorReason, partition: str = "", user_message: Optional[str] = None, **ctx: Any):
        self.reason = DataErrorReason(reason)
        self.partition = str(partition)
        super().__init__(
            f"mutation_{self.reason.value}",
            user_message or DATA_MESSAGES[self.reason],
            severity=Severity.WARN,
            recoverable=True,
            context={"partition": self.partition, **ctx},
        )


# ---- Misc ----
class ValidationError(CareConnectError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ConfigError(CareConnectError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
