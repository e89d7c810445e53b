from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from careconnect.core.events.bus import EventBusConfig


class BackendMode(str, Enum):
    rest = "rest"
    memory = "memory"


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_url: str = "http://localhost:8000/api"
    timeout_seconds: float = Field(default=10.0, gt=0, le=300)
    poll_interval_seconds: Optional[float] = Field(default=None, ge=1.0, le=3600)

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        v = str(v or "").strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v


class BackendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: BackendMode = BackendMode.rest


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    path: str = "secure/session.json"
    encrypted: bool = False
    key_path: str = "secure/session.key"


class GuardConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    login_path: str = "/login"
    preserve_deep_link: bool = False

    @field_validator("login_path")
    @classmethod
    def _absolute(cls, v: str) -> str:
        if not str(v).startswith("/"):
            raise ValueError("login_path must start with '/'")
        return str(v)


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    bind_host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=list)

    @field_validator("allowed_origins")
    @classmethod
    def _no_wildcard(cls, v: List[str]) -> List[str]:
        if any(o == "*" for o in v):
            raise ValueError("Wildcard CORS origins are not allowed.")
        return v


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = str(v).upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return v


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    api: ApiConfig = Field(default_factory=ApiConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    guard: GuardConfig = Field(default_factory=GuardConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    events: EventBusConfig = Field(default_factory=EventBusConfig)
