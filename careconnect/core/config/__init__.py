from careconnect.core.config.loader import ConfigLoader, ConfigPaths, apply_env_overrides
from careconnect.core.config.models import (
    ApiConfig,
    AppConfig,
    BackendConfig,
    BackendMode,
    GuardConfig,
    LoggingConfig,
    StorageConfig,
    WebConfig,
)

__all__ = [
    "ConfigLoader",
    "ConfigPaths",
    "apply_env_overrides",
    "ApiConfig",
    "AppConfig",
    "BackendConfig",
    "BackendMode",
    "GuardConfig",
    "LoggingConfig",
    "StorageConfig",
    "WebConfig",
]
