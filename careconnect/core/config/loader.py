from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from careconnect.core.config.models import AppConfig
from careconnect.core.errors import ConfigError


logger = logging.getLogger(__name__)


def _as_bool(v: str) -> bool:
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "on"}:
        return True
    if s in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"not a boolean: {v!r}")


# env var -> (section, field, caster)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "CARECONNECT_API_URL": ("api", "base_url", str),
    "CARECONNECT_HTTP_TIMEOUT": ("api", "timeout_seconds", float),
    "CARECONNECT_POLL_INTERVAL": ("api", "poll_interval_seconds", float),
    "CARECONNECT_BACKEND": ("backend", "mode", str),
    "CARECONNECT_STORE_PATH": ("storage", "path", str),
    "CARECONNECT_STORE_ENCRYPTED": ("storage", "encrypted", _as_bool),
    "CARECONNECT_STORE_KEY_PATH": ("storage", "key_path", str),
    "CARECONNECT_LOG_DIR": ("logging", "log_dir", str),
    "CARECONNECT_LOG_LEVEL": ("logging", "level", str),
    "CARECONNECT_BIND_HOST": ("web", "bind_host", str),
    "CARECONNECT_PORT": ("web", "port", int),
}


@dataclass(frozen=True)
class ConfigPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def app(self) -> str:
        return os.path.join(self.config_dir, "app.json")

    def resolve(self, path: str) -> str:
        """Relative paths in the config are relative to the root."""
        return path if os.path.isabs(path) else os.path.join(self.root, path)


def _atomic_write_json(path: str, data: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=os.path.dirname(path))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp_path, path)
    finally:
        try:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        except OSError:
            pass


class ConfigLoader:
    def __init__(self, paths: Optional[ConfigPaths] = None):
        self.paths = paths or ConfigPaths()

    def load(self, env: Optional[Mapping[str, str]] = None) -> AppConfig:
        raw = self._read_file()
        raw = apply_env_overrides(raw, os.environ if env is None else env)
        try:
            return AppConfig.model_validate(raw)
        except PydanticValidationError as e:
            raise ConfigError("Invalid configuration.", errors=[_short(err) for err in e.errors()]) from e

    def save(self, cfg: AppConfig) -> None:
        _atomic_write_json(self.paths.app, cfg.model_dump(mode="json"))

    def _read_file(self) -> Dict[str, Any]:
        path = self.paths.app
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except json.JSONDecodeError as e:
            moved = self._quarantine(path)
            logger.warning("Config file %s is corrupt (%s); using defaults. Moved to %s", path, e, moved)
            return {}
        if not isinstance(obj, dict):
            raise ConfigError("Configuration file must contain a JSON object.", path=path)
        return obj

    def _quarantine(self, path: str) -> Optional[str]:
        os.makedirs(self.paths.backups_dir, exist_ok=True)
        out = os.path.join(self.paths.backups_dir, f"{os.path.basename(path)}.{time.strftime('%Y%m%d_%H%M%S', time.gmtime())}.corrupt")
        try:
            shutil.move(path, out)
        except OSError:
            return None
        return out


def apply_env_overrides(raw: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {k: (dict(v) if isinstance(v, dict) else v) for k, v in (raw or {}).items()}
    for name, (section, key, caster) in ENV_OVERRIDES.items():
        if name not in env:
            continue
        try:
            value = caster(env[name])
        except ValueError as e:
            raise ConfigError(f"Invalid value for {name}.", variable=name) from e
        block = out.setdefault(section, {})
        if not isinstance(block, dict):
            raise ConfigError(f"Configuration section {section!r} must be an object.")
        block[key] = value
    return out


def _short(err: Dict[str, Any]) -> str:
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}"
