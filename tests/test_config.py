from __future__ import annotations

import json
import os

import pytest

from careconnect.core.config import AppConfig, BackendMode, ConfigLoader, ConfigPaths, WebConfig, apply_env_overrides
from careconnect.core.errors import ConfigError


@pytest.fixture
def paths(tmp_path):
    return ConfigPaths(root=str(tmp_path))


def _write(paths, obj):  # noqa: ANN001
    os.makedirs(paths.config_dir, exist_ok=True)
    with open(paths.app, "w", encoding="utf-8") as f:
        f.write(obj if isinstance(obj, str) else json.dumps(obj))


def test_defaults_without_file(paths):
    cfg = ConfigLoader(paths).load(env={})
    assert cfg.api.base_url == "http://localhost:8000/api"
    assert cfg.backend.mode == BackendMode.rest
    assert cfg.web.allowed_origins == []


def test_file_and_env_overlay(paths):
    _write(paths, {"api": {"base_url": "https://care.example/api/"}, "web": {"port": 9000}})
    cfg = ConfigLoader(paths).load(env={"CARECONNECT_PORT": "9100", "CARECONNECT_BACKEND": "memory", "CARECONNECT_STORE_ENCRYPTED": "yes"})
    assert cfg.api.base_url == "https://care.example/api"
    assert cfg.web.port == 9100
    assert cfg.backend.mode == BackendMode.memory
    assert cfg.storage.encrypted is True


def test_bad_env_value_raises(paths):
    with pytest.raises(ConfigError):
        ConfigLoader(paths).load(env={"CARECONNECT_PORT": "eighty"})


def test_invalid_values_raise(paths):
    _write(paths, {"api": {"base_url": "ftp://nope"}})
    with pytest.raises(ConfigError) as ei:
        ConfigLoader(paths).load(env={})
    assert ei.value.context["errors"]


def test_unknown_keys_rejected(paths):
    _write(paths, {"surprise": True})
    with pytest.raises(ConfigError):
        ConfigLoader(paths).load(env={})


def test_corrupt_file_uses_defaults_and_is_quarantined(paths):
    _write(paths, "{broken")
    cfg = ConfigLoader(paths).load(env={})
    assert cfg == AppConfig()
    assert not os.path.exists(paths.app)
    assert any(n.endswith(".corrupt") for n in os.listdir(paths.backups_dir))


def test_save_round_trip(paths):
    loader = ConfigLoader(paths)
    cfg = AppConfig.model_validate({"guard": {"preserve_deep_link": True}})
    loader.save(cfg)
    assert loader.load(env={}).guard.preserve_deep_link is True


def test_wildcard_origin_rejected():
    with pytest.raises(Exception):
        WebConfig(allowed_origins=["*"])


def test_apply_env_overrides_leaves_input_untouched():
    raw = {"api": {"timeout_seconds": 3}}
    out = apply_env_overrides(raw, {"CARECONNECT_HTTP_TIMEOUT": "5"})
    assert raw["api"]["timeout_seconds"] == 3
    assert out["api"]["timeout_seconds"] == 5.0
