from __future__ import annotations

import json
from pathlib import Path

import pytest

from kiosk_client.client_config import (
    DEFAULT_LOGGER_ID,
    DEFAULT_TELEMETRY_BASE_URL,
    SETTINGS_ENV_VAR,
    InitialClientSettings,
    load_initial_settings,
    resolve_settings_path,
)
from kiosk_core.config_resolver import DEFAULT_CONFIG_BASE_URL


def _write(tmp_path: Path, payload) -> Path:
    path = tmp_path / "kiosk_settings.json"
    path.write_text(json.dumps(payload) if not isinstance(payload, str) else payload, encoding="utf-8")
    return path


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = load_initial_settings(tmp_path / "absent.json", environ={})
    assert settings == InitialClientSettings()
    assert settings.config_base_url == DEFAULT_CONFIG_BASE_URL
    assert settings.telemetry_base_url == DEFAULT_TELEMETRY_BASE_URL
    assert settings.logger_id == DEFAULT_LOGGER_ID


def test_invalid_json_yields_defaults(tmp_path: Path) -> None:
    assert load_initial_settings(_write(tmp_path, "{nope"), environ={}) == InitialClientSettings()


def test_values_are_read_and_clamped(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {
            "config_base_url": "https://configs.example/displays/",
            "telemetry_base_url": "http://logs.local:8080",
            "logger_id": "  floor-2  ",
            "request_timeout_seconds": 600,
            "client_log_retention": 0,
            "fullscreen": False,
            "group_orientation": "HORIZONTAL",
            "state_path": "state/kiosk_state.json",
        },
    )
    settings = load_initial_settings(path, environ={})
    assert settings.config_base_url == "https://configs.example/displays"
    assert settings.telemetry_base_url == "http://logs.local:8080"
    assert settings.logger_id == "floor-2"
    assert settings.request_timeout_seconds == 60.0
    assert settings.client_log_retention == 1
    assert settings.fullscreen is False
    assert settings.group_orientation == "horizontal"
    assert settings.state_path == tmp_path / "state" / "kiosk_state.json"


def test_bad_fields_fall_back_individually(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        {
            "config_base_url": "ftp://nope",
            "request_timeout_seconds": "soon",
            "group_orientation": "diagonal",
            "logger_id": "kept",
        },
    )
    settings = load_initial_settings(path, environ={})
    assert settings.config_base_url == DEFAULT_CONFIG_BASE_URL
    assert settings.request_timeout_seconds == 5.0
    assert settings.group_orientation == "vertical"
    assert settings.logger_id == "kept"


def test_tiny_timeout_is_raised_to_minimum(tmp_path: Path) -> None:
    settings = load_initial_settings(_write(tmp_path, {"request_timeout_seconds": 0.01}), environ={})
    assert settings.request_timeout_seconds == 0.5


def test_environment_overrides_file(tmp_path: Path) -> None:
    path = _write(tmp_path, {"telemetry_base_url": "http://file.example", "logger_id": "file"})
    settings = load_initial_settings(
        path,
        environ={
            "KIOSK_TELEMETRY_URL": "https://env.example/",
            "KIOSK_LOGGER_ID": "env-logger",
            "KIOSK_CONFIG_BASE_URL": "not a url",
        },
    )
    assert settings.telemetry_base_url == "https://env.example"
    assert settings.logger_id == "env-logger"
    assert settings.config_base_url == DEFAULT_CONFIG_BASE_URL


def test_settings_path_resolution(tmp_path: Path) -> None:
    cli = tmp_path / "cli.json"
    env = tmp_path / "env.json"
    assert resolve_settings_path(str(cli), environ={SETTINGS_ENV_VAR: str(env)}) == cli.resolve()
    assert resolve_settings_path(None, environ={SETTINGS_ENV_VAR: str(env)}) == env.resolve()
    assert resolve_settings_path(None, environ={}).name == "kiosk_settings.json"


@pytest.mark.parametrize(
    "raw, expected",
    [("false", False), ("Off", False), ("0", False), (0, False), ("yes", True), (True, True), ("sometimes", True), (None, True)],
)
def test_fullscreen_flag_is_coerced(tmp_path: Path, raw, expected) -> None:
    settings = load_initial_settings(_write(tmp_path, {"fullscreen": raw}), environ={})
    assert settings.fullscreen is expected
