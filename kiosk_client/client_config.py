"""Configuration helpers for the kiosk display client."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from kiosk_core.config_resolver import DEFAULT_CONFIG_BASE_URL

CLIENT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CLIENT_DIR.parent

SETTINGS_FILENAME = "kiosk_settings.json"
SETTINGS_ENV_VAR = "KIOSK_SETTINGS_FILE"
CONFIG_URL_ENV_VAR = "KIOSK_CONFIG_BASE_URL"
TELEMETRY_URL_ENV_VAR = "KIOSK_TELEMETRY_URL"
LOGGER_ID_ENV_VAR = "KIOSK_LOGGER_ID"

DEFAULT_TELEMETRY_BASE_URL = "http://localhost:8080"
DEFAULT_LOGGER_ID = "rm-displays"
_ORIENTATIONS = {"vertical", "horizontal"}
_MIN_TIMEOUT = 0.5
_MAX_TIMEOUT = 60.0


@dataclass
class InitialClientSettings:
    """Values used to bootstrap the client before any display config is known."""

    config_base_url: str = DEFAULT_CONFIG_BASE_URL
    telemetry_base_url: str = DEFAULT_TELEMETRY_BASE_URL
    logger_id: str = DEFAULT_LOGGER_ID
    request_timeout_seconds: float = 5.0
    state_path: Optional[Path] = None
    client_log_retention: int = 5
    fullscreen: bool = True
    group_orientation: str = "vertical"


def resolve_settings_path(cli_value: Optional[str] = None, *, environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    if cli_value:
        return Path(cli_value).expanduser().resolve()
    env_override = env.get(SETTINGS_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()
    return (PROJECT_ROOT / SETTINGS_FILENAME).resolve()


def _clean_url(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    text = value.strip().rstrip("/")
    if not text.startswith(("http://", "https://")):
        return fallback
    return text


def _coerce_flag(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in {"1", "true", "yes", "on"}:
            return True
        if token in {"0", "false", "no", "off"}:
            return False
    return fallback


def _clean_text(value: Any, fallback: str) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def load_initial_settings(
    settings_path: Path,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> InitialClientSettings:
    """Read bootstrap values from kiosk_settings.json, then apply env overrides.

    A missing or unreadable file yields the defaults; a bad individual field
    falls back to its own default without discarding the rest.
    """
    defaults = InitialClientSettings()
    env = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    try:
        raw = settings_path.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        raw = None
    if raw is not None:
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError:
            loaded = None
        if isinstance(loaded, dict):
            data = loaded

    config_url = _clean_url(data.get("config_base_url"), defaults.config_base_url)
    telemetry_url = _clean_url(data.get("telemetry_base_url"), defaults.telemetry_base_url)
    logger_id = _clean_text(data.get("logger_id"), defaults.logger_id)

    try:
        timeout = float(data.get("request_timeout_seconds", defaults.request_timeout_seconds))
    except (TypeError, ValueError):
        timeout = defaults.request_timeout_seconds
    if timeout != timeout:  # NaN
        timeout = defaults.request_timeout_seconds
    timeout = max(_MIN_TIMEOUT, min(timeout, _MAX_TIMEOUT))

    retention = defaults.client_log_retention
    try:
        retention = int(data.get("client_log_retention", retention))
    except (TypeError, ValueError):
        retention = defaults.client_log_retention

    state_path: Optional[Path] = None
    state_value = data.get("state_path")
    if isinstance(state_value, str) and state_value.strip():
        candidate = Path(state_value.strip()).expanduser()
        if not candidate.is_absolute():
            candidate = settings_path.parent / candidate
        state_path = candidate

    fullscreen = _coerce_flag(data.get("fullscreen"), defaults.fullscreen)
    orientation = str(data.get("group_orientation", defaults.group_orientation) or "").strip().lower()
    if orientation not in _ORIENTATIONS:
        orientation = defaults.group_orientation

    config_url = _clean_url(env.get(CONFIG_URL_ENV_VAR), config_url)
    telemetry_url = _clean_url(env.get(TELEMETRY_URL_ENV_VAR), telemetry_url)
    logger_id = _clean_text(env.get(LOGGER_ID_ENV_VAR), logger_id)

    return InitialClientSettings(
        config_base_url=config_url,
        telemetry_base_url=telemetry_url,
        logger_id=logger_id,
        request_timeout_seconds=timeout,
        state_path=state_path,
        client_log_retention=max(1, retention),
        fullscreen=fullscreen,
        group_orientation=orientation,
    )
