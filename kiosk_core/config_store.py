"""Persistence of the last-known (display tree, device id) pair."""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

from kiosk_core.display_tree import DisplayNode, parse_tree, serialize_tree
from kiosk_core.errors import KioskError, StorageReadError, StorageWriteError

STATE_FILENAME = "kiosk_state.json"
CONFIG_KEY = "config"
DEVICE_ID_KEY = "deviceId"

_LOGGER = logging.getLogger("KioskDisplay.ConfigStore")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store used by tests and headless runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class JsonFileKeyValueStore:
    """String key-value pairs kept in a single JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> Dict[str, str]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageReadError(f"Failed to read {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageReadError(f"{self._path} does not contain a JSON object")
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            try:
                current = self._read_all()
            except StorageReadError:
                current = {}
            current[key] = value
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
                tmp_path.write_text(json.dumps(current, indent=2, sort_keys=True), encoding="utf-8")
                tmp_path.replace(self._path)
            except OSError as exc:
                raise StorageWriteError(f"Failed to write {self._path}: {exc}") from exc


@dataclass(frozen=True)
class StoredConfig:
    tree: DisplayNode
    device_id: str


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a save; both branches are surfaced to the operator."""

    ok: bool
    error: Optional[KioskError] = None

    @classmethod
    def success(cls) -> "SaveResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: KioskError) -> "SaveResult":
        return cls(ok=False, error=error)


class ConfigStore:
    """Reads and writes the stored pair through a key-value collaborator."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def load(self) -> Optional[StoredConfig]:
        """Return the stored pair, or ``None`` for anything short of a valid one."""
        try:
            raw_tree = self._kv.get(CONFIG_KEY)
            device_id = self._kv.get(DEVICE_ID_KEY)
        except Exception as exc:
            _LOGGER.debug("Stored config unreadable; treating as absent: %s", exc)
            return None
        if not raw_tree or not device_id:
            _LOGGER.debug("No stored config (config=%s deviceId=%s)", bool(raw_tree), bool(device_id))
            return None
        try:
            tree = parse_tree(raw_tree)
        except KioskError as exc:
            _LOGGER.debug("Stored config rejected; treating as absent: %s", exc)
            return None
        return StoredConfig(tree=tree, device_id=device_id)

    def save(self, tree: DisplayNode, device_id: str) -> SaveResult:
        try:
            self._kv.set(CONFIG_KEY, serialize_tree(tree))
            self._kv.set(DEVICE_ID_KEY, device_id)
        except StorageWriteError as exc:
            _LOGGER.warning("Failed to save config for %s: %s", device_id, exc)
            return SaveResult.failure(exc)
        except Exception as exc:
            _LOGGER.warning("Failed to save config for %s: %s", device_id, exc)
            return SaveResult.failure(StorageWriteError(str(exc)))
        _LOGGER.debug("Saved config for device %s", device_id)
        return SaveResult.success()


def resolve_state_path(root: Optional[Path] = None) -> Path:
    base = root if root is not None else Path(__file__).resolve().parent.parent
    return base / STATE_FILENAME
