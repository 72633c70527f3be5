"""Configurable key bindings that raise remote-control events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from kiosk_core.remote_control import RELOAD, RESTART

if TYPE_CHECKING:
    from PyQt6.QtGui import QShortcut
    from PyQt6.QtWidgets import QWidget

DEFAULT_CONFIG_PATH = Path(__file__).with_name("keybindings.json")
LOGGER = logging.getLogger("KioskDisplay.Client")

DEFAULT_CONFIG = {
    "active_scheme": "keyboard_default",
    "schemes": {
        "keyboard_default": {
            "device_type": "keyboard",
            "display_name": "Keyboard (default)",
            "bindings": {
                RELOAD: ["F5"],
                RESTART: ["Ctrl+Shift+R"],
            },
        },
    },
}


@dataclass
class ControlScheme:
    """Container for a set of bindings and some metadata."""

    name: str
    device_type: str
    display_name: str
    bindings: Dict[str, List[str]]


@dataclass
class BindingConfig:
    """Representation of the keybindings file contents."""

    schemes: Dict[str, ControlScheme]
    active_scheme: str
    source_path: Optional[Path]

    @classmethod
    def default(cls) -> "BindingConfig":
        return cls.from_payload(DEFAULT_CONFIG, None)

    @classmethod
    def from_payload(cls, payload: Dict, path: Optional[Path]) -> "BindingConfig":
        schemes = {
            name: ControlScheme(
                name=name,
                device_type=spec.get("device_type", "keyboard"),
                display_name=spec.get("display_name", name),
                bindings={
                    str(action): [str(item) for item in (inputs or [])]
                    for action, inputs in (spec.get("bindings") or {}).items()
                },
            )
            for name, spec in (payload.get("schemes") or {}).items()
            if isinstance(spec, dict)
        }
        active = payload.get("active_scheme")
        if active not in schemes:
            raise ValueError(f"Active scheme '{active}' is not defined in keybindings file {path}")
        return cls(schemes=schemes, active_scheme=active, source_path=path)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "BindingConfig":
        """Load bindings from disk, writing the default file if it is missing.

        An unreadable or invalid file falls back to the defaults.
        """
        path = path or DEFAULT_CONFIG_PATH
        if not path.exists():
            try:
                path.write_text(json.dumps(DEFAULT_CONFIG, indent=2), encoding="utf-8")
            except OSError as exc:
                LOGGER.debug("Could not write default keybindings to %s: %s", path, exc)
                return cls.default()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("keybindings root must be an object")
            return cls.from_payload(payload, path)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring keybindings file %s: %s", path, exc)
            return cls.default()

    def get_scheme(self, name: Optional[str] = None) -> ControlScheme:
        scheme_name = name or self.active_scheme
        try:
            return self.schemes[scheme_name]
        except KeyError as exc:
            raise ValueError(f"Unknown control scheme '{scheme_name}'") from exc


class BindingManager:
    """Applies the active scheme to a Qt widget as application-wide shortcuts."""

    def __init__(self, widget: "QWidget", config: BindingConfig) -> None:
        self.widget = widget
        self.config = config
        self._handlers: Dict[str, Callable[[], None]] = {}
        self._shortcuts: List["QShortcut"] = []

    def register_action(self, action_name: str, handler: Callable[[], None]) -> None:
        self._handlers[action_name] = handler

    @property
    def bound_sequences(self) -> List[str]:
        return [shortcut.key().toString() for shortcut in self._shortcuts]

    def activate(self, scheme_name: Optional[str] = None) -> None:
        from PyQt6.QtCore import Qt
        from PyQt6.QtGui import QKeySequence, QShortcut

        self.deactivate()
        scheme = self.config.get_scheme(scheme_name)
        for action, sequences in scheme.bindings.items():
            handler = self._handlers.get(action)
            if handler is None:
                LOGGER.debug("No handler registered for binding action '%s'", action)
                continue
            for sequence in sequences:
                key = QKeySequence(sequence)
                if key.isEmpty():
                    LOGGER.warning("Skipping invalid binding for action '%s': sequence='%s'", action, sequence)
                    continue
                shortcut = QShortcut(key, self.widget)
                shortcut.setContext(Qt.ShortcutContext.ApplicationShortcut)
                shortcut.activated.connect(handler)
                self._shortcuts.append(shortcut)

    def deactivate(self) -> None:
        for shortcut in self._shortcuts:
            shortcut.setEnabled(False)
            shortcut.deleteLater()
        self._shortcuts.clear()
