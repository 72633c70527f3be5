"""Normalise remote-control input into the two actions the session understands.

The input source (a remote, a keyboard binding, a test) only produces named
events. Anything that is not a known action or alias is ignored.
"""
from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

RELOAD = "reload"
RESTART = "restart"

_ALIASES: Mapping[str, str] = {
    "reload": RELOAD,
    "refresh": RELOAD,
    "refetch": RELOAD,
    "restart": RESTART,
    "reboot": RESTART,
    "relaunch": RESTART,
}

_LOGGER = logging.getLogger("KioskDisplay.RemoteControl")


def parse_remote_action(name: object) -> Optional[str]:
    if not isinstance(name, str):
        return None
    token = name.strip().lower().replace("_", "-")
    return _ALIASES.get(token)


class RemoteControlDispatcher:
    """Turn raw event names into session actions, dropping unknown ones."""

    def __init__(self, dispatch: Callable[[str], None]) -> None:
        self._dispatch = dispatch

    def handle(self, name: object) -> bool:
        action = parse_remote_action(name)
        if action is None:
            _LOGGER.debug("Ignoring unknown remote-control event: %r", name)
            return False
        _LOGGER.info("Remote-control event %r -> %s", name, action)
        self._dispatch(action)
        return True
