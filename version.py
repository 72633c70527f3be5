"""Version string for the kiosk display client.

Release builds promote DEBUG records to INFO in the client log; dev builds
keep them at DEBUG. ``KIOSK_DISPLAY_DEV_MODE`` forces either mode.
"""
from __future__ import annotations

import os
import re
from typing import Optional

__version__ = "0.3.0"
DEV_MODE_ENV_VAR = "KIOSK_DISPLAY_DEV_MODE"

_TRUE_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_TOKENS = frozenset({"0", "false", "no", "off"})
# "0.4.0-dev", "0.4.0.dev2", "1.0-dev-rc1"
_DEV_MARKER = re.compile(r"(?:^|[.-])dev\d*(?:$|[.-])")


def _env_override() -> Optional[bool]:
    raw = os.getenv(DEV_MODE_ENV_VAR)
    if raw is None:
        return None
    token = raw.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def is_dev_build(version: Optional[str] = None) -> bool:
    override = _env_override()
    if override is not None:
        return override
    identifier = (version or __version__).strip().lower()
    return _DEV_MARKER.search(identifier) is not None
