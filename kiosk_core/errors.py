"""Error taxonomy shared by the kiosk core and the telemetry client."""
from __future__ import annotations

from typing import Optional


class KioskError(Exception):
    """Base class for every recoverable failure raised by the display stack."""


class ConfigNotFound(KioskError):
    """The config host answered with a non-success status for a device id."""

    def __init__(self, device_id: str, status: Optional[int] = None) -> None:
        detail = f" (status {status})" if status is not None else ""
        super().__init__(f"Invalid config ID '{device_id}'{detail}")
        self.device_id = device_id
        self.status = status


class MalformedConfig(KioskError):
    """A config document was not JSON or did not match the display tree shape."""


class StorageReadError(KioskError):
    """The local key-value store could not be read."""


class StorageWriteError(KioskError):
    """The local key-value store could not be written."""


class TelemetryError(KioskError):
    """Base class for failures of HTTP or WebSocket calls."""


class ValidationError(TelemetryError):
    """Required fields were missing; raised before any network traffic."""


class TransportError(TelemetryError):
    """Network failure or non-success HTTP status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RequestTimeout(TelemetryError):
    """The per-call deadline elapsed and the in-flight request was cancelled."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Request timed out after {int(round(timeout * 1000))}ms")
        self.timeout = timeout


class TelemetryServerError(TelemetryError):
    """An ``error`` frame received on a live log stream."""


__all__ = [
    "KioskError",
    "ConfigNotFound",
    "MalformedConfig",
    "StorageReadError",
    "StorageWriteError",
    "TelemetryError",
    "ValidationError",
    "TransportError",
    "RequestTimeout",
    "TelemetryServerError",
]
