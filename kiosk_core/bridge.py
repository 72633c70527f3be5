"""Forward a leaf's console output to the telemetry collector."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, Set

from kiosk_core.errors import TelemetryError
from log_telemetry.log_types import LogEntryData, SendAck

_LOGGER = logging.getLogger("KioskDisplay.Bridge")

NotifyFn = Callable[[str, str], None]
SpawnFn = Callable[[Awaitable[None]], "asyncio.Future[None]"]


class LogSender(Protocol):
    async def send(self, logger_id: str, project_id: str, entry: LogEntryData) -> SendAck: ...


def _noop_notify(title: str, detail: str) -> None:
    return None


class ConsoleBridge:
    """Per-leaf adapter; ``forward`` never blocks the renderer.

    A failed send is reported on the banner and the local log only. Shipping
    the failure as another log entry could fail the same way and recurse.
    """

    def __init__(
        self,
        client: LogSender,
        logger_id: str,
        device_id: str,
        *,
        notify: Optional[NotifyFn] = None,
        spawn: Optional[SpawnFn] = None,
    ) -> None:
        self._client = client
        self._logger_id = logger_id
        self._device_id = device_id
        self._notify = notify or _noop_notify
        self._spawn = spawn or asyncio.ensure_future
        self._pending: Set["asyncio.Future[None]"] = set()
        self.sent = 0
        self.failed = 0

    @property
    def logger_id(self) -> str:
        return self._logger_id

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def pending(self) -> int:
        return len(self._pending)

    def forward(self, entry: LogEntryData) -> None:
        future = self._spawn(self._ship(entry))
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight sends; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _ship(self, entry: LogEntryData) -> None:
        try:
            await self._client.send(self._logger_id, self._device_id, entry)
        except TelemetryError as exc:
            self.failed += 1
            _LOGGER.warning("Failed to forward %s log from %s: %s", entry.level, self._device_id, exc)
            try:
                self._notify("Failed to send log", str(exc))
            except Exception:
                _LOGGER.exception("Log failure banner raised")
            return
        self.sent += 1
