"""Live log streaming over one WebSocket connection per subscription.

There is no automatic reconnect: once the connection closes the subscription
is finished and the caller decides whether to subscribe again.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence, Union

import aiohttp

from kiosk_core.errors import TelemetryServerError, TransportError
from log_telemetry.log_types import (
    STREAM_ERROR,
    STREAM_INFO_TYPES,
    STREAM_LOG,
    LogEntry,
    subscribe_frame,
)

if TYPE_CHECKING:
    from log_telemetry.log_client import TelemetryClient

_LOGGER = logging.getLogger("KioskDisplay.Telemetry")

OnLog = Callable[[LogEntry], None]
OnOpen = Callable[[List[str]], None]
OnError = Callable[[BaseException], None]
OnClose = Callable[[Optional[int], str], None]


class LiveLogSubscription:
    """Owns one duplex connection and dispatches its frames to callbacks."""

    def __init__(
        self,
        client: "TelemetryClient",
        project_ids: Union[str, Sequence[str]],
        on_log: OnLog,
        *,
        on_open: Optional[OnOpen] = None,
        on_error: Optional[OnError] = None,
        on_close: Optional[OnClose] = None,
    ) -> None:
        self._client = client
        if isinstance(project_ids, str):
            self._project_ids = [project_ids]
        else:
            self._project_ids = list(project_ids)
        self._on_log = on_log
        self._on_open = on_open
        self._on_error = on_error
        self._on_close = on_close
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._opened = False

    @property
    def project_ids(self) -> List[str]:
        return list(self._project_ids)

    @property
    def url(self) -> str:
        return self._client.stream_url

    @property
    def opened(self) -> bool:
        """True once the connection was established, even if it has since closed."""
        return self._opened

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        """Close from the caller side; ``on_close`` still fires once."""
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
        elif self._task is not None and not self._task.done():
            self._task.cancel()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    # Internal helpers -----------------------------------------------------

    async def _run(self) -> None:
        url = self.url
        code: Optional[int] = None
        reason = ""
        try:
            session = await self._client.ensure_session()
            try:
                ws = await session.ws_connect(url)
            except (aiohttp.ClientError, OSError) as exc:
                _LOGGER.warning("Live log connection to %s failed: %s", url, exc)
                self._report_error(TransportError(f"WebSocket error occurred: {exc}"))
                reason = str(exc)
                return
            self._ws = ws
            self._opened = True
            _LOGGER.info("Live log connection opened to %s", url)
            for project_id in self._project_ids:
                await ws.send_str(json.dumps(subscribe_frame(project_id)))
            self._safe_call(self._on_open, list(self._project_ids))
            while True:
                message = await ws.receive()
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(message.data)
                elif message.type == aiohttp.WSMsgType.BINARY:
                    try:
                        self._handle_frame(message.data.decode("utf-8"))
                    except UnicodeDecodeError as exc:
                        self._report_error(exc)
                elif message.type == aiohttp.WSMsgType.CLOSE:
                    code = message.data if isinstance(message.data, int) else ws.close_code
                    reason = message.extra or ""
                    break
                elif message.type == aiohttp.WSMsgType.ERROR:
                    _LOGGER.warning("Live log connection error: %s", ws.exception())
                    self._report_error(TransportError("WebSocket error occurred"))
                    break
                elif message.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break
            if not ws.closed:
                await ws.close()
            if code is None:
                code = ws.close_code
        finally:
            self._closed.set()
            _LOGGER.info("Live log connection closed. Code: %s, Reason: %s", code, reason)
            self._safe_call(self._on_close, code, reason)

    def _handle_frame(self, text: str) -> None:
        try:
            message = json.loads(text)
            if not isinstance(message, dict):
                raise ValueError("Stream frame is not a JSON object")
            frame_type = message.get("type")
            if frame_type == STREAM_LOG:
                data = message.get("data")
                if isinstance(data, dict):
                    self._on_log(LogEntry.from_payload(data))
            elif frame_type in STREAM_INFO_TYPES:
                if frame_type == "connected":
                    _LOGGER.info("Live log server message: %s", message.get("message"))
                else:
                    _LOGGER.info("Live log %s project %s", frame_type, message.get("projectId"))
            elif frame_type == STREAM_ERROR:
                _LOGGER.error("Live log server error: %s", message.get("message"))
                self._report_error(TelemetryServerError(f"Server WebSocket error: {message.get('message')}"))
            else:
                _LOGGER.debug("Ignoring live log frame of type %r", frame_type)
        except Exception as exc:
            _LOGGER.error("Error processing live log frame: %s", exc)
            self._report_error(exc)

    def _report_error(self, error: BaseException) -> None:
        self._safe_call(self._on_error, error)

    @staticmethod
    def _safe_call(callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            _LOGGER.exception("Live log callback raised")


__all__ = ["LiveLogSubscription"]
