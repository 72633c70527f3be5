"""HTTP client for the telemetry collector.

Each call carries its own deadline. When it elapses the in-flight request is
cancelled and the call fails with ``RequestTimeout``, which callers can tell
apart from ``TransportError`` to apply a different backoff.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union
from urllib.parse import quote, urlsplit

import aiohttp

from kiosk_core.errors import RequestTimeout, TransportError, ValidationError
from log_telemetry.live_logs import LiveLogSubscription
from log_telemetry.log_types import LOG_LEVELS, LogEntry, LogEntryData, LogQuery, LogQueryResult, SendAck

DEFAULT_TIMEOUT_SECONDS = 5.0
_JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}

_LOGGER = logging.getLogger("KioskDisplay.Telemetry")

JsonDict = Dict[str, Any]


def _segment(value: str) -> str:
    return quote(value, safe="")


def _error_message(status: int, text: str) -> str:
    message = f"Request failed with status code {status}"
    try:
        payload = json.loads(text) if text else None
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = payload.get("error") or payload.get("message") or json.dumps(payload)
        return f"{message}: {detail}"
    if text:
        return f"{message}: {text}"
    return message


class TelemetryClient:
    """Request wrapper for register/unregister/send/query plus live streaming."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        parts = urlsplit(base_url)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError(f"Telemetry base URL must be http(s): {base_url!r}")
        self._base_url = base_url.rstrip("/")
        self._timeout = max(0.001, float(timeout))
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def stream_url(self) -> str:
        parts = urlsplit(self._base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return f"{scheme}://{parts.netloc}/ws"

    async def ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # The per-call deadline below is the only timeout in effect.
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None and self._owns_session and not session.closed:
            await session.close()
        _LOGGER.debug("Telemetry client closed")

    # Request plumbing -------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            return await asyncio.wait_for(self._perform(method, url, body, params), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            _LOGGER.debug("%s %s cancelled after %.3fs", method, url, self._timeout)
            raise RequestTimeout(self._timeout) from exc

    async def _perform(
        self,
        method: str,
        url: str,
        body: Optional[Mapping[str, Any]],
        params: Optional[Mapping[str, str]],
    ) -> Any:
        session = await self.ensure_session()
        kwargs: Dict[str, Any] = {"headers": _JSON_HEADERS}
        if body is not None:
            kwargs["data"] = json.dumps(body)
        if params:
            kwargs["params"] = dict(params)
        try:
            async with session.request(method, url, **kwargs) as response:
                status = response.status
                raw = await response.read()
        except aiohttp.ClientError as exc:
            raise TransportError(f"Network error or failed request: {exc}") from exc
        if not 200 <= status < 300:
            raise TransportError(_error_message(status, raw.decode("utf-8", errors="replace")), status=status)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TransportError(f"Response is not valid UTF-8: {exc}", status=status) from exc
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError as exc:
            raise TransportError(f"Invalid JSON response: {exc}", status=status) from exc

    # Operations -------------------------------------------------------------

    async def register(self, logger_id: str) -> JsonDict:
        if not logger_id:
            raise ValidationError("Logger ID is required.")
        return await self._request("POST", f"/register/{_segment(logger_id)}")

    async def unregister(self, logger_id: str) -> JsonDict:
        if not logger_id:
            raise ValidationError("Logger ID is required.")
        return await self._request("POST", f"/unregister/{_segment(logger_id)}")

    async def send(self, logger_id: str, project_id: str, entry: LogEntryData) -> SendAck:
        if not logger_id:
            raise ValidationError("Logger ID is required.")
        if not project_id:
            raise ValidationError("Project ID is required.")
        if entry is None or not entry.level or not entry.message:
            raise ValidationError("Log level and message are required.")
        if entry.level not in LOG_LEVELS:
            raise ValidationError(f"Unknown log level {entry.level!r}")
        payload = await self._request(
            "POST",
            f"/log/{_segment(logger_id)}/{_segment(project_id)}",
            body=entry.to_payload(),
        )
        if not isinstance(payload, dict):
            raise TransportError("Unexpected response to log submission")
        return SendAck(id=str(payload.get("id", "")), message=str(payload.get("message", "")))

    async def query(self, options: Optional[LogQuery] = None) -> LogQueryResult:
        params = (options or LogQuery()).to_params()
        payload = await self._request("GET", "/api/logs", params=params)
        if not isinstance(payload, dict):
            raise TransportError("Unexpected response to log query")
        raw_entries = payload.get("data") or []
        if not isinstance(raw_entries, list):
            raise TransportError("Log query returned a non-list data field")
        entries = []
        for raw in raw_entries:
            if not isinstance(raw, dict):
                raise TransportError("Log query returned a malformed entry")
            try:
                entries.append(LogEntry.from_payload(raw))
            except ValueError as exc:
                raise TransportError(f"Log query returned a malformed entry: {exc}") from exc
        try:
            count = int(payload.get("count", len(entries)))
        except (TypeError, ValueError):
            count = len(entries)
        return LogQueryResult(count=count, entries=entries)

    def subscribe(
        self,
        project_ids: Union[str, Sequence[str]],
        on_log: Callable[[LogEntry], None],
        *,
        on_open: Optional[Callable[[list], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_close: Optional[Callable[[Optional[int], str], None]] = None,
    ) -> LiveLogSubscription:
        """Open a live log stream; must be called from the running event loop."""
        subscription = LiveLogSubscription(
            self,
            project_ids,
            on_log,
            on_open=on_open,
            on_error=on_error,
            on_close=on_close,
        )
        subscription.start()
        return subscription


__all__ = ["TelemetryClient", "DEFAULT_TIMEOUT_SECONDS"]
