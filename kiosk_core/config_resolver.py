"""Fetch a device's display tree from the remote config host."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import aiohttp

from kiosk_core.display_tree import DisplayNode, parse_tree
from kiosk_core.errors import ConfigNotFound, RequestTimeout, TransportError, ValidationError

DEFAULT_CONFIG_BASE_URL = "https://raw.githubusercontent.com/RMHEDGE/rm-displays/refs/heads/main"

_LOGGER = logging.getLogger("KioskDisplay.ConfigResolver")


class ConfigResolver:
    """Single GET of ``<base_url>/<device_id>.json``; no retry, the caller decides."""

    def __init__(
        self,
        base_url: str = DEFAULT_CONFIG_BASE_URL,
        *,
        timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = max(0.001, float(timeout))
        self._session = session
        self._owns_session = session is None

    def url_for(self, device_id: str) -> str:
        return f"{self._base_url}/{quote(device_id, safe='')}.json"

    async def fetch(self, device_id: str) -> DisplayNode:
        if not device_id:
            raise ValidationError("Device ID is required.")
        url = self.url_for(device_id)
        _LOGGER.debug("Fetching display config from %s", url)
        try:
            status, body = await asyncio.wait_for(self._get(url), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise RequestTimeout(self._timeout) from exc
        if not 200 <= status < 300:
            raise ConfigNotFound(device_id, status)
        tree = parse_tree(body)
        _LOGGER.info("Resolved display config for %s", device_id)
        return tree

    async def _get(self, url: str) -> tuple[int, bytes]:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        try:
            async with self._session.get(url) as response:
                return response.status, await response.read()
        except aiohttp.ClientError as exc:
            raise TransportError(f"Failed to reach config host: {exc}") from exc

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None and self._owns_session and not session.closed:
            await session.close()
