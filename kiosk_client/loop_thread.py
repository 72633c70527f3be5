"""Background thread that owns the asyncio loop holding all session state."""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable, Optional

_LOGGER = logging.getLogger("KioskDisplay.Client")

MainFactory = Callable[[], Awaitable[None]]


class LoopThread:
    """Run ``main()`` on a private event loop in a daemon thread.

    Other threads talk to the loop only through ``call_soon`` and ``submit``.
    """

    def __init__(self, main: MainFactory, *, name: str = "KioskDisplay-Loop") -> None:
        self._main = main
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready_event = threading.Event()
        self._start_error: Optional[BaseException] = None

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, timeout: float = 5.0) -> bool:
        """Start the loop thread; ``True`` once the loop is accepting calls."""
        if self.running:
            return True
        self._ready_event.clear()
        self._start_error = None
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        if not self._ready_event.wait(timeout=timeout):
            _LOGGER.warning("Session loop did not signal readiness within %.1fs", timeout)
            return False
        return self._start_error is None

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            _LOGGER.debug("Session loop unavailable; dropping call to %s", getattr(callback, "__name__", callback))
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop closed between the check and the call.
            _LOGGER.debug("Session loop closed; dropping call")

    def submit(self, coro: Awaitable[Any]) -> "concurrent.futures.Future[Any]":
        loop = self._loop
        if loop is None or loop.is_closed():
            raise RuntimeError("Session loop is not running")
        return asyncio.run_coroutine_threadsafe(coro, loop)  # type: ignore[arg-type]

    def join(self, timeout: float = 5.0) -> bool:
        worker = self._thread
        if worker is None:
            return True
        worker.join(timeout=timeout)
        if worker.is_alive():
            _LOGGER.warning("Session loop thread did not exit within %.1fs", timeout)
            return False
        self._thread = None
        return True

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        loop.call_soon(self._ready_event.set)
        try:
            loop.run_until_complete(self._main())
        except Exception as exc:
            self._start_error = exc
            _LOGGER.exception("Session loop terminated with error")
        finally:
            self._ready_event.set()
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            _LOGGER.debug("Session loop closed")
