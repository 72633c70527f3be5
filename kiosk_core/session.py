"""Top-level session state machine for one display device.

All session state lives on a single asyncio loop and is only mutated while
handling one event from the inbox. Async work (fetches, saves, log shipping)
never touches state directly: it posts a completion event back into the inbox,
and a completion launched from a state that has since moved on is discarded.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Set, Tuple, Union

from kiosk_core.bridge import ConsoleBridge
from kiosk_core.config_store import ConfigStore, SaveResult
from kiosk_core.display_tree import DisplayNode, Leaf, leaf_count
from kiosk_core.errors import KioskError, StorageWriteError, TelemetryError, ValidationError
from kiosk_core.remote_control import RELOAD, RESTART, parse_remote_action
from kiosk_core.renderer import RenderedTree, Surface, TimerLoop, render
from log_telemetry.log_types import LogEntryData, SendAck

_LOGGER = logging.getLogger("KioskDisplay.Session")


class Phase(str, Enum):
    STARTUP = "startup"
    NEEDS_INPUT = "needsInput"
    DISPLAYING = "displaying"


class DisplayHost(Protocol):
    """UI collaborator; every call arrives on the session loop thread."""

    def show_loader(self) -> None: ...
    def show_needs_input(self) -> None: ...
    def mount(self, tree: DisplayNode) -> Sequence[Surface]: ...
    def toast(self, kind: str, title: str, detail: str = "") -> None: ...
    def restart(self) -> None: ...


class ConfigFetcher(Protocol):
    async def fetch(self, device_id: str) -> DisplayNode: ...


class TelemetrySink(Protocol):
    async def register(self, logger_id: str) -> Any: ...
    async def send(self, logger_id: str, project_id: str, entry: LogEntryData) -> SendAck: ...


# Inbox events ---------------------------------------------------------------

@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class SubmitDeviceId:
    device_id: str


@dataclass(frozen=True)
class RemoteControl:
    action: str


@dataclass(frozen=True)
class FetchCompleted:
    token: int
    purpose: str
    device_id: str
    launched_phase: Phase
    tree: Optional[DisplayNode] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class SaveCompleted:
    device_id: str
    result: SaveResult


@dataclass(frozen=True)
class Shutdown:
    pass


SessionEvent = Union[Start, SubmitDeviceId, RemoteControl, FetchCompleted, SaveCompleted, Shutdown]

_FETCH_SUBMIT = "submit"
_FETCH_RELOAD = "reload"


class SessionController:
    def __init__(
        self,
        store: ConfigStore,
        resolver: ConfigFetcher,
        telemetry: TelemetrySink,
        host: DisplayHost,
        *,
        logger_id: str,
        version: str = "",
        timer_loop: Optional[TimerLoop] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._telemetry = telemetry
        self._host = host
        self._logger_id = logger_id
        self._version = version
        self._timer_loop = timer_loop
        # Single worker: saves land in submission order.
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="KioskDisplay-Store")
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inbox: "asyncio.Queue[SessionEvent]" = asyncio.Queue()
        self._phase = Phase.STARTUP
        self._tree: Optional[DisplayNode] = None
        self._device_id: Optional[str] = None
        self._rendered: Optional[RenderedTree] = None
        self._bridges: List[ConsoleBridge] = []
        self._fetch_token = 0
        self._fetch_task: Optional["asyncio.Task[None]"] = None
        self._tasks: Set["asyncio.Future[Any]"] = set()
        self._registered = False
        self._stopped = False

    # Read-only view --------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def tree(self) -> Optional[DisplayNode]:
        return self._tree

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    @property
    def rendered(self) -> Optional[RenderedTree]:
        return self._rendered

    @property
    def fetch_in_flight(self) -> bool:
        return self._fetch_task is not None and not self._fetch_task.done()

    # Inbox -----------------------------------------------------------------

    def post(self, event: SessionEvent) -> None:
        """Queue an event; call from the loop thread."""
        self._inbox.put_nowait(event)

    async def process_next(self) -> SessionEvent:
        """Handle exactly one queued event."""
        self._loop = asyncio.get_running_loop()
        event = await self._inbox.get()
        try:
            self._dispatch(event)
        except Exception:
            _LOGGER.exception("Session failed handling %s", type(event).__name__)
        return event

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        _LOGGER.debug("Session loop started (phase=%s)", self._phase.value)
        while not self._stopped:
            await self.process_next()
        await self._teardown()
        _LOGGER.info("Session loop finished")

    # Dispatch --------------------------------------------------------------

    def _dispatch(self, event: SessionEvent) -> None:
        if isinstance(event, Start):
            self._on_start()
        elif isinstance(event, SubmitDeviceId):
            self._on_submit(event.device_id)
        elif isinstance(event, RemoteControl):
            self._on_remote_control(event.action)
        elif isinstance(event, FetchCompleted):
            self._on_fetch_completed(event)
        elif isinstance(event, SaveCompleted):
            self._on_save_completed(event)
        elif isinstance(event, Shutdown):
            self._stopped = True
        else:
            _LOGGER.warning("Ignoring unknown session event %r", event)

    def _on_start(self) -> None:
        if self._phase is not Phase.STARTUP:
            _LOGGER.debug("Start ignored in phase %s", self._phase.value)
            return
        self._host.show_loader()
        stored = self._store.load()
        if stored is None:
            _LOGGER.info("No stored config; asking the operator for a device ID")
            self._enter_needs_input()
            return
        _LOGGER.info("Loaded stored config for device %s", stored.device_id)
        if not self._display(stored.tree, stored.device_id):
            self._enter_needs_input()
            return
        startup_entry = LogEntryData(
            level="info",
            message="Display started",
            data={"version": self._version, "leaves": leaf_count(stored.tree), "source": "stored"},
        )
        self._spawn(self._announce(startup_entry))

    def _on_submit(self, raw_device_id: str) -> None:
        if self._phase is not Phase.NEEDS_INPUT:
            _LOGGER.debug("Device ID submission ignored in phase %s", self._phase.value)
            return
        device_id = (raw_device_id or "").strip()
        if not device_id:
            self._host.toast("error", "Failed to get config", str(ValidationError("Device ID is required.")))
            return
        self._host.toast("info", "Checking config...")
        self._launch_fetch(device_id, _FETCH_SUBMIT)

    def _on_remote_control(self, raw_action: str) -> None:
        action = parse_remote_action(raw_action)
        if action == RESTART:
            _LOGGER.info("Restart requested by remote control")
            if self._device_id:
                self._ship(LogEntryData(level="info", message="Display restart requested"))
            self._host.restart()
            return
        if action != RELOAD:
            _LOGGER.debug("Ignoring remote-control action %r", raw_action)
            return
        if self._phase is not Phase.DISPLAYING or not self._device_id:
            _LOGGER.debug("Reload ignored in phase %s", self._phase.value)
            return
        _LOGGER.info("Reloading config for device %s", self._device_id)
        self._launch_fetch(self._device_id, _FETCH_RELOAD)

    def _on_fetch_completed(self, event: FetchCompleted) -> None:
        if event.token != self._fetch_token or event.launched_phase is not self._phase:
            _LOGGER.debug(
                "Discarding stale %s fetch for %s (token=%d latest=%d)",
                event.purpose,
                event.device_id,
                event.token,
                self._fetch_token,
            )
            return
        if event.purpose == _FETCH_RELOAD and event.device_id != self._device_id:
            _LOGGER.debug("Discarding reload fetch for replaced device %s", event.device_id)
            return
        self._fetch_task = None
        if event.error is not None or event.tree is None:
            self._on_fetch_failed(event)
            return
        if not self._display(event.tree, event.device_id):
            return
        self._persist(event.tree, event.device_id)
        if event.purpose == _FETCH_SUBMIT:
            message = "Display configured"
        else:
            message = "Display config reloaded"
        self._spawn(
            self._announce(
                LogEntryData(level="info", message=message, data={"version": self._version, "leaves": leaf_count(event.tree)})
            )
        )

    def _on_fetch_failed(self, event: FetchCompleted) -> None:
        error = event.error or KioskError("Config fetch returned nothing")
        if event.purpose == _FETCH_SUBMIT:
            _LOGGER.warning("Failed to get config for %s: %s", event.device_id, error)
            self._host.toast("error", "Failed to get config", str(error))
            return
        _LOGGER.warning("Failed to reload config for %s; keeping current tree: %s", event.device_id, error)
        self._host.toast("error", "Failed to reload config", str(error))
        self._ship(
            LogEntryData(
                level="error",
                message="Failed to reload config",
                data={"error": str(error), "kind": type(error).__name__},
            )
        )

    def _on_save_completed(self, event: SaveCompleted) -> None:
        if event.result.ok:
            self._host.toast("success", "Saved config", "On load, this screen will be configured")
            return
        detail = str(event.result.error) if event.result.error is not None else "unknown error"
        self._host.toast("error", "Failed to save config", detail)

    # Transitions -----------------------------------------------------------

    def _enter_needs_input(self) -> None:
        self._phase = Phase.NEEDS_INPUT
        self._host.show_needs_input()

    def _display(self, tree: DisplayNode, device_id: str) -> bool:
        """Replace whatever is on screen with ``tree``; the old tree is never patched.

        On failure the previous tree and device ID are put back on screen.
        """
        previous = self._rendered
        self._rendered = None
        if previous is not None:
            previous.stop()
        try:
            self._rendered, self._bridges = self._mount(tree, device_id)
        except Exception as exc:
            _LOGGER.exception("Failed to render display tree for %s", device_id)
            self._host.toast("error", "Failed to display config", str(exc))
            self._restore_previous()
            return False
        self._device_id = device_id
        self._tree = tree
        self._phase = Phase.DISPLAYING
        return True

    def _mount(self, tree: DisplayNode, device_id: str) -> Tuple[RenderedTree, List[ConsoleBridge]]:
        bridges: List[ConsoleBridge] = []
        surfaces = self._host.mount(tree)
        rendered = render(
            tree,
            surfaces,
            loop=self._timer_loop or self._require_loop(),
            sink_factory=self._bridge_factory(device_id, bridges),
        )
        return rendered, bridges

    def _restore_previous(self) -> None:
        self._bridges = []
        if self._tree is None or not self._device_id:
            return
        try:
            self._rendered, self._bridges = self._mount(self._tree, self._device_id)
        except Exception:
            _LOGGER.exception("Failed to restore previous display tree for %s", self._device_id)

    def _bridge_factory(self, device_id: str, bridges: List[ConsoleBridge]) -> Callable[[Leaf], ConsoleBridge]:
        def _make(leaf: Leaf) -> ConsoleBridge:
            bridge = ConsoleBridge(
                self._telemetry,
                self._logger_id,
                device_id,
                notify=lambda title, detail: self._host.toast("error", title, detail),
                spawn=self._spawn,
            )
            bridges.append(bridge)
            return bridge

        return _make

    def _launch_fetch(self, device_id: str, purpose: str) -> None:
        previous = self._fetch_task
        if previous is not None and not previous.done():
            _LOGGER.debug("Cancelling superseded fetch (token=%d)", self._fetch_token)
            previous.cancel()
        self._fetch_token += 1
        token = self._fetch_token
        launched_phase = self._phase

        async def _fetch() -> None:
            try:
                tree = await self._resolver.fetch(device_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if not isinstance(exc, KioskError):
                    _LOGGER.exception("Unexpected error fetching config for %s", device_id)
                self.post(FetchCompleted(token, purpose, device_id, launched_phase, error=exc))
                return
            self.post(FetchCompleted(token, purpose, device_id, launched_phase, tree=tree))

        self._fetch_task = self._require_loop().create_task(_fetch())

    def _persist(self, tree: DisplayNode, device_id: str) -> None:
        loop = self._require_loop()
        future = loop.run_in_executor(self._executor, self._store.save, tree, device_id)

        def _done(fut: "asyncio.Future[SaveResult]") -> None:
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                result = SaveResult.failure(StorageWriteError(str(exc)))
            else:
                result = fut.result()
            self.post(SaveCompleted(device_id, result))

        future.add_done_callback(_done)
        self._track(future)

    # Telemetry -------------------------------------------------------------

    async def _announce(self, entry: LogEntryData) -> None:
        if not self._registered:
            try:
                await self._telemetry.register(self._logger_id)
                self._registered = True
            except TelemetryError as exc:
                _LOGGER.warning("Logger registration failed for %s: %s", self._logger_id, exc)
        await self._send(entry)

    def _ship(self, entry: LogEntryData) -> None:
        self._spawn(self._send(entry))

    async def _send(self, entry: LogEntryData) -> None:
        device_id = self._device_id
        if not device_id:
            return
        try:
            await self._telemetry.send(self._logger_id, device_id, entry)
        except TelemetryError as exc:
            # Never report a telemetry failure through telemetry.
            _LOGGER.warning("Failed to ship %s log entry: %s", entry.level, exc)

    # Plumbing --------------------------------------------------------------

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Awaitable[Any]) -> "asyncio.Future[Any]":
        future = asyncio.ensure_future(coro, loop=self._require_loop())
        self._track(future)
        return future

    def _track(self, future: "asyncio.Future[Any]") -> None:
        self._tasks.add(future)
        future.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait for background work started so far (sends, saves, fetch)."""
        pending = list(self._tasks)
        if self._fetch_task is not None:
            pending.append(self._fetch_task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close_clients(self) -> None:
        """Close the resolver and telemetry HTTP sessions, if they hold any."""
        for client in (self._resolver, self._telemetry):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as exc:
                _LOGGER.debug("Error closing %s: %s", type(client).__name__, exc)

    async def _teardown(self) -> None:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        if self._rendered is not None:
            self._rendered.stop()
            self._rendered = None
        for bridge in self._bridges:
            await bridge.drain()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._owns_executor:
            self._executor.shutdown(wait=False)


__all__ = [
    "Phase",
    "DisplayHost",
    "SessionController",
    "Start",
    "SubmitDeviceId",
    "RemoteControl",
    "FetchCompleted",
    "SaveCompleted",
    "Shutdown",
    "SessionEvent",
]
