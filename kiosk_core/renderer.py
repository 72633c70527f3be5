"""Render a display tree onto host surfaces and own each leaf's reload timer.

Each leaf gets its own ``LeafRuntime``: a surface, a one-shot reload timer and
an inbound message channel. Leaves never coordinate with their siblings; a
group has no timer of its own.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Protocol, Sequence

from kiosk_core.display_tree import DisplayNode, Group, Leaf
from kiosk_core.startup_script import CONSOLE_MESSAGE_TYPE, build_startup_script
from log_telemetry.log_types import LogEntryData

_LOGGER = logging.getLogger("KioskDisplay.Renderer")


class Surface(Protocol):
    """Rendering collaborator: a sandboxed web view in one layout slot."""

    def load(self, url: str, startup_script: str) -> None:
        """Create a fresh view for ``url``, discarding any previous one."""

    def teardown(self) -> None: ...

    def set_message_handler(self, handler: Optional[Callable[[str], None]]) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerLoop(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class EntrySink(Protocol):
    def forward(self, entry: LogEntryData) -> None: ...


def decode_console_message(text: Any) -> Optional[LogEntryData]:
    """Decode a ``Console`` frame from a surface; anything else yields ``None``."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(text, str):
        return None
    try:
        message = json.loads(text)
    except ValueError:
        return None
    if not isinstance(message, dict) or message.get("type") != CONSOLE_MESSAGE_TYPE:
        return None
    data = message.get("data")
    if not isinstance(data, dict):
        return None
    return LogEntryData.from_payload(data)


class LeafRuntime:
    """Lifecycle of one rendered leaf."""

    def __init__(
        self,
        leaf: Leaf,
        surface: Surface,
        sink: EntrySink,
        *,
        loop: TimerLoop,
        index: int = 0,
    ) -> None:
        self.leaf = leaf
        self.index = index
        self._surface = surface
        self._sink = sink
        self._loop = loop
        self._script = build_startup_script(leaf)
        self._timer: Optional[TimerHandle] = None
        self._running = False
        self.load_count = 0
        self.dropped_messages = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def reload_count(self) -> int:
        return max(0, self.load_count - 1)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._surface.set_message_handler(self.handle_message)
        self._load()

    def reload(self) -> None:
        """Tear the surface down and build it again from scratch."""
        if not self._running:
            return
        self._cancel_timer()
        _LOGGER.debug("Reloading leaf %d (%s)", self.index, self.leaf.url)
        self._surface.teardown()
        self._load()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._cancel_timer()
        self._surface.set_message_handler(None)
        self._surface.teardown()

    def handle_message(self, text: Any) -> None:
        if not self._running:
            return
        entry = decode_console_message(text)
        if entry is None:
            self.dropped_messages += 1
            _LOGGER.debug("Dropped unrecognised message from leaf %d", self.index)
            return
        self._sink.forward(entry)

    # Internal helpers -----------------------------------------------------

    def _load(self) -> None:
        self._surface.load(self.leaf.url, self._script)
        self.load_count += 1
        if self.leaf.reloads:
            self._timer = self._loop.call_later(self.leaf.reload_ms / 1000.0, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._running:
            self.reload()

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()


@dataclass
class RenderedTree:
    root: DisplayNode
    leaves: List[LeafRuntime] = field(default_factory=list)

    def __iter__(self) -> Iterator[LeafRuntime]:
        return iter(self.leaves)

    def __len__(self) -> int:
        return len(self.leaves)

    def stop(self) -> None:
        for runtime in self.leaves:
            try:
                runtime.stop()
            except Exception as exc:
                _LOGGER.warning("Failed to stop leaf %d cleanly: %s", runtime.index, exc)


def render(
    root: DisplayNode,
    surfaces: Sequence[Surface],
    *,
    loop: TimerLoop,
    sink_factory: Callable[[Leaf], EntrySink],
) -> RenderedTree:
    """Attach one runtime per leaf, in document order, and start them all.

    ``surfaces`` comes from the host's layout of the same tree and must hold
    exactly one surface per leaf, in document order.
    """
    rendered = RenderedTree(root=root)
    available = iter(surfaces)

    def _visit(node: DisplayNode) -> None:
        if isinstance(node, Group):
            for child in node.children:
                _visit(child)
            return
        try:
            surface = next(available)
        except StopIteration:
            raise ValueError("Host provided fewer surfaces than the tree has leaves") from None
        rendered.leaves.append(
            LeafRuntime(node, surface, sink_factory(node), loop=loop, index=len(rendered.leaves))
        )

    _visit(root)
    if next(available, None) is not None:
        raise ValueError("Host provided more surfaces than the tree has leaves")
    for runtime in rendered.leaves:
        runtime.start()
    _LOGGER.info("Rendered %d leaf surface(s)", len(rendered.leaves))
    return rendered
