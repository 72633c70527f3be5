from __future__ import annotations

import asyncio

import pytest

from kiosk_core.bridge import ConsoleBridge
from kiosk_core.errors import RequestTimeout, TransportError
from kiosk_core.remote_control import RELOAD, RESTART, RemoteControlDispatcher, parse_remote_action
from log_telemetry.log_types import LogEntryData, SendAck


class FakeTelemetry:
    def __init__(self, failures=()) -> None:
        self.sent = []
        self._failures = list(failures)

    async def send(self, logger_id, project_id, entry):
        self.sent.append((logger_id, project_id, entry))
        if self._failures:
            raise self._failures.pop(0)
        return SendAck(id=str(len(self.sent)), message="ok")


def test_bridge_tags_entries_with_logger_and_device():
    telemetry = FakeTelemetry()

    async def scenario():
        bridge = ConsoleBridge(telemetry, "rm-displays", "lobby")
        bridge.forward(LogEntryData("info", "one"))
        bridge.forward(LogEntryData("error", "two"))
        await bridge.drain()
        return bridge

    bridge = asyncio.run(scenario())
    assert [(l, p, e.message) for l, p, e in telemetry.sent] == [
        ("rm-displays", "lobby", "one"),
        ("rm-displays", "lobby", "two"),
    ]
    assert bridge.sent == 2 and bridge.failed == 0
    assert bridge.pending == 0


def test_bridge_send_failure_notifies_without_reshipping():
    telemetry = FakeTelemetry(failures=[TransportError("offline"), RequestTimeout(5.0)])
    notices = []

    async def scenario():
        bridge = ConsoleBridge(telemetry, "rm-displays", "lobby", notify=lambda title, detail: notices.append((title, detail)))
        bridge.forward(LogEntryData("info", "one"))
        bridge.forward(LogEntryData("info", "two"))
        await bridge.drain()
        return bridge

    bridge = asyncio.run(scenario())
    assert bridge.failed == 2
    # Each failure is one attempt; nothing is sent about the failure itself.
    assert len(telemetry.sent) == 2
    assert notices == [
        ("Failed to send log", "offline"),
        ("Failed to send log", "Request timed out after 5000ms"),
    ]


def test_bridge_notify_errors_are_contained():
    telemetry = FakeTelemetry(failures=[TransportError("offline")])

    def _explode(title, detail):
        raise RuntimeError("banner broke")

    async def scenario():
        bridge = ConsoleBridge(telemetry, "rm-displays", "lobby", notify=_explode)
        bridge.forward(LogEntryData("info", "one"))
        await bridge.drain()
        return bridge

    assert asyncio.run(scenario()).failed == 1


@pytest.mark.parametrize(
    "name, expected",
    [
        ("reload", RELOAD),
        (" Refresh ", RELOAD),
        ("refetch", RELOAD),
        ("RESTART", RESTART),
        ("reboot", RESTART),
        ("relaunch", RESTART),
        ("volume_up", None),
        ("", None),
        (None, None),
        (42, None),
    ],
)
def test_parse_remote_action(name, expected):
    assert parse_remote_action(name) == expected


def test_dispatcher_forwards_known_actions_only():
    seen = []
    dispatcher = RemoteControlDispatcher(seen.append)
    assert dispatcher.handle("reload") is True
    assert dispatcher.handle("menu") is False
    assert dispatcher.handle("reboot") is True
    assert seen == [RELOAD, RESTART]
