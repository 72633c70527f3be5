from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from kiosk_core.bridge import ConsoleBridge
from kiosk_core.errors import RequestTimeout, TransportError, ValidationError
from log_telemetry.log_client import TelemetryClient
from log_telemetry.log_types import LogEntryData, LogQuery

ENTRY = {
    "id": "e1",
    "timestamp": "2024-05-01T10:00:00Z",
    "projectId": "lobby",
    "loggerId": "rm-displays",
    "level": "info",
    "message": "hello",
    "data": {"args": ["x"]},
}


class _Collector:
    """Minimal stand-in for the telemetry HTTP API."""

    def __init__(self) -> None:
        self.requests: list = []
        self.query_payload: object = {"count": 1, "data": [ENTRY]}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/register/{logger}", self.register)
        app.router.add_post("/unregister/{logger}", self.unregister)
        app.router.add_post("/log/{logger}/{project}", self.log)
        app.router.add_get("/api/logs", self.logs)
        return app

    async def register(self, request: web.Request) -> web.Response:
        self.requests.append(("register", request.match_info["logger"]))
        if request.match_info["logger"] == "taken":
            return web.json_response({"error": "Logger already registered"}, status=409)
        return web.json_response({"message": "registered"})

    async def unregister(self, request: web.Request) -> web.Response:
        self.requests.append(("unregister", request.match_info["logger"]))
        return web.Response(status=500, text="boom")

    async def log(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(("log", request.match_info["logger"], request.match_info["project"], body))
        if body.get("message") == "slow":
            await asyncio.sleep(1)
        if body.get("message") == "bad-bytes":
            return web.Response(body=b'{"id":"\xff"}', content_type="application/json", charset="utf-8")
        if body.get("message") == "not-json":
            return web.Response(text="<html>", content_type="text/html")
        return web.json_response({"id": "abc", "message": "Log received"})

    async def logs(self, request: web.Request) -> web.Response:
        self.requests.append(("query", dict(request.query)))
        return web.json_response(self.query_payload)


def _run(scenario, collector=None, *, timeout=2.0):
    collector = collector or _Collector()

    async def _main():
        server = TestServer(collector.app())
        await server.start_server()
        client = TelemetryClient(str(server.make_url("")), timeout=timeout)
        try:
            return await scenario(client)
        finally:
            await client.close()
            await server.close()

    return asyncio.run(_main()), collector


def test_send_posts_entry_and_returns_ack():
    ack, collector = _run(lambda c: c.send("rm-displays", "lobby", LogEntryData("warn", "careful", {"n": 1})))
    assert ack.id == "abc"
    assert ack.message == "Log received"
    assert collector.requests == [
        ("log", "rm-displays", "lobby", {"level": "warn", "message": "careful", "data": {"n": 1}})
    ]


@pytest.mark.parametrize(
    "logger_id, project_id, entry",
    [
        ("", "lobby", LogEntryData("info", "x")),
        ("rm-displays", "", LogEntryData("info", "x")),
        ("rm-displays", "lobby", LogEntryData("", "x")),
        ("rm-displays", "lobby", LogEntryData("info", "")),
        ("rm-displays", "lobby", LogEntryData("fatal", "x")),
    ],
)
def test_send_validates_before_any_request(logger_id, project_id, entry):
    collector = _Collector()
    with pytest.raises(ValidationError):
        _run(lambda c: c.send(logger_id, project_id, entry), collector)
    assert collector.requests == []


def test_register_success_and_conflict_message():
    payload, _ = _run(lambda c: c.register("rm-displays"))
    assert payload == {"message": "registered"}
    with pytest.raises(TransportError) as excinfo:
        _run(lambda c: c.register("taken"))
    assert excinfo.value.status == 409
    assert "Request failed with status code 409" in str(excinfo.value)
    assert "Logger already registered" in str(excinfo.value)


def test_unregister_plain_text_error_body():
    with pytest.raises(TransportError) as excinfo:
        _run(lambda c: c.unregister("rm-displays"))
    assert str(excinfo.value) == "Request failed with status code 500: boom"


def test_query_omits_unset_parameters():
    result, collector = _run(lambda c: c.query(LogQuery(limit=10, project_id="lobby")))
    assert collector.requests == [("query", {"limit": "10", "projectId": "lobby"})]
    assert result.count == 1
    entry = result.entries[0]
    assert (entry.id, entry.project_id, entry.logger_id, entry.level) == ("e1", "lobby", "rm-displays", "info")
    assert entry.data == {"args": ["x"]}


def test_query_without_options_sends_no_parameters():
    _, collector = _run(lambda c: c.query())
    assert collector.requests == [("query", {})]


def test_query_rejects_malformed_response():
    collector = _Collector()
    collector.query_payload = {"count": 1, "data": [{"id": "missing-fields"}]}
    with pytest.raises(TransportError):
        _run(lambda c: c.query(), collector)


def test_non_json_success_body_is_transport_error():
    with pytest.raises(TransportError):
        _run(lambda c: c.send("rm-displays", "lobby", LogEntryData("info", "not-json")))


def test_timeout_raises_request_timeout_at_deadline():
    collector = _Collector()

    async def scenario(client):
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RequestTimeout) as excinfo:
            await client.send("rm-displays", "lobby", LogEntryData("info", "slow"))
        assert str(excinfo.value) == "Request timed out after 200ms"
        # Returned at the deadline instead of waiting for the response.
        assert loop.time() - started < 0.9
        return True

    ok, _ = _run(scenario, collector, timeout=0.2)
    assert ok


def test_network_failure_is_transport_error():
    async def _main():
        client = TelemetryClient("http://127.0.0.1:9", timeout=2.0)
        try:
            await client.register("rm-displays")
        finally:
            await client.close()

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(_main())
    assert str(excinfo.value).startswith("Network error or failed request")


def test_base_url_must_be_http():
    with pytest.raises(ValueError):
        TelemetryClient("ftp://example.com")
    assert TelemetryClient("https://logs.example/").stream_url == "wss://logs.example/ws"
    assert TelemetryClient("http://localhost:8080").stream_url == "ws://localhost:8080/ws"


def test_undecodable_success_body_is_transport_error():
    with pytest.raises(TransportError) as excinfo:
        _run(lambda c: c.send("rm-displays", "lobby", LogEntryData("info", "bad-bytes")))
    assert "UTF-8" in str(excinfo.value)


def test_bridge_reports_undecodable_response_as_send_failure():
    notices = []

    async def scenario(client):
        bridge = ConsoleBridge(client, "rm-displays", "lobby", notify=lambda title, detail: notices.append(title))
        bridge.forward(LogEntryData("info", "bad-bytes"))
        await bridge.drain()
        return bridge

    bridge, _ = _run(scenario)
    assert bridge.failed == 1 and bridge.sent == 0
    assert notices == ["Failed to send log"]
