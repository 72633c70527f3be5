from __future__ import annotations

import asyncio
import io

from aiohttp import web
from aiohttp.test_utils import TestServer

from log_telemetry import cli
from log_telemetry.log_types import LogEntry

ENTRY = {
    "id": "e1",
    "timestamp": "2024-05-01T10:00:00Z",
    "projectId": "lobby",
    "loggerId": "rm-displays",
    "level": "warn",
    "message": "low disk",
    "data": {"free": "5%"},
}


def test_format_entry_includes_origin_and_data():
    line = cli.format_entry(LogEntry.from_payload(ENTRY))
    assert line == '2024-05-01T10:00:00Z [WARN ] lobby/rm-displays: low disk {"free": "5%"}'


def test_parser_requires_a_command():
    parser = cli.build_parser()
    args = parser.parse_args(["--url", "http://x.example", "query", "--limit", "5", "--project", "lobby"])
    assert (args.command, args.limit, args.project, args.hours) == ("query", 5, "lobby", None)


def _serve_and_run(argv):
    seen = []

    async def logs(request: web.Request) -> web.Response:
        seen.append(dict(request.query))
        return web.json_response({"count": 7, "data": [ENTRY]})

    async def register(request: web.Request) -> web.Response:
        seen.append(("register", request.match_info["logger"]))
        return web.json_response({"message": "ok"})

    async def _main():
        app = web.Application()
        app.router.add_get("/api/logs", logs)
        app.router.add_post("/register/{logger}", register)
        server = TestServer(app)
        await server.start_server()
        out, err = io.StringIO(), io.StringIO()
        try:
            args = cli.build_parser().parse_args(["--url", str(server.make_url("")), *argv])
            code = await cli.run_command(args, out=out, err=err)
        finally:
            await server.close()
        return code, out.getvalue(), seen

    return asyncio.run(_main())


def test_query_command_prints_entries_and_summary():
    code, output, seen = _serve_and_run(["query", "--hours", "24", "--limit", "1"])
    assert code == 0
    assert seen == [{"hours": "24", "limit": "1"}]
    lines = output.splitlines()
    assert lines[0].endswith("lobby/rm-displays: low disk {\"free\": \"5%\"}")
    assert lines[-1] == "-- 1 of 7 entries"


def test_register_command_prints_response():
    code, output, seen = _serve_and_run(["register", "rm-displays"])
    assert code == 0
    assert seen == [("register", "rm-displays")]
    assert output.strip() == '{"message": "ok"}'


def test_main_reports_transport_errors(capsys):
    assert cli.main(["--url", "http://127.0.0.1:9", "--timeout", "2", "register", "x"]) == 1
    assert capsys.readouterr().err.startswith("error: ")
