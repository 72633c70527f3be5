"""Operator command line for the telemetry collector."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional, TextIO

from kiosk_core.errors import TelemetryError
from log_telemetry.log_client import DEFAULT_TIMEOUT_SECONDS, TelemetryClient
from log_telemetry.log_types import LogEntry, LogQuery

TELEMETRY_URL_ENV_VAR = "KIOSK_TELEMETRY_URL"
DEFAULT_URL = "http://localhost:8080"

_LOGGER = logging.getLogger("KioskDisplay.Telemetry")


def format_entry(entry: LogEntry) -> str:
    line = f"{entry.timestamp} [{entry.level.upper():<5}] {entry.project_id}/{entry.logger_id}: {entry.message}"
    if entry.data:
        line += " " + json.dumps(entry.data, sort_keys=True)
    return line


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kiosk-logs", description="Query and stream kiosk display logs")
    parser.add_argument(
        "--url",
        default=os.getenv(TELEMETRY_URL_ENV_VAR, DEFAULT_URL),
        help=f"Telemetry base URL (default: ${TELEMETRY_URL_ENV_VAR} or {DEFAULT_URL})",
    )
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_SECONDS, help="Per-request timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log client diagnostics to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    query = sub.add_parser("query", help="Print stored log entries")
    query.add_argument("--hours", type=float, help="Only entries from the last N hours")
    query.add_argument("--offset", type=int)
    query.add_argument("--limit", type=int)
    query.add_argument("--project", help="Device / project ID to filter by")
    query.add_argument("--json", action="store_true", help="Emit raw JSON lines")

    tail = sub.add_parser("tail", help="Stream live log entries until interrupted")
    tail.add_argument("projects", nargs="+", help="Project IDs to follow ('*' for all)")
    tail.add_argument("--json", action="store_true", help="Emit raw JSON lines")

    for name in ("register", "unregister"):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} a logger ID")
        cmd.add_argument("logger_id")
    return parser


def _emit(entry: LogEntry, *, as_json: bool, out: TextIO) -> None:
    if as_json:
        out.write(
            json.dumps(
                {
                    "id": entry.id,
                    "timestamp": entry.timestamp,
                    "projectId": entry.project_id,
                    "loggerId": entry.logger_id,
                    "level": entry.level,
                    "message": entry.message,
                    "data": entry.data,
                }
            )
            + "\n"
        )
    else:
        out.write(format_entry(entry) + "\n")
    out.flush()


async def _run_query(client: TelemetryClient, args: argparse.Namespace, out: TextIO) -> int:
    result = await client.query(
        LogQuery(hours=args.hours, offset=args.offset, limit=args.limit, project_id=args.project)
    )
    for entry in result.entries:
        _emit(entry, as_json=args.json, out=out)
    if not args.json:
        out.write(f"-- {len(result.entries)} of {result.count} entries\n")
    return 0


async def _run_tail(client: TelemetryClient, args: argparse.Namespace, out: TextIO, err: TextIO) -> int:
    closed = asyncio.Event()
    failures: List[BaseException] = []

    def _on_open(project_ids: list) -> None:
        err.write(f"Following {', '.join(project_ids)}\n")

    def _on_error(exc: BaseException) -> None:
        failures.append(exc)
        err.write(f"Stream error: {exc}\n")

    def _on_close(code: Optional[int], reason: str) -> None:
        err.write(f"Stream closed (code={code}{', ' + reason if reason else ''})\n")
        closed.set()

    subscription = client.subscribe(
        args.projects,
        lambda entry: _emit(entry, as_json=args.json, out=out),
        on_open=_on_open,
        on_error=_on_error,
        on_close=_on_close,
    )
    try:
        await closed.wait()
    finally:
        await subscription.close()
    return 1 if failures and not subscription.opened else 0


async def run_command(args: argparse.Namespace, *, out: TextIO, err: TextIO) -> int:
    client = TelemetryClient(args.url, timeout=args.timeout)
    try:
        if args.command == "query":
            return await _run_query(client, args, out)
        if args.command == "tail":
            return await _run_tail(client, args, out, err)
        if args.command == "register":
            payload = await client.register(args.logger_id)
        else:
            payload = await client.unregister(args.logger_id)
        out.write(json.dumps(payload) + "\n")
        return 0
    finally:
        await client.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(run_command(args, out=sys.stdout, err=sys.stderr))
    except TelemetryError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1
    except ValueError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
