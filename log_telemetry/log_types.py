"""Wire types for the telemetry collector's HTTP and streaming APIs."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

LOG_LEVELS: Tuple[str, ...] = ("debug", "info", "warn", "error")
ALL_PROJECTS = "*"


@dataclass(frozen=True)
class LogEntryData:
    """Request-side log record; has no identity until the collector accepts it."""

    level: str
    message: str
    data: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"level": self.level, "message": self.message}
        if self.data is not None:
            payload["data"] = dict(self.data)
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["LogEntryData"]:
        """Decode a ``{level, message, data?}`` mapping; ``None`` when it is unusable."""
        level = payload.get("level")
        message = payload.get("message")
        if not isinstance(level, str) or level not in LOG_LEVELS:
            return None
        if not isinstance(message, str) or not message:
            return None
        data = payload.get("data")
        if data is not None and not isinstance(data, dict):
            data = {"value": data}
        return cls(level=level, message=message, data=data)


@dataclass(frozen=True)
class LogEntry:
    id: str
    timestamp: str
    project_id: str
    logger_id: str
    level: str
    message: str
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "LogEntry":
        try:
            return cls(
                id=str(payload["id"]),
                timestamp=str(payload["timestamp"]),
                project_id=str(payload["projectId"]),
                logger_id=str(payload["loggerId"]),
                level=str(payload["level"]),
                message=str(payload["message"]),
                data=payload.get("data") if isinstance(payload.get("data"), dict) else None,
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Log entry missing field {exc}") from exc


@dataclass(frozen=True)
class SendAck:
    id: str
    message: str


@dataclass(frozen=True)
class LogQuery:
    """Filters for ``GET /api/logs``; unset fields are left off the query string."""

    hours: Optional[float] = None
    offset: Optional[int] = None
    limit: Optional[int] = None
    project_id: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.hours is not None:
            params["hours"] = _format_number(self.hours)
        if self.offset is not None:
            params["offset"] = str(int(self.offset))
        if self.limit is not None:
            params["limit"] = str(int(self.limit))
        if self.project_id:
            params["projectId"] = self.project_id
        return params


@dataclass(frozen=True)
class LogQueryResult:
    count: int
    entries: List[LogEntry] = field(default_factory=list)


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# Streaming frames -----------------------------------------------------------

STREAM_LOG = "log"
STREAM_ERROR = "error"
STREAM_INFO_TYPES = frozenset({"subscribed", "unsubscribed", "connected"})


def subscribe_frame(project_id: str) -> Dict[str, str]:
    return {"type": "subscribe", "projectId": project_id}


__all__ = [
    "LOG_LEVELS",
    "ALL_PROJECTS",
    "LogEntryData",
    "LogEntry",
    "SendAck",
    "LogQuery",
    "LogQueryResult",
    "STREAM_LOG",
    "STREAM_ERROR",
    "STREAM_INFO_TYPES",
    "subscribe_frame",
]
