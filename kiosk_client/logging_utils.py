"""File logging helpers for the kiosk display client."""
from __future__ import annotations

import logging
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGS_ENV_VAR = "KIOSK_LOGS_DIR"
LOG_FILE_NAME = "kiosk_client.log"
MAX_LOG_BYTES = 512 * 1024


def resolve_logs_dir(client_root: Path, *, override: Optional[str] = None) -> Path:
    """Pick the directory client logs go to, creating it when needed.

    ``KIOSK_LOGS_DIR`` wins; otherwise ``logs/`` beside the project root.
    """
    raw = override if override is not None else os.getenv(LOGS_ENV_VAR)
    if raw:
        target = Path(raw).expanduser()
    else:
        target = client_root.parent / "logs"
    target.mkdir(parents=True, exist_ok=True)
    return target


def utc_formatter() -> logging.Formatter:
    formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d UTC - %(levelname)s - %(name)s - %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )
    formatter.converter = time.gmtime
    return formatter


def build_rotating_file_handler(
    logs_dir: Path,
    filename: str,
    *,
    retention: int,
    max_bytes: int = MAX_LOG_BYTES,
    formatter: Optional[logging.Formatter] = None,
) -> RotatingFileHandler:
    """``retention`` counts the live file, so it keeps ``retention - 1`` backups."""
    handler = RotatingFileHandler(
        logs_dir / filename,
        maxBytes=max(1, int(max_bytes)),
        backupCount=max(0, int(retention) - 1),
        encoding="utf-8",
    )
    handler.setFormatter(formatter or utc_formatter())
    return handler


class ReleaseLogLevelFilter(logging.Filter):
    """Promote debug logs to INFO in release builds so diagnostics stay visible."""

    def __init__(self, release_mode: bool) -> None:
        super().__init__()
        self.release_mode = release_mode

    def filter(self, record: logging.LogRecord) -> bool:
        if self.release_mode and record.levelno == logging.DEBUG:
            record.levelno = logging.INFO
            record.levelname = "INFO"
        return True


def configure_client_logging(
    logger: logging.Logger,
    client_root: Path,
    *,
    retention: int,
    release_mode: bool,
) -> Optional[Path]:
    """Attach the rotating handler (or a stream fallback) to ``logger``.

    Returns the log file path, or ``None`` when file logging is unavailable.
    """
    formatter = utc_formatter()
    logger.setLevel(logging.DEBUG)
    # Handler-level filters, so records from child loggers are promoted too.
    try:
        logs_dir = resolve_logs_dir(client_root)
        handler: logging.Handler = build_rotating_file_handler(
            logs_dir,
            LOG_FILE_NAME,
            retention=max(1, retention),
            formatter=formatter,
        )
    except Exception as exc:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(ReleaseLogLevelFilter(release_mode))
        logger.addHandler(stream_handler)
        logger.warning("Failed to initialise file logging: %s", exc)
        return None
    handler.addFilter(ReleaseLogLevelFilter(release_mode))
    logger.addHandler(handler)
    log_path = logs_dir / LOG_FILE_NAME
    logger.debug(
        "Client logging initialised: path=%s retention=%d max_bytes=%d backup_count=%d",
        log_path,
        retention,
        MAX_LOG_BYTES,
        max(0, retention - 1),
    )
    return log_path
