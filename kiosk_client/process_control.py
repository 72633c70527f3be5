"""Process-level helpers for restarting the kiosk client."""
from __future__ import annotations

import logging
import os
import sys
from typing import Callable, List, Optional, Sequence

import psutil

_LOGGER = logging.getLogger("KioskDisplay.Client")

ExecFn = Callable[[str, Sequence[str]], None]


def terminate_children(timeout: float = 3.0, *, process: Optional[psutil.Process] = None) -> int:
    """Terminate helper processes (WebEngine renderers) left behind by this one.

    Returns the number of children that were still alive and had to be killed.
    """
    parent = process or psutil.Process(os.getpid())
    try:
        children: List[psutil.Process] = parent.children(recursive=True)
    except psutil.Error as exc:
        _LOGGER.warning("Failed to enumerate child processes: %s", exc)
        return 0
    if not children:
        return 0
    for child in children:
        try:
            child.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as exc:
            _LOGGER.warning("Failed to terminate child pid=%s: %s", child.pid, exc)
    _, alive = psutil.wait_procs(children, timeout=timeout)
    for child in alive:
        try:
            child.kill()
        except psutil.Error as exc:
            _LOGGER.warning("Failed to kill child pid=%s: %s", child.pid, exc)
    _LOGGER.debug("Stopped %d child process(es); %d needed a kill", len(children), len(alive))
    return len(alive)


def restart_command(argv: Optional[Sequence[str]] = None) -> List[str]:
    args = list(sys.argv if argv is None else argv)
    return [sys.executable, *args]


def reexec(argv: Optional[Sequence[str]] = None, *, exec_fn: Optional[ExecFn] = None) -> None:
    """Replace the current process with a fresh copy of itself."""
    command = restart_command(argv)
    _LOGGER.info("Restarting kiosk client: %s", " ".join(command))
    for handler in logging.getLogger("KioskDisplay").handlers:
        handler.flush()
    (exec_fn or os.execv)(command[0], command)
