from __future__ import annotations

import argparse
import functools
import logging
import os
import sys
from typing import List, Optional

from PyQt6.QtWebEngineWidgets import QWebEngineView  # noqa: F401 - must load before QApplication
from PyQt6.QtWidgets import QApplication

from kiosk_core.config_resolver import ConfigResolver
from kiosk_core.config_store import ConfigStore, JsonFileKeyValueStore, resolve_state_path
from kiosk_core.remote_control import RELOAD, RESTART, RemoteControlDispatcher
from kiosk_core.session import RemoteControl, SessionController, SessionEvent, Shutdown, Start, SubmitDeviceId
from kiosk_client.client_config import CLIENT_DIR, PROJECT_ROOT, InitialClientSettings, load_initial_settings, resolve_settings_path
from kiosk_client.host_window import KioskWindow, QtDisplayHost
from kiosk_client.input_bindings import BindingConfig, BindingManager
from kiosk_client.logging_utils import configure_client_logging
from kiosk_client.loop_thread import LoopThread
from kiosk_client.process_control import reexec, terminate_children
from log_telemetry.log_client import TelemetryClient
from version import DEV_MODE_ENV_VAR, __version__, is_dev_build

_ROOT_LOGGER = logging.getLogger("KioskDisplay")
_CLIENT_LOGGER = logging.getLogger("KioskDisplay.Client")


def _build_session(settings: InitialClientSettings, host: QtDisplayHost) -> SessionController:
    state_path = settings.state_path or resolve_state_path(PROJECT_ROOT)
    _CLIENT_LOGGER.debug("Stored config path: %s", state_path)
    store = ConfigStore(JsonFileKeyValueStore(state_path))
    resolver = ConfigResolver(settings.config_base_url, timeout=settings.request_timeout_seconds)
    telemetry = TelemetryClient(settings.telemetry_base_url, timeout=settings.request_timeout_seconds)
    return SessionController(
        store,
        resolver,
        telemetry,
        host,
        logger_id=settings.logger_id,
        version=__version__,
    )


async def _run_session(session: SessionController) -> None:
    session.post(Start())
    try:
        await session.run()
    finally:
        await session.close_clients()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Kiosk display client")
    parser.add_argument("--settings", help="Path to kiosk_settings.json")
    parser.add_argument("--windowed", action="store_true", help="Run in a normal window instead of fullscreen")
    args = parser.parse_args(argv)

    settings_path = resolve_settings_path(args.settings)
    settings = load_initial_settings(settings_path)
    release_mode = not is_dev_build()
    configure_client_logging(
        _ROOT_LOGGER,
        CLIENT_DIR,
        retention=settings.client_log_retention,
        release_mode=release_mode,
    )
    _CLIENT_LOGGER.info("Starting kiosk client %s (pid=%s)", __version__, os.getpid())
    _CLIENT_LOGGER.debug(
        "Loaded settings from %s: config=%s telemetry=%s logger=%s timeout=%.1fs orientation=%s",
        settings_path,
        settings.config_base_url,
        settings.telemetry_base_url,
        settings.logger_id,
        settings.request_timeout_seconds,
        settings.group_orientation,
    )
    if release_mode:
        _CLIENT_LOGGER.debug("Release build; export %s=1 for unpromoted debug logging.", DEV_MODE_ENV_VAR)

    app = QApplication(sys.argv[:1])
    restart_requested = False

    def _request_restart() -> None:
        nonlocal restart_requested
        restart_requested = True
        app.quit()

    window = KioskWindow(orientation=settings.group_orientation, on_restart=_request_restart)
    host = QtDisplayHost(window)
    session = _build_session(settings, host)
    loop_thread = LoopThread(functools.partial(_run_session, session))

    def _post(event: SessionEvent) -> None:
        loop_thread.call_soon(session.post, event)

    window.attach_session(loop_thread.call_soon, lambda text: _post(SubmitDeviceId(text)))

    dispatcher = RemoteControlDispatcher(lambda action: _post(RemoteControl(action)))
    bindings = BindingManager(window, BindingConfig.load())
    bindings.register_action(RELOAD, lambda: dispatcher.handle(RELOAD))
    bindings.register_action(RESTART, lambda: dispatcher.handle(RESTART))
    bindings.activate()

    if settings.fullscreen and not args.windowed:
        window.showFullScreen()
    else:
        window.resize(1280, 720)
        window.show()

    if not loop_thread.start():
        _CLIENT_LOGGER.error("Session loop failed to start; exiting")
        return 1

    exit_code = app.exec()
    _post(Shutdown())
    loop_thread.join(timeout=5.0)
    bindings.deactivate()
    window.close()
    if restart_requested:
        terminate_children()
        reexec()
    _CLIENT_LOGGER.info("Kiosk client exiting with code %s", exit_code)
    return int(exit_code)


if __name__ == "__main__":
    sys.exit(main())
