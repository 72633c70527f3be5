"""Qt WebEngine surface: one sandboxed web view in one layout slot.

The session loop calls ``load``/``teardown``/``set_message_handler`` from its
own thread. Those calls are forwarded to the GUI thread through queued
signals; console messages travel back to the loop through
``call_soon_threadsafe``.
"""
from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Optional

from PyQt6.QtCore import QFile, QIODevice, QObject, QUrl, pyqtSignal, pyqtSlot
from PyQt6.QtWebChannel import QWebChannel
from PyQt6.QtWebEngineCore import QWebEnginePage, QWebEngineScript, QWebEngineSettings
from PyQt6.QtWebEngineWidgets import QWebEngineView
from PyQt6.QtWidgets import QVBoxLayout, QWidget

from kiosk_core.startup_script import POST_FUNCTION, console_shim

_LOGGER = logging.getLogger("KioskDisplay.Client")

MessageHandler = Callable[[str], None]
Dispatch = Callable[..., None]

_CHANNEL_OBJECT = "kioskBridge"

# Installs the page-level post function once the channel is up and flushes
# anything the console shim buffered before that.
_CHANNEL_PREAMBLE = """(function () {
  if (typeof QWebChannel === "undefined" || typeof qt === "undefined") { return; }
  new QWebChannel(qt.webChannelTransport, function (channel) {
    var bridge = channel.objects[%(object)s];
    window[%(post)s] = function (text) { bridge.post(String(text)); };
    var pending = window.__kioskPending || [];
    window.__kioskPending = [];
    pending.forEach(function (text) { bridge.post(text); });
  });
})();"""

_qwebchannel_source: Optional[str] = None


def _qwebchannel_js() -> str:
    global _qwebchannel_source
    if _qwebchannel_source is None:
        resource = QFile(":/qtwebchannel/qwebchannel.js")
        if resource.open(QIODevice.OpenModeFlag.ReadOnly):
            _qwebchannel_source = bytes(resource.readAll()).decode("utf-8")
            resource.close()
        else:
            _LOGGER.warning("qwebchannel.js resource unavailable; console forwarding disabled")
            _qwebchannel_source = ""
    return _qwebchannel_source


def _script(name: str, source: str, point: QWebEngineScript.InjectionPoint) -> QWebEngineScript:
    script = QWebEngineScript()
    script.setName(name)
    script.setSourceCode(source)
    script.setInjectionPoint(point)
    script.setWorldId(QWebEngineScript.ScriptWorldId.MainWorld)
    script.setRunsOnSubFrames(False)
    return script


class _ConsoleChannel(QObject):
    """Object exposed to the page; receives the shim's JSON frames."""

    def __init__(self, surface: "WebSurface", parent: QObject) -> None:
        super().__init__(parent)
        self._surface = surface

    @pyqtSlot(str)
    def post(self, text: str) -> None:
        self._surface.deliver(text)


class WebSurface(QWidget):
    _load_requested = pyqtSignal(str, str)
    _teardown_requested = pyqtSignal()

    def __init__(self, dispatch: Dispatch, parent: Optional[QWidget] = None, *, index: int = 0) -> None:
        super().__init__(parent)
        self.index = index
        self._dispatch = dispatch
        self._handler: Optional[MessageHandler] = None
        self._handler_lock = threading.Lock()
        self._view: Optional[QWebEngineView] = None
        self._channel: Optional[QWebChannel] = None
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        self._load_requested.connect(self._build_view)
        self._teardown_requested.connect(self._destroy_view)

    # Surface protocol (any thread) ----------------------------------------

    def load(self, url: str, startup_script: str) -> None:
        self._load_requested.emit(url, startup_script)

    def teardown(self) -> None:
        self._teardown_requested.emit()

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        with self._handler_lock:
            self._handler = handler

    # GUI thread -----------------------------------------------------------

    def deliver(self, text: str) -> None:
        with self._handler_lock:
            handler = self._handler
        if handler is None:
            return
        self._dispatch(handler, text)

    @property
    def view(self) -> Optional[QWebEngineView]:
        return self._view

    def _build_view(self, url: str, startup_script: str) -> None:
        self._destroy_view()
        view = QWebEngineView(self)
        page = QWebEnginePage(view)
        settings = page.settings()
        settings.setAttribute(QWebEngineSettings.WebAttribute.LocalContentCanAccessFileUrls, False)
        settings.setAttribute(QWebEngineSettings.WebAttribute.LocalContentCanAccessRemoteUrls, False)
        settings.setAttribute(QWebEngineSettings.WebAttribute.ShowScrollBars, False)

        channel = QWebChannel(page)
        channel.registerObject(_CHANNEL_OBJECT, _ConsoleChannel(self, page))
        page.setWebChannel(channel)

        scripts = page.scripts()
        preamble = _qwebchannel_js()
        if preamble:
            preamble += "\n" + _CHANNEL_PREAMBLE % {"object": json.dumps(_CHANNEL_OBJECT), "post": json.dumps(POST_FUNCTION)}
            scripts.insert(_script("kiosk-channel", preamble, QWebEngineScript.InjectionPoint.DocumentCreation))
        # The startup script installs the shim again; the second install is a no-op.
        scripts.insert(_script("kiosk-console", console_shim(), QWebEngineScript.InjectionPoint.DocumentCreation))
        scripts.insert(_script("kiosk-startup", startup_script, QWebEngineScript.InjectionPoint.DocumentReady))

        view.setPage(page)
        self.layout().addWidget(view)
        self._view = view
        self._channel = channel
        view.load(QUrl(url))
        _LOGGER.debug("Surface %d loading %s", self.index, url)

    def _destroy_view(self) -> None:
        view = self._view
        self._view = None
        self._channel = None
        if view is None:
            return
        view.stop()
        self.layout().removeWidget(view)
        view.setParent(None)
        view.deleteLater()
