"""Qt host window: loader page, device-id form, display layout and toast banner."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple

from PyQt6.QtCore import QObject, Qt, QTimer, pyqtSignal
from PyQt6.QtGui import QCloseEvent, QResizeEvent
from PyQt6.QtWidgets import (
    QLabel,
    QLineEdit,
    QMainWindow,
    QPushButton,
    QSplitter,
    QStackedWidget,
    QVBoxLayout,
    QWidget,
)

from kiosk_core.display_tree import DisplayNode, Group
from kiosk_core.renderer import Surface
from kiosk_client.web_surface import Dispatch, WebSurface

_LOGGER = logging.getLogger("KioskDisplay.Client")

LOADER_TEXT = "I am loading look at me go!"
PROMPT_TEXT = "What is this screen's ID?"
TOAST_DURATION_MS = 4000
_TOAST_COLOURS = {
    "info": "#2d6cdf",
    "success": "#2e7d32",
    "error": "#c62828",
}

SurfaceFactory = Callable[[int], WebSurface]


def build_layout(
    tree: DisplayNode,
    orientation: str,
    make_surface: SurfaceFactory,
) -> Tuple[QWidget, List[WebSurface]]:
    """Lay ``tree`` out as nested splitters; surfaces are returned in document order."""
    surfaces: List[WebSurface] = []
    qt_orientation = Qt.Orientation.Horizontal if orientation == "horizontal" else Qt.Orientation.Vertical

    def _build(node: DisplayNode) -> QWidget:
        if isinstance(node, Group):
            splitter = QSplitter(qt_orientation)
            splitter.setChildrenCollapsible(False)
            splitter.setHandleWidth(0)
            for child in node.children:
                splitter.addWidget(_build(child))
            for position in range(splitter.count()):
                splitter.setStretchFactor(position, 1)
            return splitter
        surface = make_surface(len(surfaces))
        surfaces.append(surface)
        return surface

    return _build(tree), surfaces


class KioskWindow(QMainWindow):
    """Owns every widget; all slots run on the GUI thread."""

    show_loader_requested = pyqtSignal()
    show_needs_input_requested = pyqtSignal()
    mount_requested = pyqtSignal(object, object)
    toast_requested = pyqtSignal(str, str, str)
    restart_requested = pyqtSignal()

    def __init__(
        self,
        *,
        orientation: str = "vertical",
        on_restart: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__()
        self.setWindowTitle("Kiosk Display")
        self._dispatch: Optional[Dispatch] = None
        self._orientation = orientation
        self._on_submit: Optional[Callable[[str], None]] = None
        self._on_restart = on_restart
        self._display_widget: Optional[QWidget] = None
        self._surfaces: List[WebSurface] = []

        self._stack = QStackedWidget(self)
        self.setCentralWidget(self._stack)
        self._loader_page = self._build_loader_page()
        self._input_page, self._id_field = self._build_input_page()
        self._display_page = QWidget()
        display_layout = QVBoxLayout(self._display_page)
        display_layout.setContentsMargins(0, 0, 0, 0)
        display_layout.setSpacing(0)
        for page in (self._loader_page, self._input_page, self._display_page):
            self._stack.addWidget(page)

        self._toast = QLabel(self)
        self._toast.setWordWrap(True)
        self._toast.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._toast.hide()
        self._toast_timer = QTimer(self)
        self._toast_timer.setSingleShot(True)
        self._toast_timer.timeout.connect(self._toast.hide)

        self.show_loader_requested.connect(self.show_loader)
        self.show_needs_input_requested.connect(self.show_needs_input)
        self.mount_requested.connect(
            self._handle_mount_request,
            type=Qt.ConnectionType.BlockingQueuedConnection,
        )
        self.toast_requested.connect(self.show_toast)
        self.restart_requested.connect(self._handle_restart_request)

    def attach_session(self, dispatch: Dispatch, on_submit: Callable[[str], None]) -> None:
        """Connect the window to a running session loop; call before the first mount."""
        self._dispatch = dispatch
        self._on_submit = on_submit

    # Pages ----------------------------------------------------------------

    def _build_loader_page(self) -> QWidget:
        page = QWidget()
        layout = QVBoxLayout(page)
        label = QLabel(LOADER_TEXT)
        label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(label)
        return page

    def _build_input_page(self) -> Tuple[QWidget, QLineEdit]:
        page = QWidget()
        layout = QVBoxLayout(page)
        layout.addStretch(1)
        prompt = QLabel(PROMPT_TEXT)
        prompt.setAlignment(Qt.AlignmentFlag.AlignCenter)
        field = QLineEdit()
        field.setPlaceholderText("Screen ID")
        field.returnPressed.connect(self._submit)
        button = QPushButton("Submit")
        button.clicked.connect(self._submit)
        layout.addWidget(prompt)
        layout.addWidget(field)
        layout.addWidget(button)
        layout.addStretch(1)
        return page, field

    def show_loader(self) -> None:
        self._stack.setCurrentWidget(self._loader_page)

    def show_needs_input(self) -> None:
        self._stack.setCurrentWidget(self._input_page)
        self._id_field.setFocus()

    @property
    def current_page(self) -> str:
        current = self._stack.currentWidget()
        if current is self._input_page:
            return "needsInput"
        if current is self._display_page:
            return "displaying"
        return "loader"

    @property
    def surfaces(self) -> List[WebSurface]:
        return list(self._surfaces)

    def mount_tree(self, tree: DisplayNode) -> List[WebSurface]:
        """Replace the display page contents with a fresh layout for ``tree``."""
        dispatch = self._dispatch
        if dispatch is None:
            raise RuntimeError("No session attached to the display window")
        widget, surfaces = build_layout(
            tree,
            self._orientation,
            lambda index: WebSurface(dispatch, index=index),
        )
        self._clear_display()
        self._display_page.layout().addWidget(widget)
        self._display_widget = widget
        self._surfaces = surfaces
        self._stack.setCurrentWidget(self._display_page)
        _LOGGER.debug("Mounted display layout with %d surface(s)", len(surfaces))
        return surfaces

    def _clear_display(self) -> None:
        widget = self._display_widget
        self._display_widget = None
        self._surfaces = []
        if widget is None:
            return
        self._display_page.layout().removeWidget(widget)
        widget.setParent(None)
        widget.deleteLater()

    # Toast ----------------------------------------------------------------

    def show_toast(self, kind: str, title: str, detail: str = "") -> None:
        colour = _TOAST_COLOURS.get(kind, _TOAST_COLOURS["info"])
        text = title if not detail else f"{title}\n{detail}"
        self._toast.setText(text)
        self._toast.setStyleSheet(
            f"background-color: {colour}; color: white; padding: 8px; border-radius: 4px; font-weight: bold;"
        )
        self._position_toast()
        self._toast.show()
        self._toast.raise_()
        self._toast_timer.start(TOAST_DURATION_MS)

    @property
    def toast_text(self) -> str:
        return self._toast.text() if self._toast.isVisible() else ""

    def _position_toast(self) -> None:
        width = max(200, int(self.width() * 0.6))
        self._toast.setFixedWidth(width)
        self._toast.adjustSize()
        self._toast.move((self.width() - width) // 2, 16)

    def resizeEvent(self, event: QResizeEvent) -> None:  # noqa: N802 - Qt override
        super().resizeEvent(event)
        if self._toast.isVisible():
            self._position_toast()

    # Slots ----------------------------------------------------------------

    def _submit(self) -> None:
        if self._on_submit is None:
            return
        self._on_submit(self._id_field.text())

    def _handle_mount_request(self, tree: DisplayNode, holder: List[object]) -> None:
        try:
            holder.append(self.mount_tree(tree))
        except Exception as exc:
            _LOGGER.exception("Failed to build display layout")
            holder.append(exc)

    def _handle_restart_request(self) -> None:
        if self._on_restart is not None:
            self._on_restart()

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802 - Qt override
        self._toast_timer.stop()
        self._clear_display()
        super().closeEvent(event)


class QtDisplayHost(QObject):
    """Display host used by the session; safe to call from the loop thread."""

    def __init__(self, window: KioskWindow) -> None:
        super().__init__()
        self._window = window
        self._gui_thread_id = threading.get_ident()

    def show_loader(self) -> None:
        self._window.show_loader_requested.emit()

    def show_needs_input(self) -> None:
        self._window.show_needs_input_requested.emit()

    def mount(self, tree: DisplayNode) -> Sequence[Surface]:
        if threading.get_ident() == self._gui_thread_id:
            return self._window.mount_tree(tree)
        holder: List[object] = []
        # Blocks the loop thread until the GUI thread has built the layout.
        self._window.mount_requested.emit(tree, holder)
        if not holder:
            raise RuntimeError("Display window did not mount the layout")
        result = holder[0]
        if isinstance(result, Exception):
            raise result
        return result  # type: ignore[return-value]

    def toast(self, kind: str, title: str, detail: str = "") -> None:
        self._window.toast_requested.emit(kind, title, detail)

    def restart(self) -> None:
        self._window.restart_requested.emit()
