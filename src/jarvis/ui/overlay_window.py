"""PySide6 windows: the visual chat window and the element overlay.

Both windows are frameless, translucent, always on top and kept off the
taskbar. They render what :class:`PositionRegistry` holds and react to the
presentation events published on the bus.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Callable, Mapping

from PySide6.QtCore import Qt
from PySide6.QtGui import QCloseEvent, QKeySequence, QPixmap, QResizeEvent, QShortcut
from PySide6.QtWidgets import (
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPlainTextEdit,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from .events import (
    EventBus,
    InteractionModeChanged,
    SessionCleared,
    StreamChunk,
    StreamComplete,
    ToolCallStarted,
    ToolResultReady,
    TurnCanceled,
    TurnFailed,
    TurnStarted,
)
from .position_registry import PlacedElement, PositionRegistry

LOGGER = logging.getLogger(__name__)

_WINDOW_STYLESHEET = """
#jarvis-root {
    background-color: rgba(8, 16, 28, 215);
    border: 1px solid rgba(0, 200, 255, 120);
    border-radius: 10px;
}
#jarvis-log, #jarvis-input {
    background-color: rgba(0, 0, 0, 120);
    color: #d8f6ff;
    border: 1px solid rgba(0, 200, 255, 80);
    border-radius: 6px;
}
#jarvis-element {
    background-color: rgba(0, 30, 50, 200);
    color: #e6fbff;
    border: 1px solid rgba(0, 200, 255, 150);
    border-radius: 8px;
    padding: 6px;
}
#jarvis-mermaid {
    font-family: monospace;
    color: #9fe8ff;
}
#jarvis-mode {
    color: #6fd3ff;
    font-size: 11px;
}
"""

_ELEMENT_WIDTH_RATIO = 0.35


class _StealthWindowMixin:
    """Window behaviour shared by every managed window."""

    def _apply_stealth_flags(self, title: str) -> None:
        widget: QWidget = self  # type: ignore[assignment]
        widget.setWindowTitle(title)
        widget.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.Tool
        )
        widget.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground, True)

    def focus(self) -> None:
        widget: QWidget = self  # type: ignore[assignment]
        widget.raise_()
        widget.activateWindow()

    def set_click_through(self, enabled: bool) -> None:
        """Let input pass through to whatever window lies underneath.

        Changing a window flag hides a visible top-level window, so it is
        shown again afterwards.
        """
        widget: QWidget = self  # type: ignore[assignment]
        if widget.testAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents) == enabled:
            return
        was_visible = widget.isVisible()
        widget.setWindowFlag(Qt.WindowType.WindowTransparentForInput, enabled)
        widget.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents, enabled)
        if was_visible:
            widget.show()

    def dispose(self) -> None:
        widget: QWidget = self  # type: ignore[assignment]
        widget.close()
        widget.deleteLater()


class ElementCanvas(QWidget):
    """Lays out placed elements at percentage coordinates of its own size."""

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._widgets: list[tuple[PlacedElement, QWidget]] = []

    def render_elements(self, elements: tuple[PlacedElement, ...]) -> None:
        known = {element.id for element, _ in self._widgets}
        for element in elements:
            if element.id in known:
                continue
            widget = _build_element_widget(element, self)
            widget.show()
            self._widgets.append((element, widget))
        self._relayout()

    def clear(self) -> None:
        for _, widget in self._widgets:
            widget.deleteLater()
        self._widgets.clear()

    def resizeEvent(self, event: QResizeEvent) -> None:  # noqa: N802 - Qt override
        super().resizeEvent(event)
        self._relayout()

    def _relayout(self) -> None:
        width = max(1, self.width())
        height = max(1, self.height())
        for element, widget in self._widgets:
            widget.setMaximumWidth(int(width * _ELEMENT_WIDTH_RATIO))
            widget.adjustSize()
            widget.move(int(width * element.position.x / 100), int(height * element.position.y / 100))


def _build_element_widget(element: PlacedElement, parent: QWidget) -> QWidget:
    frame = QFrame(parent)
    frame.setObjectName("jarvis-element")
    layout = QVBoxLayout(frame)
    layout.setContentsMargins(6, 6, 6, 6)
    if element.type == "mermaid":
        label = QLabel(element.content, frame)
        label.setObjectName("jarvis-mermaid")
        label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
    elif element.type == "image":
        label = _image_label(element.content, frame)
    else:
        label = QLabel(element.content, frame)
        label.setWordWrap(True)
    layout.addWidget(label)
    return frame


def _image_label(source: str, parent: QWidget) -> QLabel:
    label = QLabel(parent)
    if source.startswith("data:") and "," in source:
        header, _, encoded = source.partition(",")
        pixmap = QPixmap()
        if ";base64" in header:
            try:
                data = base64.b64decode(encoded, validate=False)
            except ValueError:
                data = b""
            if data and pixmap.loadFromData(data):
                label.setPixmap(pixmap.scaledToWidth(320, Qt.TransformationMode.SmoothTransformation))
                return label
        LOGGER.warning("Could not decode inline image (%.40s...)", source)
        label.setText("[image could not be displayed]")
        return label
    label.setText(f'<a href="{source}">Open generated image</a>')
    label.setOpenExternalLinks(True)
    return label


class OverlayWindow(_StealthWindowMixin, QWidget):
    """Full-screen transparent canvas mirroring the placed elements."""

    def __init__(self, registry: PositionRegistry, bus: EventBus, *, title: str) -> None:
        super().__init__()
        self._registry = registry
        self._apply_stealth_flags(title)
        self._canvas = ElementCanvas(self)
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._canvas)
        self.setStyleSheet(_WINDOW_STYLESHEET)
        bus.subscribe(ToolResultReady, self._on_elements_changed)
        bus.subscribe(TurnStarted, self._on_reset)
        bus.subscribe(SessionCleared, self._on_reset)

    def _on_elements_changed(self, event: ToolResultReady) -> None:
        self._canvas.render_elements(self._registry.elements())

    def _on_reset(self, event: Any) -> None:
        self._canvas.clear()


class VisualChatWindow(_StealthWindowMixin, QWidget):
    """Chat log, input line and positioned-element canvas in one window."""

    def __init__(
        self,
        controller: Any,
        registry: PositionRegistry,
        bus: EventBus,
        *,
        title: str,
        width: int = 1400,
        height: int = 900,
    ) -> None:
        super().__init__()
        self._controller = controller
        self._registry = registry
        self._bus = bus
        self._turn_task: asyncio.Future[Any] | None = None
        self._assistant_open = False
        self._apply_stealth_flags(title)
        self.resize(width, height)
        self._build_ui()
        self.setStyleSheet(_WINDOW_STYLESHEET)
        self._subscribe()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        root = QFrame(self)
        root.setObjectName("jarvis-root")
        outer = QVBoxLayout(self)
        outer.setContentsMargins(0, 0, 0, 0)
        outer.addWidget(root)

        layout = QVBoxLayout(root)
        self._canvas = ElementCanvas(root)
        layout.addWidget(self._canvas, stretch=3)

        self._log = QPlainTextEdit(root)
        self._log.setObjectName("jarvis-log")
        self._log.setReadOnly(True)
        layout.addWidget(self._log, stretch=1)

        self._mode_label = QLabel("Interactive", root)
        self._mode_label.setObjectName("jarvis-mode")
        layout.addWidget(self._mode_label)

        input_row = QHBoxLayout()
        self._input = QLineEdit(root)
        self._input.setObjectName("jarvis-input")
        self._input.setPlaceholderText("Ask Jarvis...")
        self._input.returnPressed.connect(self._submit)
        self._send_button = QPushButton("Send", root)
        self._send_button.clicked.connect(self._submit)
        self._clear_button = QPushButton("Clear", root)
        self._clear_button.clicked.connect(self._clear_session)
        input_row.addWidget(self._input, stretch=1)
        input_row.addWidget(self._send_button)
        input_row.addWidget(self._clear_button)
        layout.addLayout(input_row)

    def _subscribe(self) -> None:
        self._bus.subscribe(TurnStarted, self._on_turn_started)
        self._bus.subscribe(StreamChunk, self._on_stream_chunk)
        self._bus.subscribe(ToolCallStarted, self._on_tool_call)
        self._bus.subscribe(ToolResultReady, self._on_tool_result)
        self._bus.subscribe(StreamComplete, self._on_stream_complete)
        self._bus.subscribe(TurnFailed, self._on_turn_failed)
        self._bus.subscribe(TurnCanceled, self._on_turn_canceled)
        self._bus.subscribe(SessionCleared, self._on_session_cleared)
        self._bus.subscribe(InteractionModeChanged, self._on_interaction_mode)

    def install_shortcuts(self, bindings: Mapping[str, Callable[[], Any]]) -> list[QShortcut]:
        """Bind key sequences (``"Ctrl+Shift+V"``) to callbacks, scoped to this window."""

        shortcuts = []
        for sequence, callback in bindings.items():
            shortcut = QShortcut(QKeySequence(sequence), self)
            shortcut.setContext(Qt.ShortcutContext.WindowShortcut)
            shortcut.activated.connect(callback)
            shortcuts.append(shortcut)
        return shortcuts

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    def _submit(self) -> None:
        text = self._input.text().strip()
        if not text:
            return
        if self._turn_task is not None and not self._turn_task.done():
            self._append_line("Jarvis is still responding...")
            return
        self._input.clear()
        self._append_line(f"You: {text}")
        self._turn_task = asyncio.ensure_future(self._controller.run_turn(text))
        self._turn_task.add_done_callback(self._on_turn_finished)

    def _clear_session(self) -> None:
        self._controller.clear_session()

    def _on_turn_finished(self, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Turn task failed", exc_info=exc)
            self._append_line(f"Error: {exc}")
            return
        result = task.result()
        if not result.get("success"):
            self._append_line(f"Error: {result.get('error', 'unknown error')}")

    # ------------------------------------------------------------------
    # Bus handlers
    # ------------------------------------------------------------------
    def _on_turn_started(self, event: TurnStarted) -> None:
        self._canvas.clear()
        self._assistant_open = False

    def _on_stream_chunk(self, event: StreamChunk) -> None:
        if not self._assistant_open:
            self._log.appendPlainText("Jarvis: ")
            self._assistant_open = True
        cursor = self._log.textCursor()
        cursor.movePosition(cursor.MoveOperation.End)
        cursor.insertText(event.chunk)
        self._log.setTextCursor(cursor)

    def _on_tool_call(self, event: ToolCallStarted) -> None:
        suffix = " (auto)" if event.corrective else ""
        self._append_line(f"[{event.tool_name}{suffix}]")

    def _on_tool_result(self, event: ToolResultReady) -> None:
        self._canvas.render_elements(self._registry.elements())

    def _on_stream_complete(self, event: StreamComplete) -> None:
        self._assistant_open = False

    def _on_turn_failed(self, event: TurnFailed) -> None:
        self._assistant_open = False

    def _on_turn_canceled(self, event: TurnCanceled) -> None:
        self._assistant_open = False
        self._append_line("Turn canceled")

    def _on_session_cleared(self, event: SessionCleared) -> None:
        self._log.clear()
        self._canvas.clear()
        self._assistant_open = False

    def _on_interaction_mode(self, event: InteractionModeChanged) -> None:
        self._mode_label.setText("Interactive" if event.is_interactive else "Click-through")

    def _append_line(self, text: str) -> None:
        self._assistant_open = False
        self._log.appendPlainText(text)

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802 - Qt override
        if self._turn_task is not None and not self._turn_task.done():
            self._controller.cancel_turn()
        super().closeEvent(event)


__all__ = ["ElementCanvas", "OverlayWindow", "VisualChatWindow"]
