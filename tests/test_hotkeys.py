"""Tests for the system-wide hotkey bridge."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Mapping

import pytest

from jarvis.ui.events import EventBus, VisibilityChanged
from jarvis.ui.hotkeys import GlobalHotkeys, to_hotkey
from jarvis.ui.window_manager import OVERLAY, VISUAL_CHAT, WindowManager

from tests.helpers import EventRecorder


class _FakeListener:
    def __init__(self, mapping: Mapping[str, Callable[[], None]]) -> None:
        self.mapping = dict(mapping)
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def press(self, hotkey: str) -> None:
        # pynput fires callbacks from its own thread.
        thread = threading.Thread(target=self.mapping[hotkey])
        thread.start()
        thread.join()


class _HiddenAwareWindow:
    def __init__(self) -> None:
        self.visible = True

    def show(self) -> None:
        self.visible = True

    def hide(self) -> None:
        self.visible = False

    def focus(self) -> None:
        pass

    def set_click_through(self, enabled: bool) -> None:
        pass

    def dispose(self) -> None:
        pass


@pytest.mark.parametrize(
    ("sequence", "expected"),
    [
        ("Ctrl+Shift+V", "<ctrl>+<shift>+v"),
        ("Alt+A", "<alt>+a"),
        ("Ctrl+F5", "<ctrl>+<f5>"),
    ],
)
def test_to_hotkey_translates_qt_sequences(sequence: str, expected: str) -> None:
    assert to_hotkey(sequence) == expected


@pytest.mark.parametrize("sequence", ["", "Hyper+V"])
def test_to_hotkey_rejects_bad_sequences(sequence: str) -> None:
    with pytest.raises(ValueError):
        to_hotkey(sequence)


@pytest.mark.asyncio
async def test_visibility_hotkey_restores_hidden_windows() -> None:
    bus: EventBus = EventBus()
    recorder = EventRecorder(bus)
    manager = WindowManager(bus)
    overlay, chat = _HiddenAwareWindow(), _HiddenAwareWindow()
    manager.register(OVERLAY, overlay)
    manager.register(VISUAL_CHAT, chat)
    listeners: list[_FakeListener] = []

    def factory(mapping: Mapping[str, Callable[[], None]]) -> _FakeListener:
        listeners.append(_FakeListener(mapping))
        return listeners[-1]

    hotkeys = GlobalHotkeys(
        {"Ctrl+Shift+V": manager.toggle_visibility, "Ctrl+Shift+C": manager.show_visual_chat},
        loop=asyncio.get_running_loop(),
        listener_factory=factory,
    )
    assert hotkeys.start() is True
    [listener] = listeners

    listener.press("<ctrl>+<shift>+v")
    await asyncio.sleep(0)
    assert not chat.visible and not overlay.visible

    listener.press("<ctrl>+<shift>+v")
    await asyncio.sleep(0)
    assert chat.visible and overlay.visible
    assert [event.is_visible for event in recorder.of_type(VisibilityChanged)] == [False, True]

    hotkeys.stop()
    assert listener.stopped is True
    assert hotkeys.active is False


@pytest.mark.asyncio
async def test_start_reports_unavailable_backend() -> None:
    def factory(mapping: Mapping[str, Callable[[], None]]) -> _FakeListener:
        raise ImportError("this platform is not supported")

    hotkeys = GlobalHotkeys({"Alt+A": lambda: None}, loop=asyncio.get_running_loop(), listener_factory=factory)

    assert hotkeys.start() is False
    assert hotkeys.active is False
    hotkeys.stop()
