"""Tests for the overlay window manager."""

from __future__ import annotations

import pytest

from jarvis.ui.events import EventBus, InteractionModeChanged, VisibilityChanged
from jarvis.ui.window_manager import OVERLAY, VISUAL_CHAT, ManagedWindow, WindowManager

from tests.helpers import EventRecorder


class _FakeWindow:
    def __init__(self, *, fail_on_dispose: bool = False) -> None:
        self.calls: list[str] = []
        self.click_through: bool | None = None
        self._fail_on_dispose = fail_on_dispose

    def show(self) -> None:
        self.calls.append("show")

    def hide(self) -> None:
        self.calls.append("hide")

    def focus(self) -> None:
        self.calls.append("focus")

    def set_click_through(self, enabled: bool) -> None:
        self.click_through = enabled

    def dispose(self) -> None:
        self.calls.append("dispose")
        if self._fail_on_dispose:
            raise RuntimeError("Internal C++ object already deleted.")


def _manager(**kwargs) -> tuple[WindowManager, EventRecorder, _FakeWindow, _FakeWindow]:
    bus: EventBus = EventBus()
    recorder = EventRecorder(bus)
    manager = WindowManager(bus, **kwargs)
    overlay, chat = _FakeWindow(), _FakeWindow()
    manager.register(OVERLAY, overlay)
    manager.register(VISUAL_CHAT, chat)
    return manager, recorder, overlay, chat


def test_fake_window_satisfies_protocol() -> None:
    assert isinstance(_FakeWindow(), ManagedWindow)


def test_windows_start_visible_and_interactive() -> None:
    manager, recorder, overlay, _ = _manager()

    assert manager.is_visible
    assert manager.is_interactive
    assert overlay.click_through is False
    assert recorder.events == []


def test_register_rejects_duplicate_names() -> None:
    manager, _, _, _ = _manager()

    with pytest.raises(ValueError):
        manager.register(OVERLAY, _FakeWindow())
    assert manager.get("missing") is None


def test_toggle_visibility_hides_and_shows_everything() -> None:
    manager, recorder, overlay, chat = _manager()

    assert manager.toggle_visibility() is False
    assert manager.toggle_visibility() is True

    assert overlay.calls == ["hide", "show"]
    assert chat.calls == ["hide", "show"]
    assert [event.is_visible for event in recorder.of_type(VisibilityChanged)] == [False, True]


def test_toggle_interaction_switches_click_through() -> None:
    manager, recorder, overlay, chat = _manager()

    assert manager.toggle_interaction() is False
    assert overlay.click_through is True
    assert chat.click_through is True

    assert manager.toggle_interaction() is True
    assert overlay.click_through is False
    assert [event.is_interactive for event in recorder.of_type(InteractionModeChanged)] == [False, True]


def test_toggle_interaction_is_noop_when_click_through_disabled() -> None:
    manager, recorder, overlay, _ = _manager(click_through_enabled=False)

    assert manager.toggle_interaction() is True

    assert overlay.click_through is False
    assert recorder.of_type(InteractionModeChanged) == []


def test_show_and_hide_visual_chat() -> None:
    manager, _, overlay, chat = _manager()

    manager.show_visual_chat()
    manager.hide_visual_chat()

    assert chat.calls == ["show", "focus", "hide"]
    assert overlay.calls == []


def test_destroy_all_tolerates_already_deleted_windows() -> None:
    bus: EventBus = EventBus()
    manager = WindowManager(bus)
    broken, healthy = _FakeWindow(fail_on_dispose=True), _FakeWindow()
    manager.register(OVERLAY, broken)
    manager.register(VISUAL_CHAT, healthy)

    manager.destroy_all()

    assert healthy.calls == ["dispose"]
    assert manager.get(OVERLAY) is None
    assert list(manager) == []
