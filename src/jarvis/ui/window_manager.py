"""Named registry of overlay windows and their shared stealth state."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Protocol, runtime_checkable

from .events import EventBus, InteractionModeChanged, VisibilityChanged

LOGGER = logging.getLogger(__name__)

OVERLAY = "overlay"
VISUAL_CHAT = "visual_chat"


@runtime_checkable
class ManagedWindow(Protocol):
    """What the manager needs from a window; the Qt window implements it."""

    def show(self) -> None: ...

    def hide(self) -> None: ...

    def focus(self) -> None: ...

    def set_click_through(self, enabled: bool) -> None: ...

    def dispose(self) -> None: ...


class WindowManager:
    """Applies visibility and interaction changes to every registered window.

    Windows start visible and interactive. Toggling interaction switches all
    windows between click-through and interactive mode; toggling visibility
    shows or hides all of them. Both changes are published on the bus.
    """

    def __init__(self, bus: EventBus, *, click_through_enabled: bool = True) -> None:
        self._bus = bus
        self._windows: Dict[str, ManagedWindow] = {}
        self._visible = True
        self._interactive = True
        self._click_through_enabled = click_through_enabled

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def is_interactive(self) -> bool:
        return self._interactive

    def __iter__(self) -> Iterator[tuple[str, ManagedWindow]]:
        return iter(list(self._windows.items()))

    def register(self, name: str, window: ManagedWindow) -> None:
        if name in self._windows:
            raise ValueError(f"A window named '{name}' is already registered")
        self._windows[name] = window
        window.set_click_through(not self._interactive)
        LOGGER.info("Window registered: %s", name)

    def get(self, name: str) -> ManagedWindow | None:
        return self._windows.get(name)

    def toggle_visibility(self) -> bool:
        self._visible = not self._visible
        for window in self._windows.values():
            if self._visible:
                window.show()
            else:
                window.hide()
        LOGGER.info("Visibility toggled (visible=%s)", self._visible)
        self._bus.publish(VisibilityChanged(is_visible=self._visible))
        return self._visible

    def toggle_interaction(self) -> bool:
        if not self._click_through_enabled:
            LOGGER.info("Click-through disabled in settings; interaction stays on")
            return self._interactive
        self._interactive = not self._interactive
        for window in self._windows.values():
            window.set_click_through(not self._interactive)
        LOGGER.info("Interaction toggled (interactive=%s)", self._interactive)
        self._bus.publish(InteractionModeChanged(is_interactive=self._interactive))
        return self._interactive

    def show_visual_chat(self) -> None:
        window = self._windows.get(VISUAL_CHAT)
        if window is None:
            return
        window.show()
        window.focus()
        LOGGER.info("Visual chat shown")

    def hide_visual_chat(self) -> None:
        window = self._windows.get(VISUAL_CHAT)
        if window is None:
            return
        window.hide()
        LOGGER.info("Visual chat hidden")

    def destroy_all(self) -> None:
        for name, window in list(self._windows.items()):
            try:
                window.dispose()
            except RuntimeError:
                # Qt raises when the underlying C++ object is already gone.
                LOGGER.debug("Window %s was already destroyed", name)
        self._windows.clear()
        LOGGER.info("All windows destroyed")


__all__ = ["OVERLAY", "VISUAL_CHAT", "ManagedWindow", "WindowManager"]
