"""System-wide hotkeys that keep working while every Jarvis window is hidden."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Protocol

LOGGER = logging.getLogger(__name__)

_MODIFIERS = {"ctrl": "<ctrl>", "control": "<ctrl>", "shift": "<shift>", "alt": "<alt>", "meta": "<cmd>", "cmd": "<cmd>"}


class HotkeyListener(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


ListenerFactory = Callable[[Mapping[str, Callable[[], None]]], HotkeyListener]


def to_hotkey(sequence: str) -> str:
    """Translate a Qt-style sequence (``"Ctrl+Shift+V"``) into pynput syntax."""

    parts = [part.strip() for part in sequence.split("+") if part.strip()]
    if not parts:
        raise ValueError(f"Empty key sequence: {sequence!r}")
    translated = []
    for part in parts[:-1]:
        modifier = _MODIFIERS.get(part.lower())
        if modifier is None:
            raise ValueError(f"Unknown modifier '{part}' in {sequence!r}")
        translated.append(modifier)
    key = parts[-1].lower()
    translated.append(key if len(key) == 1 else f"<{key}>")
    return "+".join(translated)


def _pynput_listener(mapping: Mapping[str, Callable[[], None]]) -> HotkeyListener:
    from pynput import keyboard

    return keyboard.GlobalHotKeys(dict(mapping))


class GlobalHotkeys:
    """Registers hotkeys with the OS through ``pynput``.

    pynput calls back on its own listener thread; every callback is handed to
    the asyncio loop with ``call_soon_threadsafe`` so it runs next to the Qt
    widgets it touches.
    """

    def __init__(
        self,
        bindings: Mapping[str, Callable[[], Any]],
        *,
        loop: asyncio.AbstractEventLoop,
        listener_factory: ListenerFactory | None = None,
    ) -> None:
        self._bindings = dict(bindings)
        self._loop = loop
        self._listener_factory = listener_factory or _pynput_listener
        self._listener: HotkeyListener | None = None

    @property
    def active(self) -> bool:
        return self._listener is not None

    def start(self) -> bool:
        """Start listening; returns False when the platform offers no global hook."""

        if self._listener is not None:
            return True
        mapping = {to_hotkey(sequence): self._dispatcher(callback) for sequence, callback in self._bindings.items()}
        try:
            listener = self._listener_factory(mapping)
            listener.start()
        except (ImportError, OSError) as exc:
            LOGGER.warning("Global hotkeys unavailable: %s", exc)
            return False
        self._listener = listener
        LOGGER.info("Global hotkeys registered: %s", ", ".join(self._bindings))
        return True

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.stop()

    def _dispatcher(self, callback: Callable[[], Any]) -> Callable[[], None]:
        def _dispatch() -> None:
            if self._loop.is_closed():
                return
            self._loop.call_soon_threadsafe(callback)

        return _dispatch


__all__ = ["GlobalHotkeys", "HotkeyListener", "to_hotkey"]
