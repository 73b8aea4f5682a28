"""Presentation-boundary events and the in-process bus that carries them.

The orchestrator, the window manager and the controller publish typed
events; overlay windows, the headless console printer and tests subscribe.
Nothing in the core imports a UI toolkit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all presentation events."""


# =============================================================================
# Turn events
# =============================================================================


@dataclass(slots=True)
class TurnStarted(Event):
    """A user turn was accepted and is about to stream.

    Attributes:
        user_text: The stripped user input.
    """

    user_text: str


@dataclass(slots=True)
class StreamChunk(Event):
    """A text delta arrived from the model.

    Attributes:
        chunk: The delta, forwarded exactly as received.
    """

    chunk: str


@dataclass(slots=True)
class ToolCallStarted(Event):
    """A tool invocation began.

    Attributes:
        tool_name: Name of the invoked tool.
        args: Arguments the tool was invoked with.
        corrective: True when the orchestrator issued the call itself.
    """

    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    corrective: bool = False


@dataclass(slots=True)
class ToolResultReady(Event):
    """A tool produced a result ready for display.

    Attributes:
        tool_name: Name of the tool that produced the result.
        result: Serialized positioned or layout result.
        corrective: True when the orchestrator issued the call itself.
    """

    tool_name: str
    result: dict[str, Any]
    corrective: bool = False


@dataclass(slots=True)
class StreamComplete(Event):
    """The turn finished and the assistant turn was persisted."""


@dataclass(slots=True)
class TurnFailed(Event):
    error: str
    error_code: str | None = None


@dataclass(slots=True)
class TurnCanceled(Event):
    """The running turn was canceled before completion."""


@dataclass(slots=True)
class SessionCleared(Event):
    """The conversation history was wiped."""


# =============================================================================
# Window events
# =============================================================================


@dataclass(slots=True)
class InteractionModeChanged(Event):
    """Windows switched between click-through and interactive mode."""

    is_interactive: bool


@dataclass(slots=True)
class VisibilityChanged(Event):
    is_visible: bool


# Published once per delta; logging each publish would flood the debug log.
_QUIET_EVENT_TYPES: frozenset[type[Event]] = frozenset({StreamChunk})


class EventBus(Generic[E]):
    """Synchronous publish/subscribe bus keyed by exact event type.

    Bound-method handlers are held weakly so a closed window drops out of the
    bus on its own; plain functions and lambdas are held strongly. A handler
    that raises is logged and the remaining handlers still run.

    Not thread-safe: publish from the thread running the asyncio/Qt loop.
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: DefaultDict[type[Event], list[_Subscription]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._subscriptions[event_type].append(_Subscription.wrap(handler))
        logger.debug("Subscribed %s to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        subscriptions = self._subscriptions.get(event_type)
        if not subscriptions:
            return
        for index, subscription in enumerate(subscriptions):
            if subscription.points_to(handler):
                del subscriptions[index]
                logger.debug("Unsubscribed %s from %s", _describe(handler), event_type.__name__)
                return

    def publish(self, event: Event) -> None:
        event_type = type(event)
        subscriptions = self._subscriptions.get(event_type)
        quiet = event_type in _QUIET_EVENT_TYPES
        if not subscriptions:
            if not quiet:
                logger.debug("No handlers for %s", event_type.__name__)
            return
        if not quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(subscriptions))

        live: list[_Subscription] = []
        for subscription in list(subscriptions):
            handler = subscription.resolve()
            if handler is None:
                continue
            live.append(subscription)
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %s failed on %s", _describe(handler), event_type.__name__)
        if len(live) != len(subscriptions):
            # Drop handlers whose owners were garbage collected, keeping any added mid-publish.
            subscriptions[:] = [item for item in subscriptions if item.resolve() is not None]

    def clear(self) -> None:
        self._subscriptions.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        if event_type is not None:
            return len(self._subscriptions.get(event_type, []))
        return sum(len(items) for items in self._subscriptions.values())


class _Subscription:
    __slots__ = ("_target", "_weak")

    def __init__(self, target: Any, weak: bool) -> None:
        self._target = target
        self._weak = weak

    @classmethod
    def wrap(cls, handler: Handler) -> "_Subscription":
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), weak=True)
            except TypeError:
                pass
        return cls(handler, weak=False)

    def resolve(self) -> Handler | None:
        return self._target() if self._weak else self._target

    def points_to(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _describe(handler: Handler) -> str:
    owner = getattr(handler, "__self__", None)
    func = getattr(handler, "__func__", None)
    if owner is not None and func is not None:
        return f"{type(owner).__name__}.{func.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "InteractionModeChanged",
    "SessionCleared",
    "StreamChunk",
    "StreamComplete",
    "ToolCallStarted",
    "ToolResultReady",
    "TurnCanceled",
    "TurnFailed",
    "TurnStarted",
    "VisibilityChanged",
]
