"""In-memory conversation history for the current session."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Deque, Dict, Literal, Mapping

LOGGER = logging.getLogger(__name__)

TurnRole = Literal["user", "assistant"]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def freeze(value: Any) -> Any:
    """Return a read-only deep copy: mappings become proxies, lists become tuples."""

    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of :func:`freeze`, producing plain dicts and lists."""

    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(slots=True, frozen=True)
class Turn:
    """One immutable entry in the conversation history."""

    role: TurnRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    source: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", freeze(self.metadata))

    def to_message(self) -> Dict[str, str]:
        """Return the chat-completions message for this turn."""

        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.source is not None:
            payload["source"] = self.source
        if self.role == "assistant":
            payload["metadata"] = thaw(self.metadata)
        return payload


@dataclass(slots=True, frozen=True)
class SessionEvent:
    description: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(slots=True, frozen=True)
class HistoryView:
    """Snapshot returned by :meth:`ConversationHistory.view`."""

    recent: tuple[Turn, ...]
    full: tuple[Turn, ...]
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recent": [turn.to_dict() for turn in self.recent],
            "full": [turn.to_dict() for turn in self.full],
            "count": self.count,
        }


class ConversationHistory:
    """Ordered, bounded store of conversation turns.

    The store never holds more than ``max_history_items`` turns; the oldest
    turns are evicted silently when an append overflows it. Views are tuples,
    so callers cannot mutate the store through them.
    """

    def __init__(self, *, max_history_items: int = 50, max_recent_items: int = 10) -> None:
        if max_history_items < 1:
            raise ValueError("max_history_items must be at least 1")
        if max_recent_items < 0:
            raise ValueError("max_recent_items cannot be negative")
        self._max_history_items = max_history_items
        self._max_recent_items = max_recent_items
        self._turns: Deque[Turn] = deque()
        self._events: list[SessionEvent] = []

    @classmethod
    def from_settings(cls, settings: Any) -> "ConversationHistory":
        session = settings.session
        return cls(
            max_history_items=session.max_history_items,
            max_recent_items=session.max_recent_items,
        )

    @property
    def max_history_items(self) -> int:
        return self._max_history_items

    @property
    def max_recent_items(self) -> int:
        return self._max_recent_items

    def __len__(self) -> int:
        return len(self._turns)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def append_user(self, text: str, source: str = "chat") -> Turn:
        turn = Turn(role="user", content=text, source=source)
        self._append(turn)
        LOGGER.debug("User input added (source=%s, length=%s)", source, len(text))
        return turn

    def append_assistant(self, text: str, metadata: Mapping[str, Any] | None = None) -> Turn:
        turn = Turn(role="assistant", content=text, metadata=metadata or {})
        self._append(turn)
        LOGGER.debug("Model response added (length=%s)", len(text))
        return turn

    def add_event(self, description: str) -> SessionEvent:
        event = SessionEvent(description=description)
        self._events.append(event)
        return event

    def clear(self) -> None:
        self._turns.clear()
        self._events.clear()
        LOGGER.info("Session cleared")

    def _append(self, turn: Turn) -> None:
        self._turns.append(turn)
        excess = len(self._turns) - self._max_history_items
        if excess > 0:
            for _ in range(excess):
                self._turns.popleft()
            LOGGER.debug("History trimmed (removed=%s)", excess)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def recent_view(self, n: int | None = None) -> tuple[Turn, ...]:
        """Return the last ``n`` turns (defaults to ``max_recent_items``)."""

        limit = self._max_recent_items if n is None else max(0, n)
        if limit == 0:
            return ()
        return tuple(self._turns)[-limit:]

    def full_view(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def view(self) -> HistoryView:
        full = self.full_view()
        return HistoryView(recent=self.recent_view(), full=full, count=len(full))

    def events(self) -> tuple[SessionEvent, ...]:
        return tuple(self._events)

    def memory_usage(self) -> Dict[str, Any]:
        """Approximate footprint of the stored turns, measured as JSON."""

        size = len(json.dumps([turn.to_dict() for turn in self._turns], default=str))
        return {
            "conversation_count": len(self._turns),
            "event_count": len(self._events),
            "approximate_size": f"{size / 1024:.2f} KB",
        }


__all__ = ["ConversationHistory", "HistoryView", "SessionEvent", "Turn", "TurnRole"]
