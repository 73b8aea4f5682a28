"""Session state held for the lifetime of the application."""

from .history import ConversationHistory, HistoryView, SessionEvent, Turn

__all__ = ["ConversationHistory", "HistoryView", "SessionEvent", "Turn"]
