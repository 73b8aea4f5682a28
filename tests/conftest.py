"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from jarvis.session.history import ConversationHistory
from jarvis.ui.events import EventBus

_ENV_VARS = (
    "OPENROUTER_API_KEY",
    "JARVIS_API_KEY",
    "JARVIS_BASE_URL",
    "OPENROUTER_MODEL",
    "IMAGE_MODEL",
    "SITE_URL",
    "JARVIS_DEBUG",
    "JARVIS_DEBUG_LOGGING",
    "JARVIS_REQUEST_TIMEOUT",
    "JARVIS_IMAGE_TIMEOUT",
    "JARVIS_MAX_HISTORY_ITEMS",
    "JARVIS_MAX_RECENT_ITEMS",
    "JARVIS_SETTINGS_PATH",
    "STEALTH_MODE",
    "PROCESS_TITLE",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def history() -> ConversationHistory:
    return ConversationHistory(max_history_items=50, max_recent_items=10)
