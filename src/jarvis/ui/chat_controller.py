"""Caller-facing operations used by the chat window and the headless CLI.

Every operation returns a plain result mapping (``{"success": bool, ...}``)
instead of raising; streamed payloads reach the presentation layer through
the event bus.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict

from ..ai.errors import ErrorCode, GenerationError, JarvisError
from .events import EventBus, SessionCleared

if TYPE_CHECKING:  # pragma: no cover
    from ..ai.client import GatewayClient
    from ..ai.orchestration.turn_orchestrator import TurnOrchestrator, TurnOutcome
    from ..ai.tools.visual import VisualToolkit
    from ..session.history import ConversationHistory

LOGGER = logging.getLogger(__name__)

TURN_CANCELED_MESSAGE = "Turn canceled"
TURN_BUSY_MESSAGE = "A turn is already in progress"


class ChatController:
    """Entry points for turns, one-shot generations and session management."""

    def __init__(
        self,
        *,
        orchestrator: "TurnOrchestrator",
        client: "GatewayClient",
        toolkit: "VisualToolkit",
        history: "ConversationHistory",
        bus: EventBus,
    ) -> None:
        self._orchestrator = orchestrator
        self._client = client
        self._toolkit = toolkit
        self._history = history
        self._bus = bus
        self._task: asyncio.Task["TurnOutcome"] | None = None
        self._last_outcome: "TurnOutcome | None" = None

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def last_outcome(self) -> "TurnOutcome | None":
        return self._last_outcome

    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    async def run_turn(self, text: str) -> Dict[str, Any]:
        """Run one streamed turn; content arrives on the bus, not in the result."""

        if self.is_busy():
            LOGGER.warning("Rejected turn while another turn is running")
            return {"success": False, "error": TURN_BUSY_MESSAGE}

        task = asyncio.ensure_future(self._orchestrator.run_turn(text))
        self._task = task
        try:
            self._last_outcome = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return {"success": False, "error": TURN_CANCELED_MESSAGE}
        except JarvisError as exc:
            LOGGER.warning("Turn failed (%s): %s", exc.error_code, exc.message)
            return {"success": False, "error": exc.message}
        except Exception as exc:
            LOGGER.exception("Unexpected error while running turn")
            return {"success": False, "error": str(exc) or type(exc).__name__}
        finally:
            if self._task is task:
                self._task = None
        return {"success": True}

    def cancel_turn(self) -> bool:
        if not self.is_busy():
            return False
        self._orchestrator.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    # ------------------------------------------------------------------
    # One-shot requests
    # ------------------------------------------------------------------
    async def send_message(self, text: str) -> Dict[str, Any]:
        """Non-streaming chat without tools; both turns land in the history."""

        message = (text or "").strip()
        if not message:
            return {"success": False, "error": "Message cannot be empty"}
        upstream = [turn.to_message() for turn in self._history.recent_view()]
        self._history.append_user(message, source="chat")
        try:
            response = await self._client.complete([*upstream, {"role": "user", "content": message}])
            content = _message_content(response)
        except JarvisError as exc:
            LOGGER.error("Chat message failed: %s", exc)
            return {"success": False, "error": exc.message}
        usage = response.get("usage")
        LOGGER.info(
            "Chat response received (model=%s, tokens=%s)",
            response.get("model"),
            usage.get("total_tokens") if isinstance(usage, dict) else None,
        )
        self._history.append_assistant(content, {"model": response.get("model"), "usage": usage})
        return {"success": True, "response": content}

    async def generate_diagram(self, prompt: str) -> Dict[str, Any]:
        try:
            result = await self._toolkit.generate_mermaid_diagram(prompt)
        except JarvisError as exc:
            LOGGER.error("Diagram generation failed: %s", exc)
            return {"success": False, "error": exc.message}
        return {"success": True, "diagram": result.content}

    async def generate_image(self, prompt: str) -> Dict[str, Any]:
        try:
            result = await self._toolkit.generate_image(prompt)
        except JarvisError as exc:
            LOGGER.error("Image generation failed: %s", exc)
            return {"success": False, "error": exc.message}
        return {"success": True, "image_url": result.content}

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    def session_history(self) -> Dict[str, Any]:
        return self._history.view().to_dict()

    def memory_usage(self) -> Dict[str, Any]:
        return self._history.memory_usage()

    def clear_session(self) -> Dict[str, Any]:
        if self.cancel_turn():
            LOGGER.info("Canceled running turn before clearing the session")
        self._history.clear()
        self._bus.publish(SessionCleared())
        return {"success": True}


def _message_content(response: Dict[str, Any]) -> str:
    choices = response.get("choices") or []
    message = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise GenerationError(
            error_code=ErrorCode.EMPTY_RESULT,
            message="AI model did not return a message",
        )
    return content


__all__ = ["TURN_BUSY_MESSAGE", "TURN_CANCELED_MESSAGE", "ChatController"]
