"""Drives one user turn and guarantees text, diagram and image output."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict

from ..errors import ErrorCode, JarvisError, PartialGenerationError, ValidationError
from ...ui.events import (
    StreamChunk,
    StreamComplete,
    ToolCallStarted,
    ToolResultReady,
    TurnCanceled,
    TurnFailed,
    TurnStarted,
)
from .completion import CompletionPolicy, CompletionState, Modality
from .stream_events import TextDelta, ToolCall, ToolResult

if TYPE_CHECKING:  # pragma: no cover
    from ...session.history import ConversationHistory
    from ...ui.events import EventBus
    from ..client import GatewayClient
    from ..tools.visual import VisualToolkit
    from .tool_stream import ToolStreamRunner

LOGGER = logging.getLogger(__name__)

TOOL_ONLY_PLACEHOLDER = "Tool execution completed"


@dataclass(slots=True)
class TurnOutcome:
    """Summary of a completed turn returned to the caller."""

    text: str
    tool_results: list[Dict[str, Any]] = field(default_factory=list)
    errors: list[PartialGenerationError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors


class TurnOrchestrator:
    """Runs a user turn end to end against an injected history store.

    The turn streams through :class:`ToolStreamRunner`, forwarding every event
    to the bus as it arrives. Whatever modality the model left out is then
    produced by invoking the matching tool directly; a failing corrective is
    logged and skipped. Exactly one assistant turn is persisted at the end.

    Only one turn may run at a time per orchestrator.
    """

    def __init__(
        self,
        *,
        client: "GatewayClient",
        toolkit: "VisualToolkit",
        runner: "ToolStreamRunner",
        history: "ConversationHistory",
        bus: "EventBus",
        policy: CompletionPolicy | None = None,
    ) -> None:
        self._client = client
        self._toolkit = toolkit
        self._runner = runner
        self._history = history
        self._bus = bus
        self._policy = policy or CompletionPolicy()
        self._task: asyncio.Task[Any] | None = None
        self._running = False
        self._cancel_requested = False

    @property
    def policy(self) -> CompletionPolicy:
        return self._policy

    def is_running(self) -> bool:
        return self._running

    async def run_turn(self, user_text: str) -> TurnOutcome:
        """Run one turn.

        Raises:
            ValidationError: Empty input, or a turn is already running.
                Raised before the history or the network is touched.
            TransportError: The primary stream failed before producing content.
            asyncio.CancelledError: The turn was canceled.
        """
        text = (user_text or "").strip()
        if not text:
            raise ValidationError(error_code=ErrorCode.INVALID_INPUT, message="Message cannot be empty")
        if self._running:
            raise ValidationError(error_code=ErrorCode.INVALID_INPUT, message="A turn is already in progress")

        upstream = [turn.to_message() for turn in self._history.recent_view()]
        self._history.append_user(text, source="chat")
        self._running = True
        self._cancel_requested = False
        self._task = asyncio.current_task()
        state = CompletionState(self._policy)
        LOGGER.info("Turn started (length=%s, history=%s)", len(text), len(upstream))
        self._bus.publish(TurnStarted(user_text=text))

        try:
            streamed = await self._consume_stream(upstream, text, state)
            self._raise_if_canceled()
            await self._run_correctives(state, streamed, text)
            self._raise_if_canceled()

            content = streamed if streamed.strip() else TOOL_ONLY_PLACEHOLDER
            metadata = {"model": self._client.model, "tools": state.tool_metadata()}
            self._history.append_assistant(content, metadata)
            LOGGER.info(
                "Turn completed (text_length=%s, tool_results=%s, corrective_failures=%s)",
                len(streamed),
                len(state.records),
                len(state.errors),
            )
            self._bus.publish(StreamComplete())
            return TurnOutcome(text=streamed, tool_results=state.tool_metadata(), errors=list(state.errors))
        except asyncio.CancelledError:
            LOGGER.info("Turn canceled")
            self._bus.publish(TurnCanceled())
            raise
        except JarvisError as exc:
            LOGGER.error("Turn failed: %s", exc)
            self._bus.publish(TurnFailed(error=exc.message, error_code=exc.error_code))
            raise
        finally:
            self._running = False
            self._cancel_requested = False
            self._task = None

    def cancel(self) -> bool:
        """Cancel the running turn; returns False when no turn is running."""

        if not self._running:
            LOGGER.debug("Cancel requested with no turn running")
            return False
        self._cancel_requested = True
        task = self._task
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # From inside the turn's own task the flag is checked at the next event.
        if task is not None and task is not current and not task.done():
            task.cancel()
        return True

    async def _consume_stream(self, upstream: list[Dict[str, str]], user_text: str, state: CompletionState) -> str:
        buffer: list[str] = []
        produced_content = False
        try:
            async with aclosing(self._runner.stream(upstream, user_text)) as events:
                async for event in events:
                    self._raise_if_canceled()
                    if isinstance(event, TextDelta):
                        buffer.append(event.delta)
                        produced_content = True
                        self._bus.publish(StreamChunk(chunk=event.delta))
                    elif isinstance(event, ToolCall):
                        self._bus.publish(ToolCallStarted(tool_name=event.name, args=dict(event.args)))
                    elif isinstance(event, ToolResult):
                        state.record(event.name, event.result)
                        produced_content = True
                        self._bus.publish(ToolResultReady(tool_name=event.name, result=event.result.to_dict()))
        except JarvisError as exc:
            if not produced_content:
                raise
            LOGGER.warning("Stream failed after content was produced; continuing with correctives: %s", exc)
        return "".join(buffer)

    async def _run_correctives(self, state: CompletionState, streamed: str, user_text: str) -> None:
        for modality in state.missing():
            self._raise_if_canceled()
            await self._run_corrective(state, modality, streamed, user_text)

    async def _run_corrective(self, state: CompletionState, modality: Modality, streamed: str, user_text: str) -> None:
        tool_name = self._policy.corrective_tool(modality)
        if tool_name is None:  # pragma: no cover - rejected by CompletionPolicy
            return
        args = self._policy.corrective_arguments(modality, streamed, user_text)
        LOGGER.info("Model omitted %s output; invoking %s directly", modality, tool_name)
        self._bus.publish(ToolCallStarted(tool_name=tool_name, args=dict(args), corrective=True))
        try:
            result = await self._toolkit.invoke(tool_name, args)
        except JarvisError as exc:
            error = PartialGenerationError(
                message=f"Corrective {modality} generation failed: {exc.message}",
                details=exc.to_dict(),
                modality=modality,
                tool_name=tool_name,
            )
            LOGGER.warning("%s", error.message)
            state.errors.append(error)
            return
        state.record(tool_name, result, corrective=True)
        self._bus.publish(ToolResultReady(tool_name=tool_name, result=result.to_dict(), corrective=True))

    def _raise_if_canceled(self) -> None:
        if self._cancel_requested:
            raise asyncio.CancelledError()


__all__ = ["TOOL_ONLY_PLACEHOLDER", "TurnOrchestrator", "TurnOutcome"]
