"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Iterable, Sequence, cast

from jarvis.ai.client import AIStreamEvent, GatewayClient
from jarvis.ai.orchestration import CompletionPolicy, ToolStreamRunner, TurnOrchestrator
from jarvis.ai.tools.visual import VisualToolkit
from jarvis.session.history import ConversationHistory
from jarvis.ui.chat_controller import ChatController
from jarvis.ui.events import (
    Event,
    EventBus,
    InteractionModeChanged,
    SessionCleared,
    StreamChunk,
    StreamComplete,
    ToolCallStarted,
    ToolResultReady,
    TurnCanceled,
    TurnFailed,
    TurnStarted,
    VisibilityChanged,
)

TINY_PNG = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"
DIAGRAM_SOURCE = "graph TD\n    A[2] --> C[4]\n    B[2] --> C"


class FakeGateway:
    """Scripted stand-in for :class:`GatewayClient`.

    ``steps`` holds one list per streamed model step; each item is either an
    :class:`AIStreamEvent` to yield or an exception to raise at that point.
    ``responses`` feeds :meth:`complete` in order (dicts are returned,
    exceptions are raised). Every call is recorded for assertions.

    Example:
        gateway = FakeGateway(steps=[[text_delta("4")]], responses=[diagram_response()])
    """

    def __init__(
        self,
        *,
        steps: Iterable[Sequence[Any]] | None = None,
        responses: Iterable[Any] | None = None,
        model: str = "test-model",
        image_model: str = "test-image-model",
    ) -> None:
        self.model = model
        self.image_model = image_model
        self.settings = SimpleNamespace(model=model, image_model=image_model)
        self._steps = [list(step) for step in (steps or [])]
        self._responses = list(responses or [])
        self.stream_calls: list[dict[str, Any]] = []
        self.complete_calls: list[dict[str, Any]] = []
        self.streams_closed = 0
        self.closed = False

    async def stream_chat(self, messages, *, tools=None, tool_choice=None, temperature=None, **extra):
        self.stream_calls.append(
            {
                "messages": [dict(message) for message in messages],
                "tools": tools,
                "temperature": temperature,
            }
        )
        step = self._steps.pop(0) if self._steps else []
        try:
            for item in step:
                if isinstance(item, BaseException):
                    raise item
                if item is BLOCK:
                    await asyncio.Event().wait()
                yield item
        finally:
            self.streams_closed += 1

    async def complete(self, messages, *, model=None, retry=True, timeout=None, **extra):
        self.complete_calls.append(
            {
                "messages": [dict(message) for message in messages],
                "model": model,
                "retry": retry,
                "timeout": timeout,
                **extra,
            }
        )
        if not self._responses:
            raise AssertionError("Unexpected gateway request")
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


# Marker placed in a scripted step to make the stream hang until canceled.
BLOCK = object()


def text_delta(text: str) -> AIStreamEvent:
    return AIStreamEvent(type="content.delta", content=text)


def tool_call(name: str, args: dict[str, Any], *, call_id: str | None = None, index: int = 0) -> AIStreamEvent:
    return AIStreamEvent(
        type="tool_calls.function.arguments.done",
        tool_name=name,
        tool_index=index,
        tool_arguments=json.dumps(args),
        parsed=args,
        tool_call_id=call_id,
    )


def chat_response(content: str | None, *, model: str = "test-model", finish_reason: str = "stop") -> dict[str, Any]:
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20},
    }


def diagram_response(source: str = DIAGRAM_SOURCE) -> dict[str, Any]:
    return chat_response(f"```mermaid\n{source}\n```")


def image_response(
    url: str | None = TINY_PNG,
    *,
    finish_reason: str | None = "stop",
    content: str | None = None,
    images: list[Any] | None = None,
) -> dict[str, Any]:
    if images is None:
        images = [{"type": "image_url", "image_url": {"url": url}}] if url else []
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if images:
        message["images"] = images
    return {"model": "test-image-model", "choices": [{"message": message, "finish_reason": finish_reason}]}


_RECORDED_EVENTS: tuple[type[Event], ...] = (
    TurnStarted,
    StreamChunk,
    ToolCallStarted,
    ToolResultReady,
    StreamComplete,
    TurnFailed,
    TurnCanceled,
    SessionCleared,
    InteractionModeChanged,
    VisibilityChanged,
)


class EventRecorder:
    """Collects every published event in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        for event_type in _RECORDED_EVENTS:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if type(event) is event_type]

    def kinds(self) -> list[str]:
        return [type(event).__name__ for event in self.events]


def build_stack(
    gateway: FakeGateway,
    *,
    history: ConversationHistory | None = None,
    policy: CompletionPolicy | None = None,
    max_steps: int = 10,
) -> SimpleNamespace:
    """Wire an orchestrator and controller around ``gateway``."""

    client = cast(GatewayClient, gateway)
    bus: EventBus = EventBus()
    recorder = EventRecorder(bus)
    history = history if history is not None else ConversationHistory()
    toolkit = VisualToolkit(client)
    runner = ToolStreamRunner(client, toolkit, max_steps=max_steps, system_message="system prompt")
    orchestrator = TurnOrchestrator(
        client=client, toolkit=toolkit, runner=runner, history=history, bus=bus, policy=policy
    )
    controller = ChatController(orchestrator=orchestrator, client=client, toolkit=toolkit, history=history, bus=bus)
    return SimpleNamespace(
        gateway=gateway,
        bus=bus,
        recorder=recorder,
        history=history,
        toolkit=toolkit,
        runner=runner,
        orchestrator=orchestrator,
        controller=controller,
    )
