"""Tests for the caller-facing chat controller."""

from __future__ import annotations

import asyncio

import pytest

from jarvis.ai.errors import TransportError
from jarvis.ui.chat_controller import TURN_BUSY_MESSAGE, TURN_CANCELED_MESSAGE
from jarvis.ui.events import SessionCleared, StreamChunk, TurnCanceled

from tests.helpers import (
    BLOCK,
    DIAGRAM_SOURCE,
    TINY_PNG,
    FakeGateway,
    build_stack,
    chat_response,
    diagram_response,
    image_response,
    text_delta,
)


@pytest.mark.asyncio
async def test_run_turn_reports_success() -> None:
    stack = build_stack(FakeGateway(steps=[[text_delta("4")]], responses=[diagram_response(), image_response()]))

    result = await stack.controller.run_turn("What is 2+2?")

    assert result == {"success": True}
    assert stack.controller.last_outcome is not None
    assert len(stack.controller.last_outcome.tool_results) == 3
    assert not stack.controller.is_busy()


@pytest.mark.asyncio
async def test_run_turn_succeeds_when_a_corrective_fails() -> None:
    stack = build_stack(
        FakeGateway(steps=[[text_delta("4")]], responses=[diagram_response(), image_response(finish_reason="error")])
    )

    result = await stack.controller.run_turn("What is 2+2?")

    assert result == {"success": True}
    assert len(stack.controller.last_outcome.errors) == 1


@pytest.mark.asyncio
async def test_run_turn_reports_validation_error() -> None:
    stack = build_stack(FakeGateway())

    result = await stack.controller.run_turn("   ")

    assert result == {"success": False, "error": "Message cannot be empty"}


@pytest.mark.asyncio
async def test_run_turn_reports_stream_failure() -> None:
    stack = build_stack(FakeGateway(steps=[[TransportError(message="gateway unreachable")]]))

    result = await stack.controller.run_turn("hello")

    assert result == {"success": False, "error": "gateway unreachable"}


@pytest.mark.asyncio
async def test_clear_session_cancels_running_turn() -> None:
    stack = build_stack(FakeGateway(steps=[[text_delta("thinking"), BLOCK]]))
    streaming = asyncio.Event()
    stack.bus.subscribe(StreamChunk, lambda event: streaming.set())

    pending = asyncio.ensure_future(stack.controller.run_turn("hello"))
    await asyncio.wait_for(streaming.wait(), timeout=1)
    assert stack.controller.is_busy()

    assert stack.controller.clear_session() == {"success": True}
    result = await pending

    assert result == {"success": False, "error": TURN_CANCELED_MESSAGE}
    assert len(stack.recorder.of_type(TurnCanceled)) == 1
    assert len(stack.recorder.of_type(SessionCleared)) == 1
    assert len(stack.history) == 0
    assert stack.gateway.streams_closed == 1


@pytest.mark.asyncio
async def test_second_turn_while_busy_is_rejected() -> None:
    stack = build_stack(FakeGateway(steps=[[text_delta("thinking"), BLOCK]]))
    streaming = asyncio.Event()
    stack.bus.subscribe(StreamChunk, lambda event: streaming.set())
    pending = asyncio.ensure_future(stack.controller.run_turn("first"))
    await asyncio.wait_for(streaming.wait(), timeout=1)

    assert await stack.controller.run_turn("second") == {"success": False, "error": TURN_BUSY_MESSAGE}

    assert stack.controller.cancel_turn() is True
    assert await pending == {"success": False, "error": TURN_CANCELED_MESSAGE}
    assert stack.controller.cancel_turn() is False


@pytest.mark.asyncio
async def test_send_message_records_both_turns() -> None:
    stack = build_stack(FakeGateway(responses=[chat_response("Paris", model="openai/gpt-3.5-turbo")]))
    stack.history.append_user("earlier")

    result = await stack.controller.send_message("Capital of France?")

    assert result == {"success": True, "response": "Paris"}
    [call] = stack.gateway.complete_calls
    assert call["messages"] == [
        {"role": "user", "content": "earlier"},
        {"role": "user", "content": "Capital of France?"},
    ]
    assistant = stack.history.full_view()[-1]
    assert assistant.content == "Paris"
    assert assistant.metadata["model"] == "openai/gpt-3.5-turbo"
    assert assistant.metadata["usage"]["total_tokens"] == 20


@pytest.mark.asyncio
async def test_send_message_failures_are_reported() -> None:
    stack = build_stack(FakeGateway(responses=[TransportError(message="timeout"), chat_response(None)]))

    assert await stack.controller.send_message("") == {"success": False, "error": "Message cannot be empty"}
    assert await stack.controller.send_message("hi") == {"success": False, "error": "timeout"}
    failed = await stack.controller.send_message("hi again")

    assert failed["success"] is False
    assert [turn.role for turn in stack.history.full_view()] == ["user", "user"]


@pytest.mark.asyncio
async def test_generate_diagram_and_image() -> None:
    stack = build_stack(FakeGateway(responses=[diagram_response(), image_response(), chat_response("")]))

    assert await stack.controller.generate_diagram("flow") == {"success": True, "diagram": DIAGRAM_SOURCE}
    assert await stack.controller.generate_image("cat") == {"success": True, "image_url": TINY_PNG}
    failed = await stack.controller.generate_diagram("empty")
    assert failed == {"success": False, "error": "AI model returned an empty diagram"}


@pytest.mark.asyncio
async def test_session_history_and_memory_usage() -> None:
    stack = build_stack(FakeGateway(steps=[[text_delta("4")]], responses=[diagram_response(), image_response()]))
    await stack.controller.run_turn("What is 2+2?")

    snapshot = stack.controller.session_history()

    assert snapshot["count"] == 2
    assert snapshot["full"][1]["metadata"]["tools"][0]["tool_name"] == "generateText"
    assert stack.controller.memory_usage()["conversation_count"] == 2
