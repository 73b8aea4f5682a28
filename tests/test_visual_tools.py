"""Tests for the visual tools (text, diagram, image, layout)."""

from __future__ import annotations

import pytest

from jarvis.ai.errors import ErrorCode, GenerationError, TransportError, ValidationError
from jarvis.ai.tools.visual import (
    DEFAULT_POSITION,
    LayoutResult,
    Position,
    PositionedResult,
    VisualToolkit,
    strip_code_fences,
)

from tests.helpers import (
    DIAGRAM_SOURCE,
    TINY_PNG,
    FakeGateway,
    chat_response,
    diagram_response,
    image_response,
)


def _toolkit(*responses, image_timeout: float | None = 60.0) -> tuple[VisualToolkit, FakeGateway]:
    gateway = FakeGateway(responses=responses)
    return VisualToolkit(gateway, image_timeout=image_timeout), gateway  # type: ignore[arg-type]


# ----------------------------------------------------------------------------
# generateText
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_text_uses_default_position() -> None:
    toolkit, gateway = _toolkit()

    result = await toolkit.generate_text("Hello")

    assert result == PositionedResult(type="text", content="Hello", position=DEFAULT_POSITION)
    assert result.to_dict() == {"type": "text", "content": "Hello", "position": {"x": 50, "y": 50}}
    assert gateway.complete_calls == []


@pytest.mark.asyncio
async def test_generate_text_is_pure() -> None:
    toolkit, _ = _toolkit()

    first = await toolkit.generate_text("Same", position_x=10, position_y=20)
    second = await toolkit.invoke("generateText", {"text": "Same", "positionX": 10, "positionY": 20})

    assert first == second
    assert first.position == Position(10, 20)


@pytest.mark.asyncio
async def test_invoke_treats_null_positions_as_omitted() -> None:
    toolkit, _ = _toolkit()

    result = await toolkit.invoke("generateText", {"text": "x", "positionX": None, "positionY": 30})

    assert result.position == Position(50, 30)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "arguments",
    [
        {"positionX": 10},
        {"text": "x", "positionX": 150},
        {"text": "x", "positionY": -5},
        {"text": ["not", "a", "string"]},
    ],
)
async def test_invalid_text_arguments_are_rejected(arguments: dict) -> None:
    toolkit, _ = _toolkit()

    with pytest.raises(ValidationError) as excinfo:
        await toolkit.invoke("generateText", arguments)

    assert excinfo.value.error_code == ErrorCode.INVALID_ARGUMENTS


@pytest.mark.asyncio
async def test_unknown_tool_is_rejected() -> None:
    toolkit, _ = _toolkit()

    with pytest.raises(ValidationError) as excinfo:
        await toolkit.invoke("generateVideo", {})

    assert excinfo.value.error_code == ErrorCode.UNKNOWN_TOOL
    assert "generateText" in excinfo.value.details["available"]


# ----------------------------------------------------------------------------
# generateMermaidDiagram
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_diagram_strips_code_fences() -> None:
    toolkit, gateway = _toolkit(diagram_response())

    result = await toolkit.generate_mermaid_diagram("two plus two", position_x=55, position_y=10)

    assert result.type == "mermaid"
    assert result.content == DIAGRAM_SOURCE
    assert result.position == Position(55, 10)
    [call] = gateway.complete_calls
    assert call["retry"] is False
    assert call["model"] is None
    assert "Generate a mermaid diagram for: two plus two" in call["messages"][0]["content"]


@pytest.mark.asyncio
async def test_diagram_without_fences_is_returned_trimmed() -> None:
    toolkit, _ = _toolkit(chat_response("  graph LR; A-->B  \n"))

    result = await toolkit.generate_mermaid_diagram("flow")

    assert result.content == "graph LR; A-->B"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "```mermaid\n```"])
async def test_empty_diagram_is_an_error(content) -> None:
    toolkit, _ = _toolkit(chat_response(content))

    with pytest.raises(GenerationError) as excinfo:
        await toolkit.generate_mermaid_diagram("flow")

    assert excinfo.value.error_code == ErrorCode.EMPTY_RESULT


@pytest.mark.asyncio
async def test_diagram_transport_failure_becomes_generation_error() -> None:
    toolkit, gateway = _toolkit(TransportError(message="connection reset"))

    with pytest.raises(GenerationError) as excinfo:
        await toolkit.generate_mermaid_diagram("flow")

    assert excinfo.value.error_code == ErrorCode.TRANSPORT_FAILURE
    assert "connection reset" in excinfo.value.message
    assert len(gateway.complete_calls) == 1


def test_strip_code_fences() -> None:
    assert strip_code_fences("```mermaid\ngraph TD\n```") == "graph TD"
    assert strip_code_fences("```\nflowchart LR\n```") == "flowchart LR"
    assert strip_code_fences("sequenceDiagram") == "sequenceDiagram"


# ----------------------------------------------------------------------------
# generateImage
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_image_returns_data_url() -> None:
    toolkit, gateway = _toolkit(image_response())

    result = await toolkit.generate_image("a calculator", position_x=10, position_y=45)

    assert result == PositionedResult(type="image", content=TINY_PNG, position=Position(10, 45))
    [call] = gateway.complete_calls
    assert call["model"] == "test-image-model"
    assert call["retry"] is False
    assert call["timeout"] == 60.0
    assert call["extra_body"] == {"modalities": ["image", "text"]}
    assert call["messages"][0]["content"] == [{"type": "text", "text": "a calculator"}]


@pytest.mark.asyncio
async def test_image_accepts_plain_string_entries() -> None:
    toolkit, _ = _toolkit(image_response(images=["https://cdn.example/cat.png"]))

    result = await toolkit.generate_image("cat")

    assert result.content == "https://cdn.example/cat.png"


@pytest.mark.asyncio
@pytest.mark.parametrize("finish_reason", ["length", "content_filter"])
async def test_image_accepts_other_terminal_finish_reasons(finish_reason: str) -> None:
    toolkit, _ = _toolkit(image_response(finish_reason=finish_reason))

    result = await toolkit.generate_image("cat")

    assert result.content == TINY_PNG


@pytest.mark.asyncio
@pytest.mark.parametrize("finish_reason", ["error", None, "tool_calls"])
async def test_image_incomplete_generation(finish_reason) -> None:
    toolkit, _ = _toolkit(image_response(finish_reason=finish_reason))

    with pytest.raises(GenerationError) as excinfo:
        await toolkit.generate_image("cat")

    assert excinfo.value.error_code == ErrorCode.INCOMPLETE_GENERATION
    assert excinfo.value.message.startswith("AI generation incomplete. Reason:")


@pytest.mark.asyncio
async def test_image_missing_url() -> None:
    toolkit, _ = _toolkit(image_response(images=[{"type": "image_url", "image_url": {}}]))

    with pytest.raises(GenerationError) as excinfo:
        await toolkit.generate_image("cat")

    assert excinfo.value.error_code == ErrorCode.MISSING_PAYLOAD


@pytest.mark.asyncio
async def test_image_text_only_response() -> None:
    toolkit, _ = _toolkit(image_response(url=None, content="I cannot draw that."))

    with pytest.raises(GenerationError) as excinfo:
        await toolkit.generate_image("cat")

    assert excinfo.value.error_code == ErrorCode.WRONG_MODALITY


@pytest.mark.asyncio
async def test_image_empty_response() -> None:
    toolkit, _ = _toolkit(image_response(url=None))

    with pytest.raises(GenerationError) as excinfo:
        await toolkit.generate_image("cat")

    assert excinfo.value.error_code == ErrorCode.EMPTY_RESULT


@pytest.mark.asyncio
async def test_image_transport_failure_propagates() -> None:
    toolkit, _ = _toolkit(TransportError(message="timed out"))

    with pytest.raises(TransportError):
        await toolkit.generate_image("cat")


# ----------------------------------------------------------------------------
# generateLayout
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_layout_returns_elements() -> None:
    toolkit, gateway = _toolkit()
    elements = [
        {"id": "t1", "type": "text", "content": "Intro", "position": {"x": 5, "y": 5}},
        {"id": "d1", "type": "mermaid", "content": "graph TD; A-->B", "position": {"x": 60, "y": 10}},
    ]

    result = await toolkit.generate_layout(elements)

    assert isinstance(result, LayoutResult)
    assert result.to_dict() == {"type": "layout", "elements": elements}
    assert gateway.complete_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "element",
    [
        {"id": "x", "type": "video", "content": "c", "position": {"x": 1, "y": 1}},
        {"id": "x", "type": "text", "content": "c", "position": {"x": 101, "y": 1}},
        {"id": "x", "type": "text", "content": "c"},
    ],
)
async def test_layout_rejects_invalid_elements(element: dict) -> None:
    toolkit, _ = _toolkit()

    with pytest.raises(ValidationError):
        await toolkit.generate_layout([element])
