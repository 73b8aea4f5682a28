"""Tests for the declarative tool schemas."""

from __future__ import annotations

import pytest

from jarvis.ai.errors import ErrorCode, ValidationError
from jarvis.ai.tools.schema import ParameterSchema, ToolSchema, position_parameters
from jarvis.ai.tools.visual import TOOL_SCHEMAS, VisualToolkit

from tests.helpers import FakeGateway


def _schema() -> ToolSchema:
    return ToolSchema(
        name="sample",
        description="Sample tool",
        parameters=[
            ParameterSchema(name="text", type="string", description="Text", required=True),
            *position_parameters(),
        ],
    )


def test_validation_schema_keeps_bounds() -> None:
    schema = _schema().to_json_schema()

    assert schema["required"] == ["text"]
    assert schema["additionalProperties"] is False
    assert schema["properties"]["positionX"]["minimum"] == 0
    assert schema["properties"]["positionX"]["maximum"] == 100


def test_strict_schema_is_nullable_and_requires_every_property() -> None:
    schema = _schema().to_json_schema(strict=True)

    assert schema["required"] == ["text", "positionX", "positionY"]
    assert schema["properties"]["positionX"]["type"] == ["number", "null"]
    assert "minimum" not in schema["properties"]["positionX"]
    assert "(0-100)" in schema["properties"]["positionX"]["description"]
    assert schema["properties"]["text"]["type"] == "string"


def test_validate_drops_nulls() -> None:
    assert _schema().validate({"text": "hi", "positionX": None, "positionY": 20}) == {"text": "hi", "positionY": 20}


@pytest.mark.parametrize(
    "arguments",
    [
        {"positionX": 10},
        {"text": 5},
        {"text": "hi", "positionX": 101},
        {"text": "hi", "positionY": -1},
        {"text": "hi", "extra": True},
    ],
)
def test_validate_rejects_bad_arguments(arguments: dict) -> None:
    with pytest.raises(ValidationError) as excinfo:
        _schema().validate(arguments)

    assert excinfo.value.error_code == ErrorCode.INVALID_ARGUMENTS
    assert excinfo.value.message.startswith("Invalid arguments for sample")


def test_validate_rejects_non_mapping() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _schema().validate(["text"])

    assert excinfo.value.details["received"] == "list"


def test_openai_tools_cover_all_visual_tools() -> None:
    toolkit = VisualToolkit(FakeGateway())  # type: ignore[arg-type]

    tools = toolkit.openai_tools()

    names = [tool["function"]["name"] for tool in tools]
    assert names == ["generateText", "generateMermaidDiagram", "generateImage", "generateLayout"]
    for tool in tools:
        assert tool["type"] == "function"
        assert tool["function"]["strict"] is True
        parameters = tool["function"]["parameters"]
        assert sorted(parameters["required"]) == sorted(parameters["properties"])
        assert parameters["additionalProperties"] is False


def test_layout_schema_nests_elements() -> None:
    parameters = TOOL_SCHEMAS["generateLayout"].to_json_schema(strict=True)

    item = parameters["properties"]["elements"]["items"]
    assert item["type"] == "object"
    assert item["properties"]["type"]["enum"] == ["text", "mermaid", "image"]
    assert item["required"] == ["id", "type", "content", "position"]
    assert item["properties"]["position"]["required"] == ["x", "y"]
