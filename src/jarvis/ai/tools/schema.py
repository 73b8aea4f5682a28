"""Declarative argument schemas for the visual tools.

Each tool declares its parameters once. The same declaration renders the
OpenAI function-calling definition sent to the model and the JSON Schema
used to validate arguments before a tool runs, whether the call came from
the model or from the orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from jsonschema import Draft202012Validator

from ..errors import ErrorCode, ValidationError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """Schema for a single tool parameter.

    Attributes:
        name: Parameter name.
        type: JSON Schema type (string, number, object, array).
        description: Human-readable description shown to the model.
        required: Whether the parameter must be supplied.
        enum: List of allowed values.
        minimum: Minimum value for numbers.
        maximum: Maximum value for numbers.
        properties: Nested properties for object types.
        items: Schema for array items.
    """

    name: str
    type: str
    description: str
    required: bool = False
    enum: Sequence[Any] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    properties: Sequence["ParameterSchema"] | None = None
    items: "ParameterSchema | None" = None

    def to_json_schema(self, *, strict: bool = False) -> dict[str, Any]:
        """Render the parameter.

        ``strict`` produces the function-calling dialect: optional values
        become nullable, and numeric bounds move into the description since
        strict mode rejects them.
        """
        description = self.description
        schema: dict[str, Any] = {}
        if strict and not self.required:
            schema["type"] = [self.type, "null"]
        else:
            schema["type"] = self.type
        if self.enum:
            schema["enum"] = list(self.enum)
        if strict:
            if self.minimum is not None and self.maximum is not None:
                description = f"{description} ({self.minimum}-{self.maximum})"
        else:
            if self.minimum is not None:
                schema["minimum"] = self.minimum
            if self.maximum is not None:
                schema["maximum"] = self.maximum
        if self.properties:
            schema.update(_object_body(self.properties, strict=strict))
        if self.items is not None:
            schema["items"] = self.items.to_json_schema(strict=strict)
        schema["description"] = description
        return schema


@dataclass(slots=True)
class ToolSchema:
    """Complete schema for a tool.

    Attributes:
        name: Tool name (identifier used by the model).
        description: Human-readable description shown to the model.
        parameters: List of parameters.
    """

    name: str
    description: str
    parameters: Sequence[ParameterSchema] = field(default_factory=list)
    _validator: Draft202012Validator | None = field(default=None, init=False, repr=False, compare=False)

    def to_json_schema(self, *, strict: bool = False) -> dict[str, Any]:
        """Convert to JSON Schema format."""
        return _object_body(self.parameters, strict=strict)

    def to_openai_tool(self) -> dict[str, Any]:
        """Return the OpenAI function-calling definition for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_json_schema(strict=True),
                "strict": True,
            },
        }

    def validate(self, arguments: Any) -> dict[str, Any]:
        """Validate raw arguments and return them with explicit nulls dropped.

        Raises:
            ValidationError: If the arguments do not match the schema.
        """
        if not isinstance(arguments, Mapping):
            raise ValidationError(
                error_code=ErrorCode.INVALID_ARGUMENTS,
                message=f"{self.name} expects an object of arguments",
                details={"tool": self.name, "received": type(arguments).__name__},
            )
        cleaned = {key: value for key, value in arguments.items() if value is not None}
        if self._validator is None:
            self._validator = Draft202012Validator(self.to_json_schema())
        errors = sorted(self._validator.iter_errors(cleaned), key=lambda err: list(err.path))
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.path) or "(root)"
            LOGGER.debug("Rejected %s arguments at %s: %s", self.name, location, first.message)
            raise ValidationError(
                error_code=ErrorCode.INVALID_ARGUMENTS,
                message=f"Invalid arguments for {self.name}: {location}: {first.message}",
                details={"tool": self.name, "errors": [err.message for err in errors]},
            )
        return cleaned


def _object_body(parameters: Sequence[ParameterSchema], *, strict: bool) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in parameters:
        properties[param.name] = param.to_json_schema(strict=strict)
        if strict or param.required:
            required.append(param.name)
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = required
    return schema


def position_parameters() -> list[ParameterSchema]:
    """The optional percentage coordinates shared by every positioned tool."""

    return [
        ParameterSchema(
            name="positionX",
            type="number",
            description="Horizontal position as percentage",
            minimum=0,
            maximum=100,
        ),
        ParameterSchema(
            name="positionY",
            type="number",
            description="Vertical position as percentage",
            minimum=0,
            maximum=100,
        ),
    ]


__all__ = ["ParameterSchema", "ToolSchema", "position_parameters"]
