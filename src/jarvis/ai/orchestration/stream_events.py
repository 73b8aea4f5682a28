"""Events produced by the tool streaming loop, in arrival order."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from ..tools.visual import ToolOutput


@dataclass(slots=True, frozen=True)
class TextDelta:
    delta: str


@dataclass(slots=True, frozen=True)
class ToolCall:
    """The model finished emitting the arguments of a tool call."""

    name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    call_id: str = ""


@dataclass(slots=True, frozen=True)
class ToolResult:
    """A tool call issued by the model completed successfully."""

    name: str
    result: ToolOutput
    call_id: str = ""


StreamEvent = Union[TextDelta, ToolCall, ToolResult]


__all__ = ["StreamEvent", "TextDelta", "ToolCall", "ToolResult"]
