"""Visual tools the model can call: text, Mermaid diagrams, images and layouts."""

from .schema import ParameterSchema, ToolSchema
from .visual import (
    DIAGRAM_TOOL,
    IMAGE_TOOL,
    LAYOUT_TOOL,
    TEXT_TOOL,
    LayoutElement,
    LayoutResult,
    Position,
    PositionedResult,
    ToolOutput,
    VisualToolkit,
)

__all__ = [
    "DIAGRAM_TOOL",
    "IMAGE_TOOL",
    "LAYOUT_TOOL",
    "TEXT_TOOL",
    "LayoutElement",
    "LayoutResult",
    "ParameterSchema",
    "Position",
    "PositionedResult",
    "ToolOutput",
    "ToolSchema",
    "VisualToolkit",
]
