"""The four visual tools the model (or the orchestrator) can invoke.

``generateText`` and ``generateLayout`` are pure. ``generateMermaidDiagram``
and ``generateImage`` each issue exactly one gateway request and never retry.
Every entry point funnels through :meth:`VisualToolkit.invoke`, so a call
made by the model and a corrective call made by the orchestrator validate the
same schema and return the same result shape.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Mapping, Sequence

from ..errors import ErrorCode, GenerationError, TransportError, ValidationError
from ..prompts import diagram_request_prompt
from .schema import ParameterSchema, ToolSchema, position_parameters

if TYPE_CHECKING:  # pragma: no cover
    from ..client import GatewayClient

LOGGER = logging.getLogger(__name__)

ElementType = Literal["text", "mermaid", "image"]

TEXT_TOOL = "generateText"
DIAGRAM_TOOL = "generateMermaidDiagram"
IMAGE_TOOL = "generateImage"
LAYOUT_TOOL = "generateLayout"

ALLOWED_FINISH_REASONS = frozenset({"stop", "length", "content_filter"})
_FENCE_RE = re.compile(r"```(?:mermaid)?[ \t]*\n?", re.IGNORECASE)
_IMAGE_MODALITIES = ["image", "text"]


@dataclass(slots=True, frozen=True)
class Position:
    """Percentage coordinates of an element on screen."""

    x: float
    y: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def resolve(cls, x: float | None, y: float | None) -> "Position":
        return cls(x=DEFAULT_POSITION.x if x is None else x, y=DEFAULT_POSITION.y if y is None else y)


DEFAULT_POSITION = Position(50, 50)


@dataclass(slots=True, frozen=True)
class PositionedResult:
    """Output of the text, diagram and image tools."""

    type: ElementType
    content: str
    position: Position

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content, "position": self.position.to_dict()}


@dataclass(slots=True, frozen=True)
class LayoutElement:
    id: str
    type: ElementType
    content: str
    position: Position

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "position": self.position.to_dict(),
        }


@dataclass(slots=True, frozen=True)
class LayoutResult:
    """Output of ``generateLayout``: several elements placed at once."""

    elements: tuple[LayoutElement, ...]
    type: Literal["layout"] = "layout"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "elements": [element.to_dict() for element in self.elements]}


ToolOutput = PositionedResult | LayoutResult


# ----------------------------------------------------------------------------
# Typed arguments
# ----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextArgs:
    text: str
    position: Position

    @classmethod
    def from_arguments(cls, args: Mapping[str, Any]) -> "TextArgs":
        return cls(text=args["text"], position=Position.resolve(args.get("positionX"), args.get("positionY")))


@dataclass(slots=True, frozen=True)
class DiagramArgs:
    description: str
    position: Position

    @classmethod
    def from_arguments(cls, args: Mapping[str, Any]) -> "DiagramArgs":
        return cls(
            description=args["description"],
            position=Position.resolve(args.get("positionX"), args.get("positionY")),
        )


@dataclass(slots=True, frozen=True)
class ImageArgs:
    prompt: str
    position: Position

    @classmethod
    def from_arguments(cls, args: Mapping[str, Any]) -> "ImageArgs":
        return cls(prompt=args["prompt"], position=Position.resolve(args.get("positionX"), args.get("positionY")))


@dataclass(slots=True, frozen=True)
class LayoutArgs:
    elements: tuple[LayoutElement, ...]

    @classmethod
    def from_arguments(cls, args: Mapping[str, Any]) -> "LayoutArgs":
        elements = tuple(
            LayoutElement(
                id=item["id"],
                type=item["type"],
                content=item["content"],
                position=Position(x=item["position"]["x"], y=item["position"]["y"]),
            )
            for item in args["elements"]
        )
        return cls(elements=elements)


# ----------------------------------------------------------------------------
# Schemas
# ----------------------------------------------------------------------------

TEXT_SCHEMA = ToolSchema(
    name=TEXT_TOOL,
    description=(
        "Generate formatted text content for display in the Jarvis interface. Use this to provide "
        "explanations, responses, or any text-based content."
    ),
    parameters=[
        ParameterSchema(name="text", type="string", description="The text content to display", required=True),
        *position_parameters(),
    ],
)

DIAGRAM_SCHEMA = ToolSchema(
    name=DIAGRAM_TOOL,
    description=(
        "Generate a Mermaid diagram code based on a description. Returns the mermaid code that can be rendered."
    ),
    parameters=[
        ParameterSchema(
            name="description",
            type="string",
            description="Description of what diagram to generate",
            required=True,
        ),
        *position_parameters(),
    ],
)

IMAGE_SCHEMA = ToolSchema(
    name=IMAGE_TOOL,
    description="Generate an image based on a text prompt. Returns the image URL.",
    parameters=[
        ParameterSchema(
            name="prompt",
            type="string",
            description="Description of the image to generate",
            required=True,
        ),
        *position_parameters(),
    ],
)

_LAYOUT_ELEMENT = ParameterSchema(
    name="element",
    type="object",
    description="Element to position",
    required=True,
    properties=[
        ParameterSchema(name="id", type="string", description="Unique identifier for the element", required=True),
        ParameterSchema(
            name="type",
            type="string",
            description="Type of element",
            required=True,
            enum=("text", "mermaid", "image"),
        ),
        ParameterSchema(
            name="content",
            type="string",
            description="Content or description for the element",
            required=True,
        ),
        ParameterSchema(
            name="position",
            type="object",
            description="Position for this element",
            required=True,
            properties=[
                ParameterSchema(
                    name="x",
                    type="number",
                    description="Horizontal position as percentage",
                    required=True,
                    minimum=0,
                    maximum=100,
                ),
                ParameterSchema(
                    name="y",
                    type="number",
                    description="Vertical position as percentage",
                    required=True,
                    minimum=0,
                    maximum=100,
                ),
            ],
        ),
    ],
)

LAYOUT_SCHEMA = ToolSchema(
    name=LAYOUT_TOOL,
    description=(
        "Generate a layout specification for positioning multiple elements (text, diagrams, images) across "
        "the screen for a Jarvis-like effect. Returns positioning information for elements."
    ),
    parameters=[
        ParameterSchema(
            name="elements",
            type="array",
            description="Array of elements to position",
            required=True,
            items=_LAYOUT_ELEMENT,
        ),
    ],
)

TOOL_SCHEMAS: dict[str, ToolSchema] = {
    schema.name: schema for schema in (TEXT_SCHEMA, DIAGRAM_SCHEMA, IMAGE_SCHEMA, LAYOUT_SCHEMA)
}


class VisualToolkit:
    """Executes the visual tools against the gateway."""

    def __init__(self, client: "GatewayClient", *, image_timeout: float | None = 60.0) -> None:
        self._client = client
        self._image_timeout = image_timeout

    @property
    def tool_names(self) -> tuple[str, ...]:
        return tuple(TOOL_SCHEMAS)

    def openai_tools(self) -> list[dict[str, Any]]:
        """Tool definitions advertised to the model."""
        return [schema.to_openai_tool() for schema in TOOL_SCHEMAS.values()]

    async def invoke(self, name: str, arguments: Any) -> ToolOutput:
        """Validate ``arguments`` against the tool's schema and run it.

        Raises:
            ValidationError: Unknown tool or arguments rejected by the schema.
            GenerationError: The gateway answered with unusable content.
            TransportError: The image request failed at the network level.
        """
        schema = TOOL_SCHEMAS.get(name)
        if schema is None:
            raise ValidationError(
                error_code=ErrorCode.UNKNOWN_TOOL,
                message=f"Unknown tool '{name}'",
                details={"tool": name, "available": list(TOOL_SCHEMAS)},
            )
        args = schema.validate(arguments)
        if name == TEXT_TOOL:
            return self._run_text(TextArgs.from_arguments(args))
        if name == DIAGRAM_TOOL:
            return await self._run_diagram(DiagramArgs.from_arguments(args))
        if name == IMAGE_TOOL:
            return await self._run_image(ImageArgs.from_arguments(args))
        return self._run_layout(LayoutArgs.from_arguments(args))

    async def generate_text(
        self, text: str, *, position_x: float | None = None, position_y: float | None = None
    ) -> ToolOutput:
        return await self.invoke(TEXT_TOOL, {"text": text, "positionX": position_x, "positionY": position_y})

    async def generate_mermaid_diagram(
        self, description: str, *, position_x: float | None = None, position_y: float | None = None
    ) -> ToolOutput:
        return await self.invoke(
            DIAGRAM_TOOL, {"description": description, "positionX": position_x, "positionY": position_y}
        )

    async def generate_image(
        self, prompt: str, *, position_x: float | None = None, position_y: float | None = None
    ) -> ToolOutput:
        return await self.invoke(IMAGE_TOOL, {"prompt": prompt, "positionX": position_x, "positionY": position_y})

    async def generate_layout(self, elements: Sequence[Mapping[str, Any]]) -> ToolOutput:
        return await self.invoke(LAYOUT_TOOL, {"elements": [dict(element) for element in elements]})

    # ------------------------------------------------------------------
    # Implementations
    # ------------------------------------------------------------------

    def _run_text(self, args: TextArgs) -> PositionedResult:
        LOGGER.info(
            "Generate text tool called (length=%s, position=%s,%s)",
            len(args.text),
            args.position.x,
            args.position.y,
        )
        return PositionedResult(type="text", content=args.text, position=args.position)

    async def _run_diagram(self, args: DiagramArgs) -> PositionedResult:
        LOGGER.info("Generate mermaid diagram tool called: %.120s", args.description)
        try:
            response = await self._client.complete(
                [{"role": "user", "content": diagram_request_prompt(args.description)}],
                retry=False,
            )
        except TransportError as exc:
            LOGGER.error("Mermaid generation failed: %s", exc)
            raise GenerationError(
                error_code=ErrorCode.TRANSPORT_FAILURE,
                message=f"Diagram request failed: {exc.message}",
                details=exc.to_dict(),
            ) from exc

        message = _first_choice(response).get("message") or {}
        raw = message.get("content") if isinstance(message, Mapping) else None
        code = strip_code_fences(raw if isinstance(raw, str) else "")
        if not code:
            LOGGER.error("Mermaid generation returned no diagram source")
            raise GenerationError(
                error_code=ErrorCode.EMPTY_RESULT,
                message="AI model returned an empty diagram",
            )
        LOGGER.info("Diagram generated (length=%s)", len(code))
        return PositionedResult(type="mermaid", content=code, position=args.position)

    async def _run_image(self, args: ImageArgs) -> PositionedResult:
        model = self._client.image_model
        LOGGER.info("Generate image tool called (model=%s): %.120s", model, args.prompt)
        response = await self._client.complete(
            [{"role": "user", "content": [{"type": "text", "text": args.prompt}]}],
            model=model,
            retry=False,
            timeout=self._image_timeout,
            extra_body={"modalities": _IMAGE_MODALITIES},
        )
        choice = _first_choice(response)
        message = choice.get("message") or {}
        finish_reason = choice.get("finish_reason")
        images = message.get("images") or []
        content = message.get("content")
        LOGGER.info(
            "Image response parsed (finish_reason=%s, images=%s, has_content=%s)",
            finish_reason,
            len(images),
            bool(content),
        )

        if finish_reason not in ALLOWED_FINISH_REASONS:
            LOGGER.error("Generation incomplete (finish_reason=%s)", finish_reason)
            raise GenerationError(
                error_code=ErrorCode.INCOMPLETE_GENERATION,
                message=f"AI generation incomplete. Reason: {finish_reason or 'unknown'}",
                details={"finish_reason": finish_reason},
            )

        if images:
            url = _image_url(images[0])
            if not url:
                LOGGER.error("Generated image data is invalid or missing")
                raise GenerationError(
                    error_code=ErrorCode.MISSING_PAYLOAD,
                    message="Generated image data is invalid or missing",
                )
            LOGGER.info("Image generated successfully: %.50s...", url)
            return PositionedResult(type="image", content=url, position=args.position)

        if content:
            LOGGER.warning("No images generated, only text content returned: %.200s", content)
            raise GenerationError(
                error_code=ErrorCode.WRONG_MODALITY,
                message="AI model returned text instead of generating an image",
            )

        LOGGER.error("No images or content generated")
        raise GenerationError(
            error_code=ErrorCode.EMPTY_RESULT,
            message="AI model did not generate any content",
        )

    def _run_layout(self, args: LayoutArgs) -> LayoutResult:
        LOGGER.info("Generate layout tool called (elements=%s)", len(args.elements))
        return LayoutResult(elements=args.elements)


def strip_code_fences(text: str) -> str:
    """Remove Markdown code-fence wrapping from diagram source."""

    return _FENCE_RE.sub("", text or "").strip()


def _first_choice(response: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = response.get("choices") or []
    if choices and isinstance(choices[0], Mapping):
        return choices[0]
    return {}


def _image_url(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, Mapping):
        image_url = entry.get("image_url")
        if isinstance(image_url, Mapping):
            url = image_url.get("url")
            return url if isinstance(url, str) and url else None
        if isinstance(image_url, str) and image_url:
            return image_url
    return None


__all__ = [
    "ALLOWED_FINISH_REASONS",
    "DEFAULT_POSITION",
    "DIAGRAM_TOOL",
    "IMAGE_TOOL",
    "LAYOUT_TOOL",
    "TEXT_TOOL",
    "TOOL_SCHEMAS",
    "LayoutElement",
    "LayoutResult",
    "Position",
    "PositionedResult",
    "ToolOutput",
    "VisualToolkit",
    "strip_code_fences",
]
