"""Which modalities a turn must produce and how missing ones are filled in.

:class:`CompletionPolicy` is plain data: the orchestrator asks it which tool
satisfies which modality, where corrective output goes and how corrective
prompts are phrased. :class:`CompletionState` tracks one turn against it.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Literal, Mapping

from .. import prompts
from ..errors import PartialGenerationError
from ..tools.visual import DIAGRAM_TOOL, IMAGE_TOOL, TEXT_TOOL, Position, ToolOutput

Modality = Literal["text", "diagram", "image"]

REQUIRED_MODALITIES: tuple[Modality, ...] = ("text", "diagram", "image")

DEFAULT_POSITIONS: Dict[Modality, Position] = {
    "text": Position(10, 10),
    "diagram": Position(55, 10),
    "image": Position(10, 45),
}

MIN_POSITION_SEPARATION = 20.0


def _default_tool_modalities() -> Dict[str, Modality]:
    return {TEXT_TOOL: "text", DIAGRAM_TOOL: "diagram", IMAGE_TOOL: "image"}


@dataclass(slots=True, frozen=True)
class CompletionPolicy:
    """Required modalities and the rules used to synthesize missing ones.

    Attributes:
        required: Modalities every turn must produce, in corrective order.
        tool_modalities: Tool name to the modality its result satisfies.
            Tools absent from the mapping (``generateLayout``) satisfy nothing.
        default_positions: Where each corrective result is placed.
        prefix_limit: Characters of streamed text used to derive corrective prompts.
        max_vertical: Upper bound for the vertical coordinate of any default.
        min_separation: Minimum distance, on at least one axis, between defaults.
    """

    required: tuple[Modality, ...] = REQUIRED_MODALITIES
    tool_modalities: Mapping[str, Modality] = field(default_factory=_default_tool_modalities)
    default_positions: Mapping[Modality, Position] = field(default_factory=lambda: dict(DEFAULT_POSITIONS))
    prefix_limit: int = 500
    max_vertical: float = float(prompts.MAX_VERTICAL_POSITION)
    min_separation: float = MIN_POSITION_SEPARATION
    fallback_text: Callable[[str], str] = prompts.fallback_text
    diagram_description: Callable[[str], str] = prompts.corrective_diagram_description
    image_prompt: Callable[[str], str] = prompts.corrective_image_prompt

    def __post_init__(self) -> None:
        for modality in self.required:
            if modality not in self.default_positions:
                raise ValueError(f"No default position for required modality '{modality}'")
            if self.corrective_tool(modality) is None:
                raise ValueError(f"No tool satisfies required modality '{modality}'")
        for modality, position in self.default_positions.items():
            if not (0 <= position.x <= 100 and 0 <= position.y <= self.max_vertical):
                raise ValueError(f"Default position for '{modality}' is off screen: {position}")
        for (first, a), (second, b) in itertools.combinations(self.default_positions.items(), 2):
            if not positions_separated(a, b, self.min_separation):
                raise ValueError(f"Default positions for '{first}' and '{second}' overlap")
        if self.prefix_limit < 1:
            raise ValueError("prefix_limit must be positive")

    def modality_for(self, tool_name: str) -> Modality | None:
        return self.tool_modalities.get(tool_name)

    def corrective_tool(self, modality: Modality) -> str | None:
        for tool_name, candidate in self.tool_modalities.items():
            if candidate == modality:
                return tool_name
        return None

    def corrective_arguments(self, modality: Modality, streamed_text: str, user_text: str) -> Dict[str, Any]:
        """Build the tool arguments for a corrective invocation of ``modality``."""

        position = self.default_positions[modality]
        coordinates = {"positionX": position.x, "positionY": position.y}
        if modality == "text":
            text = streamed_text if streamed_text.strip() else self.fallback_text(user_text)
            return {"text": text, **coordinates}
        source = self._prompt_source(streamed_text, user_text)
        if modality == "diagram":
            return {"description": self.diagram_description(source), **coordinates}
        return {"prompt": self.image_prompt(source), **coordinates}

    def _prompt_source(self, streamed_text: str, user_text: str) -> str:
        stripped = streamed_text.strip()
        if stripped:
            return stripped[: self.prefix_limit]
        return user_text


def positions_separated(a: Position, b: Position, minimum: float = MIN_POSITION_SEPARATION) -> bool:
    return abs(a.x - b.x) >= minimum or abs(a.y - b.y) >= minimum


@dataclass(slots=True)
class ToolRecord:
    tool_name: str
    result: ToolOutput
    corrective: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"tool_name": self.tool_name, "result": self.result.to_dict(), "corrective": self.corrective}


@dataclass(slots=True)
class CompletionState:
    """Modalities produced so far in the current turn, plus every result."""

    policy: CompletionPolicy
    produced: set[Modality] = field(default_factory=set)
    records: list[ToolRecord] = field(default_factory=list)
    errors: list[PartialGenerationError] = field(default_factory=list)

    def record(self, tool_name: str, result: ToolOutput, *, corrective: bool = False) -> Modality | None:
        """Record a result; returns the modality it newly satisfied, if any."""

        self.records.append(ToolRecord(tool_name=tool_name, result=result, corrective=corrective))
        modality = self.policy.modality_for(tool_name)
        if modality is None or modality in self.produced:
            return None
        self.produced.add(modality)
        return modality

    def missing(self) -> tuple[Modality, ...]:
        return tuple(modality for modality in self.policy.required if modality not in self.produced)

    @property
    def satisfied(self) -> bool:
        return not self.missing()

    def tool_metadata(self) -> list[Dict[str, Any]]:
        return [record.to_dict() for record in self.records]


__all__ = [
    "DEFAULT_POSITIONS",
    "MIN_POSITION_SEPARATION",
    "REQUIRED_MODALITIES",
    "CompletionPolicy",
    "CompletionState",
    "Modality",
    "ToolRecord",
    "positions_separated",
]
