"""Placement bookkeeping for positioned elements on the overlay.

The registry turns tool results into placed elements with percentage
coordinates that are safe to render: x is clamped to [0, 100], y to
[0, 65], and anything that is not a usable position falls back to the
centre of the screen.
"""

from __future__ import annotations

import itertools
import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Iterator, Mapping

from ..ai.prompts import MAX_VERTICAL_POSITION
from ..ai.tools.visual import DEFAULT_POSITION, Position
from .events import EventBus, SessionCleared, ToolResultReady, TurnStarted

LOGGER = logging.getLogger(__name__)

_ELEMENT_TYPES = frozenset({"text", "mermaid", "image"})


@dataclass(slots=True, frozen=True)
class PlacedElement:
    id: str
    type: str
    content: str
    position: Position
    corrective: bool = False


class PositionRegistry:
    """Elements currently placed on screen, in placement order."""

    def __init__(self, *, max_vertical: float = MAX_VERTICAL_POSITION) -> None:
        self._max_vertical = float(max_vertical)
        self._elements: list[PlacedElement] = []
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._elements)

    def __iter__(self) -> Iterator[PlacedElement]:
        return iter(tuple(self._elements))

    def elements(self) -> tuple[PlacedElement, ...]:
        return tuple(self._elements)

    def attach(self, bus: EventBus) -> None:
        """Follow a bus: place every tool result, reset on each new turn and on clear."""

        bus.subscribe(ToolResultReady, self._on_tool_result)
        bus.subscribe(TurnStarted, self._on_reset)
        bus.subscribe(SessionCleared, self._on_reset)

    def place(
        self,
        element_type: str,
        content: str,
        position: Any = None,
        *,
        element_id: str | None = None,
        corrective: bool = False,
    ) -> PlacedElement:
        if element_type not in _ELEMENT_TYPES:
            raise ValueError(f"Unsupported element type '{element_type}'")
        element = PlacedElement(
            id=element_id or f"element-{next(self._ids)}",
            type=element_type,
            content=content,
            position=self.normalize(position),
            corrective=corrective,
        )
        self._elements.append(element)
        LOGGER.debug(
            "Placed %s element %s at (%s, %s)",
            element.type,
            element.id,
            element.position.x,
            element.position.y,
        )
        return element

    def place_result(self, result: Mapping[str, Any], *, corrective: bool = False) -> list[PlacedElement]:
        """Place a serialized tool result; layouts expand into their elements."""

        result_type = result.get("type")
        if result_type == "layout":
            placed = []
            for element in result.get("elements") or []:
                if not isinstance(element, Mapping) or element.get("type") not in _ELEMENT_TYPES:
                    LOGGER.warning("Skipping unsupported layout element: %r", element)
                    continue
                placed.append(
                    self.place(
                        element["type"],
                        str(element.get("content", "")),
                        element.get("position"),
                        element_id=element.get("id"),
                        corrective=corrective,
                    )
                )
            return placed
        if result_type in _ELEMENT_TYPES:
            return [
                self.place(result_type, str(result.get("content", "")), result.get("position"), corrective=corrective)
            ]
        LOGGER.warning("Ignoring tool result with unknown type %r", result_type)
        return []

    def clear(self) -> None:
        self._elements.clear()

    def normalize(self, position: Any) -> Position:
        if isinstance(position, Position):
            x, y = position.x, position.y
        elif isinstance(position, Mapping):
            x, y = position.get("x"), position.get("y")
        else:
            x = y = None
        if not (_is_coordinate(x) and _is_coordinate(y)):
            LOGGER.warning("Invalid position %r, using defaults", position)
            return DEFAULT_POSITION
        return Position(x=_clamp(float(x), 0.0, 100.0), y=_clamp(float(y), 0.0, self._max_vertical))

    def _on_tool_result(self, event: ToolResultReady) -> None:
        self.place_result(event.result, corrective=event.corrective)

    def _on_reset(self, event: Any) -> None:
        self.clear()


def _is_coordinate(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


__all__ = ["PlacedElement", "PositionRegistry"]
