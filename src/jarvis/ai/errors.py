"""Error taxonomy for chat turns, gateway calls and visual tools.

Every error carries a machine-readable ``error_code`` and serializes to a
JSON-friendly mapping so it can be reported back to the model as a tool
message or surfaced to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ErrorCode:
    """Constants for error codes used in tool and turn responses."""

    INVALID_INPUT = "invalid_input"
    INVALID_ARGUMENTS = "invalid_arguments"
    UNKNOWN_TOOL = "unknown_tool"

    TRANSPORT_FAILURE = "transport_failure"

    EMPTY_RESULT = "empty_result"
    WRONG_MODALITY = "wrong_modality"
    MISSING_PAYLOAD = "missing_payload"
    INCOMPLETE_GENERATION = "incomplete_generation"

    CORRECTIVE_FAILED = "corrective_failed"


@dataclass
class JarvisError(Exception):
    """Base exception class for all turn and tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(JarvisError):
    """Bad input, rejected before any side effect."""

    error_code: str = field(default=ErrorCode.INVALID_INPUT)
    message: str = field(default="Invalid input")
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransportError(JarvisError):
    """Network or HTTP failure while talking to the gateway."""

    error_code: str = field(default=ErrorCode.TRANSPORT_FAILURE)
    message: str = field(default="Gateway request failed")
    details: dict[str, Any] = field(default_factory=dict)

    status_code: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class GenerationError(JarvisError):
    """The gateway answered but the content is unusable."""

    error_code: str = field(default=ErrorCode.EMPTY_RESULT)
    message: str = field(default="AI model did not generate any content")
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PartialGenerationError(JarvisError):
    """A corrective tool invocation failed; the turn continues without it."""

    error_code: str = field(default=ErrorCode.CORRECTIVE_FAILED)
    message: str = field(default="Corrective invocation failed")
    details: dict[str, Any] = field(default_factory=dict)

    modality: str = field(default="")
    tool_name: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["modality"] = self.modality
        result["tool_name"] = self.tool_name
        return result


__all__ = [
    "ErrorCode",
    "GenerationError",
    "JarvisError",
    "PartialGenerationError",
    "TransportError",
    "ValidationError",
]
