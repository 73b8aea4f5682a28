"""Turn orchestration: the tool streaming loop and the completion guarantee."""

from .completion import DEFAULT_POSITIONS, CompletionPolicy, CompletionState, Modality
from .stream_events import StreamEvent, TextDelta, ToolCall, ToolResult
from .tool_stream import ToolStreamRunner
from .turn_orchestrator import TOOL_ONLY_PLACEHOLDER, TurnOrchestrator, TurnOutcome

__all__ = [
    "DEFAULT_POSITIONS",
    "TOOL_ONLY_PLACEHOLDER",
    "CompletionPolicy",
    "CompletionState",
    "Modality",
    "StreamEvent",
    "TextDelta",
    "ToolCall",
    "ToolResult",
    "ToolStreamRunner",
    "TurnOrchestrator",
    "TurnOutcome",
]
