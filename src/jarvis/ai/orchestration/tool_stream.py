"""Multi-step streaming loop: model output, tool execution, tool feedback."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Mapping, Sequence

from ..client import AIStreamEvent, GatewayClient
from ..errors import ErrorCode, JarvisError, ValidationError
from ..prompts import system_prompt
from ..tools.visual import ToolOutput, VisualToolkit
from .stream_events import StreamEvent, TextDelta, ToolCall, ToolResult

LOGGER = logging.getLogger(__name__)

_IMAGE_SUMMARY = "[image generated and displayed to the user]"


@dataclass(slots=True)
class _PendingCall:
    call_id: str
    name: str
    arguments: str | None
    args: Dict[str, Any]
    parse_error: str | None = None

    def as_message_entry(self) -> Dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


class ToolStreamRunner:
    """Streams model steps and executes the tools the model asks for.

    Each step streams one completion. Text deltas and completed tool calls
    are yielded as they arrive; once the step's stream ends, its tool calls
    run in order, successful results are yielded, and every outcome is fed
    back to the model before the next step. The loop stops at the first step
    without tool calls, or after ``max_steps`` steps.
    """

    def __init__(
        self,
        client: GatewayClient,
        toolkit: VisualToolkit,
        *,
        max_steps: int = 10,
        temperature: float | None = None,
        system_message: str | None = None,
    ) -> None:
        self._client = client
        self._toolkit = toolkit
        self._max_steps = max(1, max_steps)
        self._temperature = temperature
        self._system_message = system_message if system_message is not None else system_prompt()

    @property
    def max_steps(self) -> int:
        return self._max_steps

    async def stream(self, history: Sequence[Mapping[str, Any]], user_text: str) -> AsyncIterator[StreamEvent]:
        conversation: list[Dict[str, Any]] = [{"role": "system", "content": self._system_message}]
        conversation.extend(dict(message) for message in history)
        conversation.append({"role": "user", "content": user_text})
        tools = self._toolkit.openai_tools()

        for step in range(self._max_steps):
            deltas: list[str] = []
            calls: list[_PendingCall] = []
            async with aclosing(
                self._client.stream_chat(conversation, tools=tools, temperature=self._temperature)
            ) as events:
                async for event in events:
                    if event.type == "content.delta" and event.content:
                        deltas.append(event.content)
                        yield TextDelta(delta=event.content)
                    elif event.type == "tool_calls.function.arguments.done":
                        call = self._pending_call(event, len(calls))
                        calls.append(call)
                        yield ToolCall(name=call.name, args=dict(call.args), call_id=call.call_id)

            assistant_message: Dict[str, Any] = {"role": "assistant", "content": "".join(deltas) or None}
            if calls:
                assistant_message["tool_calls"] = [call.as_message_entry() for call in calls]
            conversation.append(assistant_message)

            if not calls:
                LOGGER.debug("Model step %s finished without tool calls", step + 1)
                return

            LOGGER.debug("Model step %s requested %s tool call(s)", step + 1, len(calls))
            for call in calls:
                result, content = await self._execute(call)
                if result is not None:
                    yield ToolResult(name=call.name, result=result, call_id=call.call_id)
                conversation.append({"role": "tool", "tool_call_id": call.call_id, "content": content})

        LOGGER.warning("Tool loop stopped after reaching the step limit (%s)", self._max_steps)

    async def _execute(self, call: _PendingCall) -> tuple[ToolOutput | None, str]:
        try:
            if call.parse_error is not None:
                raise ValidationError(
                    error_code=ErrorCode.INVALID_ARGUMENTS,
                    message=f"Could not parse arguments for {call.name}: {call.parse_error}",
                )
            result = await self._toolkit.invoke(call.name, call.args)
        except JarvisError as exc:
            LOGGER.warning("Tool %s failed during streaming: %s", call.name, exc)
            return None, json.dumps(exc.to_dict())
        return result, json.dumps(summarize_for_model(result))

    @staticmethod
    def _pending_call(event: AIStreamEvent, fallback_index: int) -> _PendingCall:
        name = (event.tool_name or "").strip()
        index = event.tool_index if event.tool_index is not None else fallback_index
        call_id = (event.tool_call_id or "").strip() or f"{name or 'tool'}:{index}"
        args: Dict[str, Any] = {}
        parse_error: str | None = None
        if isinstance(event.parsed, Mapping):
            args = dict(event.parsed)
        elif event.tool_arguments:
            try:
                decoded = json.loads(event.tool_arguments)
            except json.JSONDecodeError as exc:
                parse_error = str(exc)
            else:
                if isinstance(decoded, dict):
                    args = decoded
                else:
                    parse_error = "arguments must be a JSON object"
        return _PendingCall(
            call_id=call_id,
            name=name,
            arguments=event.tool_arguments,
            args=args,
            parse_error=parse_error,
        )


def summarize_for_model(result: ToolOutput) -> Dict[str, Any]:
    """Serialize a result for the tool message, replacing image payloads."""

    payload = result.to_dict()
    if payload.get("type") == "image":
        payload["content"] = _IMAGE_SUMMARY
    return payload


__all__ = ["ToolStreamRunner", "summarize_for_model"]
