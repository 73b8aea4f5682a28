"""Async gateway client built around OpenAI-compatible endpoints (OpenRouter)."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, MutableMapping, Sequence, cast

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    ContentFilterFinishReasonError,
    InternalServerError,
    LengthFinishReasonError,
    OpenAIError,
    RateLimitError,
)
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ErrorCode, GenerationError, TransportError
from .sse import aiter_fragments, content_delta

LOGGER = logging.getLogger(__name__)

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    RateLimitError,
    InternalServerError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the gateway client."""

    base_url: str
    api_key: str
    model: str
    image_model: str = "google/gemini-2.5-flash-image"
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Any, *, debug_logging: bool = False) -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            image_model=settings.image_model,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            default_headers=settings.gateway_headers(),
            debug_logging=debug_logging or settings.debug_logging,
        )


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of streaming deltas."""

    type: str
    content: str | None = None
    parsed: Any | None = None
    tool_name: str | None = None
    tool_index: int | None = None
    tool_arguments: str | None = None
    tool_call_id: str | None = None


class GatewayClient:
    """Async client for chat, diagram-text and image requests to the gateway."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._http_client = http_client
        if not settings.api_key:
            LOGGER.warning("Gateway API key not configured")

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def model(self) -> str:
        return self._settings.model

    @property
    def image_model(self) -> str:
        return self._settings.image_model

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        temperature: float | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream one chat completion.

        Transport and SDK failures surface as :class:`TransportError`. A stream
        cut short by the ``length`` or ``content_filter`` finish reason raises
        :class:`GenerationError` after the deltas received so far were yielded.

        The stream is never retried: a partially consumed stream cannot be
        replayed without duplicating already forwarded deltas.
        """

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            async with self._client.chat.completions.stream(**payload) as stream:
                async for event in stream:
                    normalized = self._normalize_stream_event(event)
                    if normalized is not None:
                        yield normalized
        except (LengthFinishReasonError, ContentFilterFinishReasonError) as exc:
            LOGGER.warning("Stream stopped early: %s", exc)
            raise _finish_reason_error(exc) from exc
        except (OpenAIError, httpx.HTTPError) as exc:
            LOGGER.error("Stream request failed: %s", exc)
            raise _transport_error(exc) from exc

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str | None = None,
        retry: bool = True,
        timeout: float | None = None,
        **extra_params: Any,
    ) -> Dict[str, Any]:
        """Run a non-streaming chat completion and return the raw response mapping."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            tools=None,
            tool_choice=None,
            temperature=None,
            extra_params=extra_params,
        )
        if model:
            payload["model"] = model
        if timeout is not None:
            payload["timeout"] = timeout
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            if not retry:
                return await self._create(payload)
            async for attempt in self._retrying():
                with attempt:
                    return await self._create(payload)
        except (OpenAIError, httpx.HTTPError) as exc:
            LOGGER.error("Chat request failed (model=%s): %s", payload["model"], exc)
            raise _transport_error(exc) from exc
        raise TransportError(message="Chat request produced no response")  # pragma: no cover

    async def stream_text(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream plain text deltas over raw server-sent events (no tools)."""

        payload = {
            "model": model or self._settings.model,
            "messages": list(self._coerce_messages(messages)),
            "stream": True,
        }
        url = f"{self._settings.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._settings.api_key}",
            "Content-Type": "application/json",
            **dict(self._settings.default_headers or {}),
        }
        http = self._get_http_client()
        try:
            async with http.stream("POST", url, json=payload, headers=headers) as response:
                response.raise_for_status()
                async for fragment in aiter_fragments(response.aiter_lines()):
                    delta = content_delta(fragment)
                    if delta:
                        yield delta
        except httpx.HTTPError as exc:
            LOGGER.error("Text stream request failed: %s", exc)
            raise _transport_error(exc) from exc
        LOGGER.info("Stream completed")

    async def _create(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._client.chat.completions.create(**payload)
        return _as_mapping(response)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key or "missing-api-key",
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._settings.request_timeout)
        return self._http_client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, MutableMapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                try:
                    normalized.append(cast(ChatCompletionMessageParam, dict(message)))
                except TypeError as exc:
                    raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[ChatCompletionToolParam] | None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None,
        temperature: float | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
        }
        if tools:
            payload["tools"] = list(tools)
        if tool_choice:
            payload["tool_choice"] = tool_choice
        if temperature is not None:
            payload["temperature"] = temperature
        if extra_params:
            payload.update(extra_params)
        return payload

    def _normalize_stream_event(self, event: ChatCompletionStreamEvent[Any]) -> AIStreamEvent | None:
        event_type = getattr(event, "type", None)
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return AIStreamEvent(type=event_type, content=str(delta_text))
            return None
        if event_type == "content.done":
            return AIStreamEvent(type=event_type, content=getattr(event, "content", None))
        if event_type == "refusal.done":
            return AIStreamEvent(type=event_type, content=getattr(event, "refusal", None))
        if event_type == "tool_calls.function.arguments.done":
            return AIStreamEvent(
                type=event_type,
                tool_name=getattr(event, "name", None),
                tool_index=getattr(event, "index", None),
                tool_arguments=getattr(event, "arguments", None),
                parsed=getattr(event, "parsed_arguments", None),
                tool_call_id=getattr(event, "id", None) or getattr(event, "tool_call_id", None),
            )
        return None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        except (TypeError, ValueError):
            LOGGER.debug("Gateway payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Gateway payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying clients to release network resources."""

        if self._http_client is not None:
            await self._http_client.aclose()
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _as_mapping(response: Any) -> Dict[str, Any]:
    dump = getattr(response, "model_dump", None)
    if callable(dump):
        return dict(dump())
    if isinstance(response, Mapping):
        return dict(response)
    raise TransportError(message=f"Unexpected gateway response type {type(response).__name__}")


def _transport_error(exc: BaseException) -> TransportError:
    status_code: int | None = None
    if isinstance(exc, APIStatusError):
        status_code = exc.status_code
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
    return TransportError(
        message=str(exc) or type(exc).__name__,
        details={"exception": type(exc).__name__},
        status_code=status_code,
    )


def _finish_reason_error(exc: BaseException) -> GenerationError:
    reason = "content_filter" if isinstance(exc, ContentFilterFinishReasonError) else "length"
    return GenerationError(
        error_code=ErrorCode.INCOMPLETE_GENERATION,
        message=f"AI generation incomplete. Reason: {reason}",
        details={"exception": type(exc).__name__, "finish_reason": reason},
    )


__all__ = ["AIStreamEvent", "ClientSettings", "GatewayClient"]
