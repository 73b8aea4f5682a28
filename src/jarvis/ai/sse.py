"""Server-sent-event decoding for chat-completions streams."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def parse_data_line(line: str) -> dict[str, Any] | None:
    """Return the JSON fragment carried by one ``data:`` line.

    Comment lines, other SSE fields and malformed fragments yield ``None``.
    The ``[DONE]`` sentinel is handled by the callers.
    """

    stripped = line.strip()
    if not stripped.startswith(DATA_PREFIX):
        return None
    data = stripped[len(DATA_PREFIX):].strip()
    if not data or data == DONE_SENTINEL:
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.debug("Skipping malformed stream fragment: %.80s", data)
        return None
    return parsed if isinstance(parsed, dict) else None


def is_done(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith(DATA_PREFIX) and stripped[len(DATA_PREFIX):].strip() == DONE_SENTINEL


def content_delta(fragment: dict[str, Any]) -> str | None:
    """Extract ``choices[0].delta.content`` from a chunk, if any."""

    choices = fragment.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content or None


def iter_fragments(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Yield JSON fragments from SSE lines until the ``[DONE]`` sentinel."""

    for line in lines:
        if is_done(line):
            return
        fragment = parse_data_line(line)
        if fragment is not None:
            yield fragment


async def aiter_fragments(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    """Async counterpart of :func:`iter_fragments`."""

    async for line in lines:
        if is_done(line):
            return
        fragment = parse_data_line(line)
        if fragment is not None:
            yield fragment


__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "aiter_fragments",
    "content_delta",
    "is_done",
    "iter_fragments",
    "parse_data_line",
]
