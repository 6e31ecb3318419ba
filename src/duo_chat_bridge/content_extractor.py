from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass
from typing import Any

from loguru import logger

from duo_chat_bridge.errors import MalformedFrameError
from duo_chat_bridge.models import ContentChunk

_MAX_DECODE_DEPTH = 3


@dataclass(frozen=True)
class TerminationPolicy:
    """Decides which payload ends the answer stream.

    Servers differ in how they mark the last chunk, so each signal can be
    switched on or off independently. A stream that never matches any enabled
    signal ends on the idle timeout instead.
    """

    on_empty_content: bool = True
    on_null_chunk_id_with_role: bool = False
    on_end_marker: bool = True

    def is_final(
        self,
        *,
        content: str | None,
        chunk_id: Any,
        role: str | None,
        more: Any,
    ) -> bool:
        if self.on_empty_content and content == "":
            return True
        if self.on_null_chunk_id_with_role and chunk_id is None and role:
            return True
        if self.on_end_marker and more is False:
            return True
        return False


def extract(raw_payload: Any, policy: TerminationPolicy | None = None) -> ContentChunk | None:
    """Pull the next answer chunk out of a data payload.

    Returns None for metadata-only payloads and for anything malformed;
    malformed input is logged, never raised.
    """
    policy = policy or TerminationPolicy()
    try:
        payload = _decode(raw_payload)
        container = _find_content_container(payload)
    except MalformedFrameError as ex:
        logger.warning(f"Dropping malformed payload: {ex}")
        return None

    more = payload.get("more") if isinstance(payload, dict) else None
    if container is None:
        if policy.on_end_marker and more is False:
            return ContentChunk(text="", is_final=True)
        return None

    content = container.get("content")
    chunk_id = container.get("chunkId")
    role = container.get("role")
    if content is not None and not isinstance(content, str):
        logger.warning(f"Dropping payload with non-text content: {type(content).__name__}")
        return None
    if role is not None:
        role = str(role)

    is_final = policy.is_final(content=content, chunk_id=chunk_id, role=role, more=more)
    if content is None and not is_final:
        return None
    return ContentChunk(text=content or "", chunk_id=chunk_id, role=role, is_final=is_final)


def _decode(raw: Any) -> Any:
    value = raw
    for _ in range(_MAX_DECODE_DEPTH):
        if not isinstance(value, str):
            return value
        try:
            value = json.loads(value)
        except (ValueError, RecursionError) as ex:
            raise MalformedFrameError(f"payload is not valid JSON ({type(ex).__name__})") from ex
    if isinstance(value, str):
        raise MalformedFrameError("payload is nested too deeply in string encoding")
    return value


def _find_content_container(payload: Any) -> dict[str, Any] | None:
    """Breadth-first search for the nearest object holding a ``content`` field."""
    queue: deque[Any] = deque([payload])
    while queue:
        node = queue.popleft()
        if isinstance(node, dict):
            if "content" in node:
                return node
            queue.extend(_maybe_decode_nested(value) for value in node.values())
        elif isinstance(node, list):
            queue.extend(node)
    return None


def _maybe_decode_nested(value: Any) -> Any:
    # Some relays hand nested objects over as JSON text.
    if isinstance(value, str) and value.lstrip().startswith(("{", "[")):
        try:
            return json.loads(value)
        except (ValueError, RecursionError):
            return value
    return value
