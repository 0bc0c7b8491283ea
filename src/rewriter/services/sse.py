"""
Server-sent event framing for chat completion streams.

Upstream frames look like ``data: {"choices":[{"delta":{"content":"Hi"}}]}``
and end with ``data: [DONE]``. Only frames carrying text are surfaced.
"""
import json
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog

log = structlog.get_logger()

DONE_SENTINEL = "[DONE]"
DONE_FRAME = f"data: {DONE_SENTINEL}\n\n"


@dataclass(frozen=True)
class DeltaFrame:
    """One upstream frame with text. ``payload`` is the JSON exactly as received."""
    payload: str
    text: str


def parse_data_line(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def extract_delta_text(payload: str) -> Optional[str]:
    """Pull ``choices[0].delta.content`` out of a chunk, if there is any."""
    try:
        obj = json.loads(payload)
    except ValueError:
        log.debug("sse_frame_unparseable", size=len(payload))
        return None
    if not isinstance(obj, dict):
        return None
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


async def iter_delta_frames(lines: AsyncIterator[str]) -> AsyncIterator[DeltaFrame]:
    """Yield text-carrying frames in upstream order until ``[DONE]`` or end of input."""
    async for line in lines:
        if not line.strip():
            continue
        payload = parse_data_line(line)
        if payload is None:
            continue
        if payload.strip() == DONE_SENTINEL:
            return
        text = extract_delta_text(payload)
        if text is None:
            continue
        yield DeltaFrame(payload=payload, text=text)


def format_data(payload: str) -> str:
    return f"data: {payload}\n\n"


def format_error_event(message: str) -> str:
    return f"event: error\ndata: {json.dumps({'error': message})}\n\n"
