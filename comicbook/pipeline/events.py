"""
Server-Sent-Event framing for stage progress and results.

Each frame is ``data: <json>\\n\\n`` where the JSON object carries a ``type``
discriminator. Decoding is tolerant: unknown types and extra fields pass through,
and ``event:``/``id:``/comment lines are ignored.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)

STATUS = "status"
STORY_SUMMARY = "story_summary"
STORY_PART = "story_part"
IMAGE_PROMPTS_CHUNK = "image_prompts_chunk"
IMAGE_PROMPT_ITEM = "image_prompt_item"
ERROR = "error"
DONE = "done"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_DATA_PREFIX = "data:"


def encode_event(event: Mapping[str, Any]) -> str:
    """Serialize one event into an SSE frame."""
    if "type" not in event:
        raise ValueError("Stream events must carry a 'type' field.")
    return f"data: {json.dumps(dict(event), ensure_ascii=False)}\n\n"


def status_event(message: str) -> dict[str, Any]:
    return {"type": STATUS, "message": message}


def story_summary_event(chapter_name: str, summary: str) -> dict[str, Any]:
    return {"type": STORY_SUMMARY, "chapter_name": chapter_name, "summary": summary}


def story_part_event(part_number: int, chapter_title: str, story_content: str) -> dict[str, Any]:
    return {
        "type": STORY_PART,
        "part_number": part_number,
        "chapter_title": chapter_title,
        "story_content": story_content,
    }


def image_prompts_chunk_event(prompts: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    return {"type": IMAGE_PROMPTS_CHUNK, "prompts": [dict(prompt) for prompt in prompts]}


def image_prompt_item_event(item: Mapping[str, Any]) -> dict[str, Any]:
    return {"type": IMAGE_PROMPT_ITEM, "item": dict(item)}


def error_event(message: str) -> dict[str, Any]:
    return {"type": ERROR, "message": message}


def done_event(**payload: Any) -> dict[str, Any]:
    return {"type": DONE, **payload}


class SSEDecoder:
    """
    Incremental decoder turning arbitrary text chunks into event dictionaries.

    Frames may be split across chunks; a frame is only emitted once its blank-line
    terminator has been seen. Call :meth:`flush` at end of stream to recover a final
    frame that lacks the terminator.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[dict[str, Any]]:
        self._buffer += chunk.replace("\r\n", "\n")
        events: list[dict[str, Any]] = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            event = parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[dict[str, Any]]:
        frame, self._buffer = self._buffer, ""
        if not frame.strip():
            return []
        event = parse_frame(frame)
        return [event] if event is not None else []


def parse_frame(frame: str) -> dict[str, Any] | None:
    """
    Parse a single SSE frame; returns ``None`` for frames without a JSON object payload.
    """
    data_lines = []
    for line in frame.split("\n"):
        if line.startswith(_DATA_PREFIX):
            data_lines.append(line[len(_DATA_PREFIX):].lstrip(" "))
    if not data_lines:
        return None

    payload = "\n".join(data_lines)
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed SSE frame: %s", payload[:200])
        return None

    if not isinstance(event, dict) or "type" not in event:
        logger.warning("Skipping SSE frame without a type discriminator: %s", payload[:200])
        return None
    return event


def iter_events(chunks: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Decode an iterable of text chunks into events, in order."""
    decoder = SSEDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()
