"""
Stage endpoints, SSE framing, and the orchestrator that chains them into one comic book.
"""

from .events import SSEDecoder, encode_event, iter_events
from .image_stage import GeneratedImage, ImageStage, make_placeholder
from .pipeline import (
    ComicBookOrchestrator,
    ComicRun,
    RunState,
    chunk_parts,
    parse_story_text,
    reconstruct_story,
)
from .stages import render_comic_image, stream_prompt_stage, stream_story_stage, validate_topic
from .transport import HttpStageTransport, LocalStageTransport, StageTransport

__all__ = [
    "ComicBookOrchestrator",
    "ComicRun",
    "GeneratedImage",
    "HttpStageTransport",
    "ImageStage",
    "LocalStageTransport",
    "RunState",
    "SSEDecoder",
    "StageTransport",
    "chunk_parts",
    "encode_event",
    "iter_events",
    "make_placeholder",
    "parse_story_text",
    "reconstruct_story",
    "render_comic_image",
    "stream_prompt_stage",
    "stream_story_stage",
    "validate_topic",
]
