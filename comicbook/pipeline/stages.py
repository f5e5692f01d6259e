"""
Stage endpoints: the Story and Prompt stages as SSE frame generators, and the
per-image rendering service used by the Image Stage.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from pathlib import Path
from typing import Any, Iterator, Sequence

from comicbook.ai_generation import ReplicateImageGenerator
from comicbook.story_generation import ComicStoryGenerator, ImagePromptGenerator, StoryPart

from . import events

logger = logging.getLogger(__name__)

_SAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


def validate_topic(topic: Any) -> str:
    """Return the stripped topic, or raise ``ValueError`` when it is missing or blank."""
    if not isinstance(topic, str) or not topic.strip():
        raise ValueError("Prompt is required")
    return topic.strip()


def stream_story_stage(topic: str, generator: ComicStoryGenerator) -> Iterator[str]:
    """
    Run the Story Stage for ``topic`` and yield SSE frames.

    The remote call is atomic; delivery is incremental: a summary event followed by
    one event per part in ``part_number`` order. Any failure yields exactly one
    ``error`` event and ends the stream.
    """
    try:
        yield events.encode_event(
            events.status_event("Connecting to the story model for story generation...")
        )
        raw_text = generator.request_story(topic)

        yield events.encode_event(events.status_event("Parsing story response..."))
        bundle = generator.parse_story(raw_text)

        yield events.encode_event(events.status_event("Story generated successfully!"))
        yield events.encode_event(events.story_summary_event(bundle.title, bundle.summary))

        yield events.encode_event(events.status_event("Displaying story parts..."))
        for part in bundle.parts:
            yield events.encode_event(
                events.story_part_event(part.part_number, part.chapter_title, part.story_content)
            )

        yield events.encode_event(events.status_event("Story generation complete."))
        yield events.encode_event(events.done_event(part_count=len(bundle.parts)))
    except Exception as exc:
        logger.exception("Error in story generation stream")
        yield events.encode_event(events.error_event(str(exc) or exc.__class__.__name__))


def stream_prompt_stage(
    parts: Sequence[StoryPart], generator: ImagePromptGenerator
) -> Iterator[str]:
    """
    Run the Prompt Stage for one batch of story parts and yield SSE frames.

    Exactly one ``image_prompts_chunk`` event carries the batch's prompts.
    """
    batch_size = len(parts)
    try:
        yield events.encode_event(
            events.status_event(
                f"Connecting to the prompt model for image prompt generation ({batch_size} parts)..."
            )
        )
        raw_text = generator.request_prompts(parts)

        yield events.encode_event(events.status_event("Parsing image prompt response..."))
        prompts = generator.parse_prompts(raw_text, parts)

        yield events.encode_event(
            events.image_prompts_chunk_event(prompt.as_dict() for prompt in prompts)
        )
        yield events.encode_event(
            events.status_event(f"Image prompts for {batch_size} parts generated successfully.")
        )
        yield events.encode_event(events.done_event(prompt_count=len(prompts)))
    except Exception as exc:
        logger.exception("Error in image prompt generation stream")
        yield events.encode_event(events.error_event(str(exc) or exc.__class__.__name__))


def render_comic_image(
    prompt: str,
    generator: ReplicateImageGenerator,
    *,
    save_to_file: bool = False,
    filename: str | None = None,
    output_dir: str | Path | None = None,
) -> dict[str, Any]:
    """
    Render one flattened image prompt and return the per-image response payload.

    Remote failures propagate as :class:`~comicbook.common.RemoteServiceError`. A failure
    while saving the file is logged and leaves ``savedFilePath`` empty.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("Prompt is required")

    logger.info("Received image prompt: %s", prompt[:120])
    rendered = generator.generate_image(prompt)
    image_base64 = base64.b64encode(rendered.image_bytes).decode("ascii")

    saved_file_path = None
    if save_to_file:
        saved_file_path = _save_image(rendered.image_bytes, filename, output_dir)

    return {
        "imageBase64": image_base64,
        "imageUrl": rendered.source_url,
        "savedFilePath": saved_file_path,
        "prompt": prompt,
    }


def _save_image(
    image_bytes: bytes, filename: str | None, output_dir: str | Path | None
) -> str | None:
    directory = Path(output_dir or "generated-images")
    name = _SAFE_FILENAME.sub("-", filename or "") or f"generated-{int(time.time() * 1000)}.png"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / name
        target.write_bytes(image_bytes)
    except OSError:
        logger.exception("Error saving generated image %s", name)
        return None
    logger.info("Image saved to: %s", target)
    return f"/{directory.name}/{name}"
