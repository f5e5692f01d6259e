"""
Stage API Routes

The Story and Prompt stages stream Server-Sent Events; the image endpoint renders
one flattened prompt and answers with JSON.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from comicbook.ai_generation import ReplicateImageGenerator
from comicbook.api.deps import (
    get_app_settings,
    get_image_generator,
    get_prompt_generator,
    get_story_generator,
)
from comicbook.api.models import ComicImageRequest, ImagePromptsRequest, StoryRequest
from comicbook.common import RemoteServiceError, Settings
from comicbook.common.errors import is_transient_failure
from comicbook.common.logging import get_logger
from comicbook.pipeline.events import SSE_HEADERS
from comicbook.pipeline.stages import (
    render_comic_image,
    stream_prompt_stage,
    stream_story_stage,
    validate_topic,
)
from comicbook.story_generation import ComicStoryGenerator, ImagePromptGenerator, StoryPart

router = APIRouter()
logger = get_logger("api.stages")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/story")
def generate_story(
    request: StoryRequest,
    generator: ComicStoryGenerator = Depends(get_story_generator),
):
    """Stream the story for a topic as SSE events."""
    try:
        topic = validate_topic(request.prompt)
    except ValueError as e:
        return _error(400, str(e))

    logger.info(f"Story requested for topic: {topic}")
    return StreamingResponse(
        stream_story_stage(topic, generator),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/image-prompts")
def generate_image_prompts(
    request: ImagePromptsRequest,
    generator: ImagePromptGenerator = Depends(get_prompt_generator),
):
    """Stream image prompts for one batch of story parts as SSE events."""
    chunk = request.story_parts_chunk
    if not chunk:
        return _error(400, "Story parts chunk is required")

    try:
        parts = [StoryPart.from_mapping(item) for item in chunk]
        generator.validate_batch(parts)
    except ValueError as e:
        return _error(400, str(e))

    logger.info(f"Image prompts requested for parts {[part.part_number for part in parts]}")
    return StreamingResponse(
        stream_prompt_stage(parts, generator),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/comic-image")
def generate_comic_image(
    request: ComicImageRequest,
    generator: ReplicateImageGenerator = Depends(get_image_generator),
    settings: Settings = Depends(get_app_settings),
):
    """Render one comic page image."""
    if not request.prompt or not request.prompt.strip():
        return _error(400, "Prompt is required")

    try:
        return render_comic_image(
            request.prompt,
            generator,
            save_to_file=request.save_to_file,
            filename=request.filename,
            output_dir=settings.generated_images_dir,
        )
    except HTTPException:
        raise
    except RemoteServiceError as e:
        logger.error(f"Image generation error: {e}")
        status_code = 502 if is_transient_failure(e.status_code, str(e)) else 500
        return _error(status_code, str(e))
    except Exception as e:
        logger.error(f"Image generation error: {e}")
        return _error(500, str(e) or "Failed to generate image")
