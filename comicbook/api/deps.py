"""
API Dependencies

Services injected into route handlers. Tests replace them through
``app.dependency_overrides``.
"""

from fastapi import HTTPException

from comicbook.ai_generation import ReplicateImageGenerator
from comicbook.common import Settings, get_settings
from comicbook.common.logging import get_logger
from comicbook.persistence import SupabaseBookGateway
from comicbook.story_generation import ComicStoryGenerator, ImagePromptGenerator

logger = get_logger("api.deps")


def get_app_settings() -> Settings:
    return get_settings()


def get_story_generator() -> ComicStoryGenerator:
    return ComicStoryGenerator(settings=get_settings())


def get_prompt_generator() -> ImagePromptGenerator:
    return ImagePromptGenerator(settings=get_settings())


def get_image_generator() -> ReplicateImageGenerator:
    try:
        return ReplicateImageGenerator(settings=get_settings())
    except ValueError as e:
        logger.error(f"Image generator unavailable: {e}")
        raise HTTPException(status_code=500, detail=str(e))


def get_book_gateway() -> SupabaseBookGateway:
    return SupabaseBookGateway(settings=get_settings())
