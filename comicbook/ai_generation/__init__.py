"""
AI image generation package for ComicBookAI.
"""

from .placeholder import PLACEHOLDER_SIZE, render_placeholder_image
from .prompting import build_comic_image_prompt
from .replicate_service import RenderedImage, ReplicateImageGenerator

__all__ = [
    "PLACEHOLDER_SIZE",
    "RenderedImage",
    "ReplicateImageGenerator",
    "build_comic_image_prompt",
    "render_placeholder_image",
]
