"""
Story and image-prompt generation for ComicBookAI.
"""

from .panel_prompts import ImagePrompt, ImagePromptGenerator, Panel, schema_for
from .prompting import StoryPrompt, build_story_prompt
from .story_service import ComicStoryGenerator, StoryBundle, StoryPart

__all__ = [
    "StoryPrompt",
    "build_story_prompt",
    "ComicStoryGenerator",
    "StoryBundle",
    "StoryPart",
    "ImagePrompt",
    "ImagePromptGenerator",
    "Panel",
    "schema_for",
]
