"""
Prompt construction utilities for ComicBookAI image generation.
"""

from __future__ import annotations

from comicbook.story_generation import ImagePrompt


def build_comic_image_prompt(prompt: ImagePrompt) -> str:
    """
    Flatten a structured image prompt into the single instruction sent to the image model.

    The layout description comes first, followed by every panel description in panel
    order and finally the art style and mood notes.
    """
    segments = [prompt.panel_layout_description]
    segments.extend(panel.description for panel in prompt.panels)
    segments.append(prompt.art_style_mood_notes)
    return " ".join(segment.strip() for segment in segments if segment and segment.strip())
