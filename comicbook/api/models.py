"""
Request bodies accepted by the stage endpoints.

Fields are optional so that missing input is reported as a 400 with an ``error``
body rather than a schema validation error.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StoryRequest(BaseModel):
    prompt: Optional[str] = None


class ImagePromptsRequest(BaseModel):
    story_parts_chunk: Optional[List[Dict[str, Any]]] = Field(
        default=None, alias="storyPartsChunk"
    )


class ComicImageRequest(BaseModel):
    prompt: Optional[str] = None
    save_to_file: bool = Field(default=False, alias="saveToFile")
    filename: Optional[str] = None
