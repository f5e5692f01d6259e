"""
Book models
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class BookStatus(str, Enum):
    """Book status enum."""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PUBLISHED = "published"


class BookImageEntry(BaseModel):
    """Image reference stored in a book's ``images`` list."""
    id: int
    title: str
    url: str
    prompt: str
    order: Optional[int] = None


class BookImageRecord(BaseModel):
    """Row of the ``book_images`` table."""
    id: Optional[str] = None
    book_id: str
    image_url: str
    image_name: Optional[str] = None
    image_description: Optional[str] = None
    image_order: Optional[int] = None
    image_type: Optional[str] = None
    image_size: Optional[int] = None
    created_at: Optional[datetime] = None


class PersistedBook(BaseModel):
    """Row of the ``books`` table."""
    id: str
    title: str
    story_content: str
    images: List[BookImageEntry] = Field(default_factory=list)
    book_progress: Optional[int] = Field(default=None, ge=0, le=100)
    status: Optional[BookStatus] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
