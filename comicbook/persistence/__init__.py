"""
Supabase persistence for finished comic books.
"""

from .gateway import BookSaver, SaveResult, SupabaseBookGateway, image_file_name, inline_image_url
from .models import BookImageEntry, BookImageRecord, BookStatus, PersistedBook

__all__ = [
    "BookImageEntry",
    "BookImageRecord",
    "BookSaver",
    "BookStatus",
    "PersistedBook",
    "SaveResult",
    "SupabaseBookGateway",
    "image_file_name",
    "inline_image_url",
]
