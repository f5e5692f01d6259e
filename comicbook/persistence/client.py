"""
Supabase client construction.
"""

from functools import lru_cache

from supabase import Client, create_client

from comicbook.common import PersistenceError, get_settings
from comicbook.common.logging import get_logger

logger = get_logger("supabase")


@lru_cache()
def get_supabase_client() -> Client:
    """Get the shared Supabase client built from settings."""
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning("Supabase URL or key not configured - persistence disabled")
        raise PersistenceError("Supabase is not configured. Set SUPABASE_URL and SUPABASE_KEY.")
    return create_client(settings.supabase_url, settings.supabase_key)
