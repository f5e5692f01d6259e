"""
Runtime configuration for ComicBookAI, loaded from the environment and ``.env``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    # Text generation (LiteLLM)
    llm_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "llm_api_key", "COMICBOOK_LLM_API_KEY", "LITELLM_API_KEY", "OPENAI_API_KEY"
        ),
    )
    story_model: str = Field(
        default="gpt-4.1-mini",
        validation_alias=AliasChoices(
            "story_model", "COMICBOOK_STORY_MODEL", "LITELLM_STORY_MODEL", "LITELLM_MODEL"
        ),
    )
    prompt_model: str = Field(
        default="gpt-4.1-mini",
        validation_alias=AliasChoices(
            "prompt_model", "COMICBOOK_PROMPT_MODEL", "LITELLM_PROMPT_MODEL", "LITELLM_MODEL"
        ),
    )
    llm_timeout_seconds: float = Field(default=120.0, gt=0)

    # Image generation (Replicate)
    replicate_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("replicate_api_token", "REPLICATE_API_TOKEN"),
    )
    replicate_model: str = Field(
        default="black-forest-labs/flux-schnell",
        validation_alias=AliasChoices("replicate_model", "REPLICATE_MODEL"),
    )
    image_download_timeout_seconds: float = Field(default=60.0, gt=0)
    generated_images_dir: str = Field(default="public/generated-images")

    # Pipeline shape
    story_part_count: int = Field(default=3, ge=1, le=12)
    prompt_batch_size: int = Field(default=3, ge=1)
    image_pacing_seconds: float = Field(default=0.8, ge=0)
    save_grace_seconds: float = Field(default=2.0, ge=0)

    # Supabase
    supabase_url: str = Field(
        default="",
        validation_alias=AliasChoices("supabase_url", "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    supabase_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "supabase_key", "SUPABASE_KEY", "SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"
        ),
    )
    supabase_bucket: str = Field(default="book-images")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
