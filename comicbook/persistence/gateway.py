"""
Supabase persistence for finished comic books.

``save_complete_book`` commits one generation run: it creates the book row, uploads
every image to object storage (falling back to an inline data URL), records one
``book_images`` row per image, then attaches the final URLs to the book.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Sequence

from supabase import Client

from comicbook.common import PersistenceError, Settings, UploadError, get_settings
from comicbook.common.logging import get_logger

from .client import get_supabase_client
from .models import BookImageEntry, BookImageRecord, BookStatus

if TYPE_CHECKING:
    from comicbook.pipeline.image_stage import GeneratedImage

logger = get_logger("persistence")

BOOKS_TABLE = "books"
BOOK_IMAGES_TABLE = "book_images"
IMAGE_CONTENT_TYPE = "image/png"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9]")


@dataclass
class SaveResult:
    """Outcome of one save: the book id when the book row exists, and any fatal error."""

    book_id: str | None
    error: Exception | None = None
    failed_uploads: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.book_id is not None and self.error is None


class BookSaver(Protocol):
    def save_complete_book(
        self,
        title: str,
        story_content: str,
        images: Sequence["GeneratedImage"],
        book_progress: int = 100,
        status: BookStatus | str = BookStatus.COMPLETED,
    ) -> SaveResult:
        ...


def image_file_name(image_id: int, title: str) -> str:
    return f"image-{image_id}-{_UNSAFE_NAME_CHARS.sub('-', title)}.png"


def inline_image_url(image_base64: str) -> str:
    return f"data:{IMAGE_CONTENT_TYPE};base64,{image_base64}"


class SupabaseBookGateway:
    """
    Reads and writes comic books in Supabase tables and storage.
    """

    def __init__(
        self,
        *,
        client: Client | None = None,
        bucket: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._client = client
        self._bucket = bucket or settings.supabase_bucket

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # Book rows

    def create_book(self, book_data: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.table(BOOKS_TABLE).insert(book_data).execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to create book: {exc}") from exc
        if not response.data:
            raise PersistenceError("Failed to create book: no row returned")
        return response.data[0]

    def update_book(self, book_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.table(BOOKS_TABLE) \
                .update(updates) \
                .eq("id", book_id) \
                .execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to update book {book_id}: {exc}") from exc
        if not response.data:
            raise PersistenceError(f"Book {book_id} not found")
        return response.data[0]

    def get_book(self, book_id: str) -> dict[str, Any] | None:
        try:
            response = self.client.table(BOOKS_TABLE) \
                .select("*") \
                .eq("id", book_id) \
                .limit(1) \
                .execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to get book {book_id}: {exc}") from exc
        return response.data[0] if response.data else None

    def list_books(self) -> list[dict[str, Any]]:
        try:
            response = self.client.table(BOOKS_TABLE) \
                .select("*") \
                .order("created_at", desc=True) \
                .execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to list books: {exc}") from exc
        return response.data or []

    def delete_book(self, book_id: str) -> None:
        try:
            self.client.table(BOOKS_TABLE).delete().eq("id", book_id).execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to delete book {book_id}: {exc}") from exc

    # Image rows and storage

    def add_book_image(self, image_data: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.table(BOOK_IMAGES_TABLE).insert(image_data).execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to add book image: {exc}") from exc
        if not response.data:
            raise PersistenceError("Failed to add book image: no row returned")
        return response.data[0]

    def get_book_images(self, book_id: str) -> list[dict[str, Any]]:
        try:
            response = self.client.table(BOOK_IMAGES_TABLE) \
                .select("*") \
                .eq("book_id", book_id) \
                .order("image_order") \
                .execute()
        except Exception as exc:
            raise PersistenceError(f"Failed to get images of book {book_id}: {exc}") from exc
        return response.data or []

    def upload_image(self, image_bytes: bytes, file_name: str, book_id: str) -> str:
        """
        Upload PNG bytes under ``{book_id}/{file_name}`` and return the public URL.
        """
        file_path = f"{book_id}/{file_name}"
        logger.info(f"Uploading {file_name} for book {book_id}")
        try:
            bucket = self.client.storage.from_(self._bucket)
            bucket.upload(
                path=file_path,
                file=image_bytes,
                file_options={
                    "content-type": IMAGE_CONTENT_TYPE,
                    "cache-control": "3600",
                    "upsert": "true",
                },
            )
            public_url = bucket.get_public_url(file_path)
        except Exception as exc:
            raise UploadError(f"Failed to upload {file_name}: {exc}") from exc
        if not public_url:
            raise UploadError(f"No public URL returned for {file_name}")
        return public_url

    # Combined save

    def save_complete_book(
        self,
        title: str,
        story_content: str,
        images: Sequence["GeneratedImage"],
        book_progress: int = 100,
        status: BookStatus | str = BookStatus.COMPLETED,
    ) -> SaveResult:
        """
        Persist a finished comic book. Returns the book id whenever the book row was created.
        """
        status_value = BookStatus(status).value
        book_data = {
            "title": title,
            "story_content": story_content,
            "book_progress": book_progress,
            "status": status_value,
            "images": [],
            "metadata": {
                "total_images": len(images),
                "created_from_prompt": True,
                "ai_generated": True,
            },
        }

        try:
            book = self.create_book(book_data)
        except PersistenceError as exc:
            logger.error(f"Failed to create book: {exc}")
            return SaveResult(book_id=None, error=exc)

        book_id = str(book["id"])
        logger.info(f"Created book with ID: {book_id}, now uploading {len(images)} images to storage...")

        failed_uploads: list[int] = []
        image_entries: list[dict[str, Any]] = []
        for image in images:
            file_name = image_file_name(image.id, image.title)
            try:
                url = self.upload_image(image.image_bytes, file_name, book_id)
            except (UploadError, ValueError) as exc:
                logger.error(f"Failed to upload image {image.id}: {exc}")
                failed_uploads.append(image.id)
                url = inline_image_url(image.image_base64)

            record = BookImageRecord(
                book_id=book_id,
                image_url=url,
                image_name=file_name,
                image_description=image.prompt,
                image_order=image.id,
                image_type=IMAGE_CONTENT_TYPE,
                image_size=round(len(image.image_base64) * 0.75),
            )
            try:
                self.add_book_image(record.model_dump(exclude_none=True))
            except PersistenceError as exc:
                logger.warning(f"Image {image.id} failed to save to database: {exc}")

            image_entries.append(
                BookImageEntry(
                    id=image.id, title=image.title, url=url, prompt=image.prompt, order=image.id
                ).model_dump()
            )

        try:
            self.update_book(book_id, {"images": image_entries})
        except PersistenceError as exc:
            logger.error(f"Failed to update book with image URLs: {exc}")

        logger.info(f"Saved book {book_id} with {len(image_entries)} images")
        return SaveResult(book_id=book_id, failed_uploads=failed_uploads)
