"""
Books API Routes
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from comicbook.api.deps import get_book_gateway
from comicbook.common.logging import get_logger
from comicbook.persistence import PersistedBook, SupabaseBookGateway
from comicbook.pipeline.pipeline import parse_story_text

router = APIRouter()
logger = get_logger("api.books")


@router.get("/", response_model=List[PersistedBook])
def list_books(gateway: SupabaseBookGateway = Depends(get_book_gateway)):
    """List stored books, newest first."""
    try:
        return gateway.list_books()
    except Exception as e:
        logger.error(f"List books error: {e}")
        raise HTTPException(status_code=500, detail="Failed to list books")


@router.get("/{book_id}")
def get_book(book_id: str, gateway: SupabaseBookGateway = Depends(get_book_gateway)):
    """Get a book with its story split back into parts and its stored image rows."""
    try:
        book = gateway.get_book(book_id)
        if book is None:
            raise HTTPException(status_code=404, detail="Book not found")

        story_parts = parse_story_text(book.get("story_content") or "")
        return {
            **book,
            "story_parts": [part.as_dict() for part in story_parts],
            "image_records": gateway.get_book_images(book_id),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get book error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get book")


@router.delete("/{book_id}")
def delete_book(book_id: str, gateway: SupabaseBookGateway = Depends(get_book_gateway)):
    """Delete a book."""
    try:
        gateway.delete_book(book_id)
        return {"success": True, "message": "Book deleted"}
    except Exception as e:
        logger.error(f"Delete book error: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete book")
