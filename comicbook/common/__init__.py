"""
Common utilities shared across ComicBookAI modules.
"""

from .config import Settings, get_settings
from .errors import (
    ComicBookError,
    GenerationCountMismatchError,
    GenerationFormatError,
    IncompleteStreamError,
    PersistenceError,
    RemoteServiceError,
    TransientServiceError,
    UploadError,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion, normalize_remote_error

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "call_chat_completion",
    "normalize_remote_error",
    "Settings",
    "get_settings",
    "ComicBookError",
    "GenerationCountMismatchError",
    "GenerationFormatError",
    "IncompleteStreamError",
    "PersistenceError",
    "RemoteServiceError",
    "TransientServiceError",
    "UploadError",
]
