"""
Exception hierarchy shared by the ComicBookAI generation and persistence layers.
"""

from __future__ import annotations

import re

SNIPPET_LENGTH = 200

TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})

_TRANSIENT_TEXT = re.compile(r"\b502\b|bad gateway", re.IGNORECASE)


class ComicBookError(Exception):
    """Base class for every error raised by the ComicBookAI package."""


class RemoteServiceError(ComicBookError):
    """
    A remote generation service could not be reached or answered with an error.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientServiceError(RemoteServiceError):
    """The remote service explicitly signalled temporary unavailability (gateway 5xx)."""


class GenerationFormatError(ComicBookError):
    """
    The remote response could not be read as the expected structured payload.

    ``snippet`` holds the beginning of the raw response for diagnostics.
    """

    def __init__(self, message: str, *, raw_text: str | None = None) -> None:
        self.snippet = (raw_text or "")[:SNIPPET_LENGTH]
        if raw_text is not None:
            message = f"{message}: {self.snippet}"
        super().__init__(message)


class GenerationCountMismatchError(ComicBookError):
    """A structured response parsed, but its array length broke the cardinality contract."""

    def __init__(self, *, expected: int, received: int | None) -> None:
        super().__init__(
            f"Image prompt response has the wrong number of entries. "
            f"Expected {expected} prompts, got {received}."
        )
        self.expected = expected
        self.received = received


class IncompleteStreamError(ComicBookError):
    """A stage stream closed without a terminal ``done`` or ``error`` event."""


class UploadError(ComicBookError):
    """Storing a single image in object storage failed."""


class PersistenceError(ComicBookError):
    """Creating or updating a book record failed."""


def is_transient_failure(status_code: int | None, message: str | None) -> bool:
    """
    Return ``True`` when a status code or error text looks like a gateway-level outage.
    """
    if status_code in TRANSIENT_STATUS_CODES:
        return True
    return bool(_TRANSIENT_TEXT.search(message or ""))
