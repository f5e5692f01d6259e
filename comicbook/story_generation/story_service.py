"""
Service layer for producing structured comic stories via LiteLLM-compatible models.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from comicbook.common import (
    ChatResult,
    CompletionCallable,
    GenerationFormatError,
    Settings,
    call_chat_completion,
    get_settings,
)

from .prompting import StoryPrompt, build_story_prompt

logger = logging.getLogger(__name__)

REQUIRED_STORY_FIELDS = ("overall_chapter_name", "story_summary", "parts")


@dataclass(frozen=True)
class StoryPart:
    """
    A single numbered part of the comic story.
    """

    part_number: int
    chapter_title: str
    story_content: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "part_number": self.part_number,
            "chapter_title": self.chapter_title,
            "story_content": self.story_content,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "StoryPart":
        try:
            number = int(payload["part_number"])
            title = str(payload["chapter_title"]).strip()
            content = str(payload["story_content"]).strip()
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid story part payload: {payload}") from exc
        return cls(part_number=number, chapter_title=title, story_content=content)


@dataclass(frozen=True)
class StoryBundle:
    """Title, summary, and ordered parts produced by one story generation call."""

    title: str
    summary: str
    parts: tuple[StoryPart, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "summary": self.summary,
            "parts": [part.as_dict() for part in self.parts],
        }


class ComicStoryGenerator:
    """
    High-level helper that turns a topic into a validated, fixed-length comic story.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        part_count: int | None = None,
        completion_fn: CompletionCallable | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._api_key = api_key or settings.llm_api_key
        self._model = model or settings.story_model
        self._part_count = part_count or settings.story_part_count
        self._timeout = settings.llm_timeout_seconds
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    @property
    def part_count(self) -> int:
        return self._part_count

    def generate_story(
        self,
        topic: str,
        *,
        temperature: float = 0.8,
        max_output_tokens: int = 3000,
        **response_kwargs: Any,
    ) -> StoryBundle:
        """
        Invoke the configured LLM once and parse its JSON answer into a :class:`StoryBundle`.
        """
        raw_text = self.request_story(
            topic,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            **response_kwargs,
        )
        return self.parse_story(raw_text)

    def request_story(
        self,
        topic: str,
        *,
        temperature: float = 0.8,
        max_output_tokens: int = 3000,
        **response_kwargs: Any,
    ) -> str:
        """Issue the single remote call and return the raw response text."""
        prompt: StoryPrompt = build_story_prompt(topic, part_count=self._part_count)

        messages = [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": prompt.user},
        ]

        result: ChatResult = self._completion_fn(
            model=self._model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_output_tokens,
            api_key=self._api_key,
            timeout=self._timeout,
            json_response=True,
            **response_kwargs,
        )
        return result.text

    def parse_story(self, raw_text: str) -> StoryBundle:
        if not raw_text:
            raise GenerationFormatError("No story content was generated.")

        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse story JSON: %s", raw_text[:500])
            raise GenerationFormatError(
                "Failed to parse story JSON response", raw_text=raw_text
            ) from exc

        if not isinstance(parsed, Mapping):
            raise GenerationFormatError("Story response must be a JSON object", raw_text=raw_text)

        missing = [name for name in REQUIRED_STORY_FIELDS if not parsed.get(name)]
        if missing:
            raise GenerationFormatError(
                f"Story response missing required fields ({', '.join(missing)})",
                raw_text=raw_text,
            )

        if not isinstance(parsed["parts"], list):
            raise GenerationFormatError("Story 'parts' must be a list", raw_text=raw_text)

        parts = self._convert_to_parts(parsed["parts"])
        self._validate_part_sequence(parts)

        return StoryBundle(
            title=str(parsed["overall_chapter_name"]).strip(),
            summary=str(parsed["story_summary"]).strip(),
            parts=tuple(parts),
        )

    def _convert_to_parts(self, parts_data: Iterable[Any]) -> list[StoryPart]:
        parts: list[StoryPart] = []
        for item in parts_data:
            if not isinstance(item, Mapping):
                raise GenerationFormatError(f"Invalid story part payload: {item!r}")
            try:
                part = StoryPart.from_mapping(item)
            except ValueError as exc:
                raise GenerationFormatError(str(exc)) from exc

            if not part.chapter_title or not part.story_content:
                raise GenerationFormatError(
                    f"Part {part.part_number} is missing chapter_title or story_content."
                )
            parts.append(part)
        return parts

    def _validate_part_sequence(self, parts: Sequence[StoryPart]) -> None:
        if len(parts) != self._part_count:
            raise GenerationFormatError(
                f"Expected exactly {self._part_count} story parts, received {len(parts)}."
            )

        for expected, part in enumerate(parts, start=1):
            if part.part_number != expected:
                raise GenerationFormatError(
                    "Part numbers must be unique and sequential starting from 1."
                )
