"""
Convert batches of story parts into three-panel comic image prompts.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from comicbook.common import (
    ChatResult,
    CompletionCallable,
    GenerationCountMismatchError,
    GenerationFormatError,
    Settings,
    call_chat_completion,
    get_settings,
)

from .story_service import StoryPart

logger = logging.getLogger(__name__)

PANELS_PER_PROMPT = 3

_PANEL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "panel_number": {
            "type": "integer",
            "description": "The number of the panel (1, 2, or 3).",
        },
        "description": {
            "type": "string",
            "description": (
                "Detailed visual description for this panel: who (characters or objects), "
                "where (setting, background details), what (primary action or emotion), "
                "and camera angle (e.g., low-angle close-up)."
            ),
        },
        "dialogue_caption": {
            "type": "string",
            "description": (
                "Mandatory text elements for this panel: a speech bubble with dialogue in ALL CAPS, "
                "a large sound effect, a caption box with narrative text, and an educational thought "
                "bubble or info box. Specify exact text, size, color, and position for each element."
            ),
        },
    },
    "required": ["panel_number", "description", "dialogue_caption"],
}

_IMAGE_PROMPT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {
            "type": "integer",
            "description": (
                "The part_number of the story part this prompt illustrates, relative to the whole "
                "story (e.g., 4 for the fourth part when processing parts 4-6)."
            ),
        },
        "title": {
            "type": "string",
            "description": "A short, descriptive title for this comic page based on its content.",
        },
        "panel_layout_description": {
            "type": "string",
            "description": (
                "Overall description of the panel layout (e.g., 'Three equal vertical panels with "
                "crisp 3px black borders and 8px white gutters')."
            ),
        },
        "panels": {
            "type": "array",
            "description": "Exactly three objects, each describing a single panel.",
            "items": _PANEL_SCHEMA,
            "minItems": PANELS_PER_PROMPT,
            "maxItems": PANELS_PER_PROMPT,
        },
        "art_style_mood_notes": {
            "type": "string",
            "description": (
                "Character appearance (costume colors, textures, expressions), mood (posture, "
                "lighting), and classic comic-book art style elements (bold line weight, halftone "
                "dots, speed lines, impact bursts)."
            ),
        },
    },
    "required": ["id", "title", "panel_layout_description", "panels", "art_style_mood_notes"],
}


def schema_for(batch_size: int) -> dict[str, Any]:
    """
    Return the JSON schema describing a response for exactly ``batch_size`` story parts.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1.")

    return {
        "type": "object",
        "properties": {
            "image_prompts": {
                "type": "array",
                "description": (
                    f"A list containing exactly {batch_size} image prompt object(s), "
                    "one for each provided story part."
                ),
                "items": copy.deepcopy(_IMAGE_PROMPT_SCHEMA),
                "minItems": batch_size,
                "maxItems": batch_size,
            }
        },
        "required": ["image_prompts"],
    }


@dataclass(frozen=True)
class Panel:
    """One panel inside a three-panel comic page."""

    panel_number: int
    description: str
    dialogue_caption: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "panel_number": self.panel_number,
            "description": self.description,
            "dialogue_caption": self.dialogue_caption,
        }


@dataclass(frozen=True)
class ImagePrompt:
    """
    Illustration brief for one story part; ``id`` equals the part's ``part_number``.
    """

    id: int
    title: str
    panel_layout_description: str
    panels: tuple[Panel, ...]
    art_style_mood_notes: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "panel_layout_description": self.panel_layout_description,
            "panels": [panel.as_dict() for panel in self.panels],
            "art_style_mood_notes": self.art_style_mood_notes,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ImagePrompt":
        """
        Build a prompt from its JSON form, enforcing exactly three panels numbered 1-3.
        """
        try:
            prompt_id = int(payload["id"])
            title = str(payload["title"]).strip()
            layout = str(payload["panel_layout_description"]).strip()
            notes = str(payload["art_style_mood_notes"]).strip()
            raw_panels = payload["panels"]
        except (KeyError, TypeError, ValueError) as exc:
            raise GenerationFormatError(f"Invalid image prompt payload: {payload!r}") from exc

        if not isinstance(raw_panels, list) or len(raw_panels) != PANELS_PER_PROMPT:
            raise GenerationFormatError(
                f"Image prompt {prompt_id} must contain exactly {PANELS_PER_PROMPT} panels."
            )

        panels: list[Panel] = []
        for expected, entry in enumerate(raw_panels, start=1):
            try:
                panel = Panel(
                    panel_number=int(entry["panel_number"]),
                    description=str(entry["description"]).strip(),
                    dialogue_caption=str(entry["dialogue_caption"]).strip(),
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise GenerationFormatError(
                    f"Invalid panel payload in image prompt {prompt_id}: {entry!r}"
                ) from exc
            if panel.panel_number != expected:
                raise GenerationFormatError(
                    f"Panels of image prompt {prompt_id} must be numbered 1 to {PANELS_PER_PROMPT}."
                )
            panels.append(panel)

        return cls(
            id=prompt_id,
            title=title,
            panel_layout_description=layout,
            panels=tuple(panels),
            art_style_mood_notes=notes,
        )


class ImagePromptGenerator:
    """
    Turns a batch of story parts into one validated :class:`ImagePrompt` per part.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        max_batch_size: int | None = None,
        completion_fn: CompletionCallable | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._api_key = api_key or settings.llm_api_key
        self._model = model or settings.prompt_model
        self._max_batch_size = max_batch_size or settings.prompt_batch_size
        self._timeout = settings.llm_timeout_seconds
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    @property
    def model(self) -> str:
        return self._model

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    def generate_prompts(
        self,
        parts: Sequence[StoryPart],
        *,
        temperature: float = 0.6,
        max_output_tokens: int = 4000,
        **response_kwargs: Any,
    ) -> list[ImagePrompt]:
        """
        Request image prompts for ``parts`` and return them in the batch's part order.
        """
        raw_text = self.request_prompts(
            parts,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            **response_kwargs,
        )
        return self.parse_prompts(raw_text, parts)

    def request_prompts(
        self,
        parts: Sequence[StoryPart],
        *,
        temperature: float = 0.6,
        max_output_tokens: int = 4000,
        **response_kwargs: Any,
    ) -> str:
        """Issue one remote call for the batch, with a schema sized to it, and return the raw text."""
        self.validate_batch(parts)

        batch_size = len(parts)
        schema_text = json.dumps(schema_for(batch_size), indent=2)

        result: ChatResult = self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": self._build_system_prompt(schema_text, batch_size)},
                {"role": "user", "content": self._build_user_prompt(parts)},
            ],
            temperature=temperature,
            max_tokens=max_output_tokens,
            api_key=self._api_key,
            timeout=self._timeout,
            json_response=True,
            **response_kwargs,
        )
        return result.text

    def validate_batch(self, parts: Sequence[StoryPart]) -> None:
        if not parts:
            raise ValueError("Story parts chunk is required and must be a non-empty array.")
        if len(parts) > self._max_batch_size:
            raise ValueError(
                f"Story parts chunk holds {len(parts)} parts; the limit is {self._max_batch_size}."
            )
        numbers = [part.part_number for part in parts]
        if len(set(numbers)) != len(numbers):
            raise ValueError("Story parts chunk contains duplicate part numbers.")

    def parse_prompts(self, raw_text: str, parts: Sequence[StoryPart]) -> list[ImagePrompt]:
        if not raw_text:
            raise GenerationFormatError("No image prompt content was generated.")

        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse image prompt JSON: %s", raw_text[:500])
            raise GenerationFormatError(
                "Failed to parse image prompt JSON response", raw_text=raw_text
            ) from exc

        entries = parsed.get("image_prompts") if isinstance(parsed, Mapping) else None
        if not isinstance(entries, list):
            raise GenerationFormatError(
                "Image prompt response missing 'image_prompts' list", raw_text=raw_text
            )

        if len(entries) != len(parts):
            raise GenerationCountMismatchError(expected=len(parts), received=len(entries))

        prompts = [ImagePrompt.from_mapping(entry) for entry in entries]

        by_id = {prompt.id: prompt for prompt in prompts}
        expected_ids = [part.part_number for part in parts]
        if len(by_id) != len(prompts) or set(by_id) != set(expected_ids):
            raise GenerationFormatError(
                f"Image prompt ids {sorted(by_id)} do not match story part numbers {expected_ids}."
            )

        return [by_id[number] for number in expected_ids]

    def _build_system_prompt(self, schema_text: str, batch_size: int) -> str:
        return f"""You are an expert comic book artist and writer. You will be given {batch_size} part(s) of a story for a STEM-focused comic book.
Generate a list of {batch_size} detailed image prompt(s), one for each provided part. Set each prompt's 'id' to the original part_number of the part it illustrates.
Output a single, valid JSON object only, with no text before or after it.

The JSON object must conform to this schema:

{schema_text}

Text requirements for every panel:
- At least three kinds of visible text: a speech bubble, a sound effect, and a caption box.
- Speech bubbles carry real dialogue from the story in ALL CAPS, white background, thick black outline, tail pointing to the speaker.
- Sound effects are large, bold onomatopoeia (BAM!, WHOOSH!, CRACKLE!) integrated into the action.
- Caption boxes carry narrative text from the story on a yellow rectangular background.
- Educational STEM content appears in thought bubbles or info boxes.
- All text is large and readable, hand-lettered comic style, and never covers faces.

Every panel description must state the exact text content, placement, and styling of each text element."""

    def _build_user_prompt(self, parts: Sequence[StoryPart]) -> str:
        payload = json.dumps([part.as_dict() for part in parts], indent=2)
        return (
            f"Here are {len(parts)} story part(s). Generate image prompts for them, making sure "
            f"each prompt's 'id' matches the original 'part_number':\n\n{payload}"
        )
