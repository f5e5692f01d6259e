"""
Sequential image rendering with placeholder substitution.
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from comicbook.ai_generation import build_comic_image_prompt, render_placeholder_image
from comicbook.common import RemoteServiceError, TransientServiceError
from comicbook.story_generation import ImagePrompt

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]
RenderImageFn = Callable[..., Mapping[str, Any]]


@dataclass(frozen=True)
class GeneratedImage:
    """
    One finished comic page image, matched to its prompt by ``id``.
    """

    id: int
    title: str
    image_base64: str
    prompt: str
    source_url: str | None = None
    stored_path: str | None = None
    is_placeholder: bool = False

    @property
    def image_bytes(self) -> bytes:
        return base64.b64decode(self.image_base64)

    def as_dict(self, *, include_image: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "prompt": self.prompt,
            "source_url": self.source_url,
            "stored_path": self.stored_path,
            "is_placeholder": self.is_placeholder,
        }
        if include_image:
            payload["image_base64"] = self.image_base64
        return payload


def make_placeholder(prompt: ImagePrompt, image_number: int, instruction: str) -> GeneratedImage:
    """Build the flagged stand-in image for a prompt whose render failed."""
    png_bytes = render_placeholder_image(prompt.title, image_number)
    return GeneratedImage(
        id=prompt.id,
        title=prompt.title,
        image_base64=base64.b64encode(png_bytes).decode("ascii"),
        prompt=instruction,
        is_placeholder=True,
    )


class ImageStage:
    """
    Renders every image prompt in order, one remote call at a time.

    A failed render never stops the stage: the prompt gets a placeholder image and
    the loop moves on, so the output always has one image per prompt.
    """

    def __init__(
        self,
        render_fn: RenderImageFn,
        *,
        pacing_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._render_fn = render_fn
        self._pacing_seconds = pacing_seconds
        self._sleep = sleep

    def run(
        self,
        prompts: Sequence[ImagePrompt],
        *,
        progress_callback: ProgressCallback | None = None,
        on_image: Callable[[GeneratedImage], None] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[GeneratedImage]:
        images: list[GeneratedImage] = []
        total = len(prompts)
        for index, prompt in enumerate(prompts, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Image stage cancelled before image %s of %s", index, total)
                break

            self._notify(
                progress_callback,
                "image:processing",
                index=index,
                total=total,
                id=prompt.id,
                title=prompt.title,
                message=f"Generating image {index} of {total}: {prompt.title}",
            )
            image = self._render_one(prompt, index)
            images.append(image)
            if on_image is not None:
                on_image(image)

            if image.is_placeholder:
                message = f"Placeholder created for image {index}: {prompt.title}"
            else:
                message = f"Image {index} generated successfully: {prompt.title}"
            self._notify(
                progress_callback,
                "image:done",
                index=index,
                total=total,
                id=prompt.id,
                placeholder=image.is_placeholder,
                message=message,
            )
            if not image.is_placeholder and self._pacing_seconds:
                self._sleep(self._pacing_seconds)
        return images

    def _render_one(self, prompt: ImagePrompt, index: int) -> GeneratedImage:
        instruction = build_comic_image_prompt(prompt)
        try:
            data = self._render_fn(instruction, filename=f"comic-image-{prompt.id}.png")
            image_base64 = data.get("imageBase64")
            if not image_base64:
                raise RemoteServiceError(f"No image data returned for image {index}")
        except TransientServiceError as exc:
            logger.warning(
                "Image service temporarily unavailable for image %s; using placeholder: %s",
                index,
                exc,
            )
            return make_placeholder(prompt, index, instruction)
        except Exception as exc:
            logger.error("Creating placeholder for image %s due to error: %s", index, exc)
            return make_placeholder(prompt, index, instruction)

        return GeneratedImage(
            id=prompt.id,
            title=prompt.title,
            image_base64=str(image_base64),
            prompt=instruction,
            source_url=data.get("imageUrl") or None,
            stored_path=data.get("savedFilePath") or None,
        )

    @staticmethod
    def _notify(callback: ProgressCallback | None, stage: str, **payload: Any) -> None:
        if callback is not None:
            callback(stage, payload)
