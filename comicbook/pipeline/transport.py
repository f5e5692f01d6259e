"""
How the orchestrator reaches the stage endpoints: in-process or over HTTP.

Both transports hand the orchestrator decoded SSE events, so the wire protocol is
exercised either way.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Protocol, Sequence

import requests

from comicbook.ai_generation import ReplicateImageGenerator
from comicbook.common import RemoteServiceError, Settings, TransientServiceError, get_settings
from comicbook.common.errors import is_transient_failure
from comicbook.story_generation import ComicStoryGenerator, ImagePromptGenerator, StoryPart

from .events import iter_events
from .stages import render_comic_image, stream_prompt_stage, stream_story_stage

logger = logging.getLogger(__name__)


class StageTransport(Protocol):
    """Calls the three stage boundaries on behalf of the orchestrator."""

    def stream_story(self, topic: str) -> Iterator[dict[str, Any]]:
        ...

    def stream_prompts(self, parts: Sequence[StoryPart]) -> Iterator[dict[str, Any]]:
        ...

    def render_image(self, prompt: str, *, filename: str | None = None) -> dict[str, Any]:
        ...


class LocalStageTransport:
    """
    Runs the stage endpoints in-process. Generators are created on first use.
    """

    def __init__(
        self,
        *,
        story_generator: ComicStoryGenerator | None = None,
        prompt_generator: ImagePromptGenerator | None = None,
        image_generator: ReplicateImageGenerator | None = None,
        save_to_file: bool = False,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._story_generator = story_generator
        self._prompt_generator = prompt_generator
        self._image_generator = image_generator
        self._save_to_file = save_to_file

    def stream_story(self, topic: str) -> Iterator[dict[str, Any]]:
        if self._story_generator is None:
            self._story_generator = ComicStoryGenerator(settings=self._settings)
        return iter_events(stream_story_stage(topic, self._story_generator))

    def stream_prompts(self, parts: Sequence[StoryPart]) -> Iterator[dict[str, Any]]:
        if self._prompt_generator is None:
            self._prompt_generator = ImagePromptGenerator(settings=self._settings)
        return iter_events(stream_prompt_stage(parts, self._prompt_generator))

    def render_image(self, prompt: str, *, filename: str | None = None) -> dict[str, Any]:
        if self._image_generator is None:
            self._image_generator = ReplicateImageGenerator(settings=self._settings)
        return render_comic_image(
            prompt,
            self._image_generator,
            save_to_file=self._save_to_file,
            filename=filename,
            output_dir=self._settings.generated_images_dir,
        )


class HttpStageTransport:
    """
    Calls the stage endpoints of a running ComicBookAI API server.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 300.0,
        save_to_file: bool = True,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._save_to_file = save_to_file

    def stream_story(self, topic: str) -> Iterator[dict[str, Any]]:
        return self._stream("/api/story", {"prompt": topic})

    def stream_prompts(self, parts: Sequence[StoryPart]) -> Iterator[dict[str, Any]]:
        return self._stream(
            "/api/image-prompts",
            {"storyPartsChunk": [part.as_dict() for part in parts]},
        )

    def render_image(self, prompt: str, *, filename: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"prompt": prompt, "saveToFile": self._save_to_file}
        if filename:
            body["filename"] = filename
        try:
            response = self._session.post(
                f"{self._base_url}/api/comic-image", json=body, timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise RemoteServiceError(f"Image request failed: {exc}") from exc

        data = _json_or_empty(response)
        if not response.ok:
            message = str(data.get("error") or f"Image request failed with status {response.status_code}")
            if is_transient_failure(response.status_code, message):
                raise TransientServiceError(message, status_code=response.status_code)
            raise RemoteServiceError(message, status_code=response.status_code)
        return data

    def _stream(self, path: str, body: dict[str, Any]) -> Iterator[dict[str, Any]]:
        try:
            response = self._session.post(
                f"{self._base_url}{path}", json=body, stream=True, timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise RemoteServiceError(f"Stage request to {path} failed: {exc}") from exc

        if not response.ok:
            data = _json_or_empty(response)
            message = str(data.get("error") or f"API request failed with status {response.status_code}")
            response.close()
            raise RemoteServiceError(message, status_code=response.status_code)

        response.encoding = response.encoding or "utf-8"

        def _events() -> Iterator[dict[str, Any]]:
            with response:
                try:
                    yield from iter_events(
                        response.iter_content(chunk_size=None, decode_unicode=True)
                    )
                except requests.RequestException as exc:
                    raise RemoteServiceError(f"Stage stream {path} interrupted: {exc}") from exc

        return _events()


def _json_or_empty(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        logger.warning("Non-JSON response body from %s", response.url)
        return {}
    return data if isinstance(data, dict) else {}
