"""
Orchestrates one comic book run: story, batched image prompts, images, and the save.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

import yaml

from comicbook.common import (
    ComicBookError,
    GenerationCountMismatchError,
    IncompleteStreamError,
    Settings,
    get_settings,
)
from comicbook.persistence import BookSaver, BookStatus, SupabaseBookGateway
from comicbook.story_generation import ImagePrompt, StoryPart

from . import events
from .image_stage import GeneratedImage, ImageStage
from .stages import validate_topic
from .transport import LocalStageTransport, StageTransport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]

TITLE_FALLBACK_LENGTH = 100

_PART_HEADER = re.compile(r"^Part\s+(\d+):[ \t]*(.*)$", re.MULTILINE)


class RunState(str, Enum):
    IDLE = "idle"
    STORY_IN_PROGRESS = "story_in_progress"
    STORY_COMPLETE = "story_complete"
    PROMPTS_IN_PROGRESS = "prompts_in_progress"
    PROMPTS_COMPLETE = "prompts_complete"
    IMAGES_IN_PROGRESS = "images_in_progress"
    IMAGES_COMPLETE = "images_complete"
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"


@dataclass
class ComicRun:
    """Cumulative state of one generation run for a single topic."""

    topic: str
    state: RunState = RunState.IDLE
    title: str | None = None
    summary: str | None = None
    parts: list[StoryPart] = field(default_factory=list)
    prompts: list[ImagePrompt] = field(default_factory=list)
    images: list[GeneratedImage] = field(default_factory=list)
    story_text: str | None = None
    book_id: str | None = None
    error: str | None = None
    status_message: str = ""
    failed_uploads: list[int] = field(default_factory=list)
    images_triggered: bool = False
    save_triggered: bool = False

    @property
    def book_title(self) -> str:
        return self.title or self.topic[:TITLE_FALLBACK_LENGTH]

    @property
    def placeholder_count(self) -> int:
        return sum(1 for image in self.images if image.is_placeholder)

    def as_dict(self, *, include_images: bool = False) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "state": self.state.value,
            "title": self.title,
            "summary": self.summary,
            "story_text": self.story_text,
            "parts": [part.as_dict() for part in self.parts],
            "image_prompts": [prompt.as_dict() for prompt in self.prompts],
            "images": [image.as_dict(include_image=include_images) for image in self.images],
            "book_id": self.book_id,
            "error": self.error,
            "failed_uploads": list(self.failed_uploads),
        }

    def to_yaml(self, *, include_images: bool = False) -> str:
        return yaml.safe_dump(
            self.as_dict(include_images=include_images), sort_keys=False, allow_unicode=True
        )


def reconstruct_story(parts: Iterable[StoryPart]) -> str:
    """
    Canonical story text: ``Part {n}: {title}`` then the content, parts separated by a blank line.
    """
    ordered = sorted(parts, key=lambda part: part.part_number)
    return "\n\n".join(
        f"Part {part.part_number}: {part.chapter_title}\n{part.story_content}" for part in ordered
    )


def parse_story_text(text: str) -> list[StoryPart]:
    """
    Split a reconstructed story back into its parts using the ``Part {n}:`` header lines.
    """
    matches = list(_PART_HEADER.finditer(text or ""))
    parts: list[StoryPart] = []
    for index, match in enumerate(matches):
        body_start = match.end() + 1
        body_end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        parts.append(
            StoryPart(
                part_number=int(match.group(1)),
                chapter_title=match.group(2).strip(),
                story_content=text[body_start:body_end].strip(),
            )
        )
    return parts


def chunk_parts(parts: Sequence[StoryPart], size: int) -> list[list[StoryPart]]:
    """Split ``parts`` into consecutive windows of at most ``size`` in part order."""
    if size < 1:
        raise ValueError("Batch size must be at least 1.")
    ordered = sorted(parts, key=lambda part: part.part_number)
    return [ordered[start:start + size] for start in range(0, len(ordered), size)]


class _StageFailed(ComicBookError):
    """A stage stream reported an ``error`` event."""


class ComicBookOrchestrator:
    """
    Client-side driver chaining the Story, Prompt, and Image stages and the final save.

    A run is keyed by its topic: while ``current_run_topic`` holds a topic, submitting
    that topic again is a no-op. The guard stays set after the run finishes; use
    :meth:`reset` or :meth:`retry` to start over.
    """

    def __init__(
        self,
        *,
        transport: StageTransport | None = None,
        book_saver: BookSaver | None = None,
        persist: bool = True,
        batch_size: int | None = None,
        image_pacing_seconds: float | None = None,
        save_grace_seconds: float | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = settings or get_settings()
        self._transport = transport or LocalStageTransport(settings=settings)
        self._book_saver = book_saver
        self._persist = persist
        self._batch_size = batch_size or settings.prompt_batch_size
        self._image_pacing_seconds = (
            settings.image_pacing_seconds if image_pacing_seconds is None else image_pacing_seconds
        )
        self._save_grace_seconds = (
            settings.save_grace_seconds if save_grace_seconds is None else save_grace_seconds
        )
        self._settings = settings
        self._sleep = sleep
        self._current_run_topic: str | None = None
        self._run: ComicRun | None = None

    @property
    def current_run_topic(self) -> str | None:
        return self._current_run_topic

    @property
    def current_run(self) -> ComicRun | None:
        return self._run

    def reset(self) -> None:
        """Clear the run guard so any topic, including the last one, can run again."""
        self._current_run_topic = None

    def retry(
        self,
        *,
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ComicRun | None:
        """Restart the last run from its topic."""
        if self._run is None:
            raise ValueError("There is no previous run to retry.")
        topic = self._run.topic
        self.reset()
        return self.run(topic, progress_callback=progress_callback, cancel_event=cancel_event)

    def run(
        self,
        topic: str,
        *,
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ComicRun | None:
        """
        Execute the whole pipeline for ``topic``.

        Returns ``None`` without doing anything when ``topic`` is already the current run.
        Story and prompt failures end the run in ``failed``; image failures never do.
        """
        topic = validate_topic(topic)
        if self._current_run_topic == topic:
            logger.info("Ignoring duplicate submission for topic %r", topic)
            return None
        self._current_run_topic = topic

        run = ComicRun(topic=topic)
        self._run = run

        try:
            self._run_story(run, progress_callback)
            if self._cancelled(cancel_event, run):
                return run
            self._run_prompts(run, progress_callback, cancel_event)
            if self._cancelled(cancel_event, run):
                return run
            self._maybe_start_images(run, progress_callback, cancel_event)
            if self._cancelled(cancel_event, run):
                return run
            self._maybe_save(run, progress_callback)
        except ComicBookError as exc:
            self._fail(run, str(exc), progress_callback)
        return run

    # Story stage

    def _run_story(self, run: ComicRun, progress_callback: ProgressCallback | None) -> None:
        self._transition(run, RunState.STORY_IN_PROGRESS, progress_callback)
        completed = False
        for event in self._transport.stream_story(run.topic):
            event_type = event.get("type")
            if event_type == events.STATUS:
                run.status_message = str(event.get("message", ""))
                self._notify(progress_callback, "story:status", message=run.status_message)
            elif event_type == events.STORY_SUMMARY:
                run.title = event.get("chapter_name") or run.title
                run.summary = event.get("summary") or run.summary
                self._notify(progress_callback, "story:summary", title=run.title, summary=run.summary)
            elif event_type == events.STORY_PART:
                try:
                    part = StoryPart.from_mapping(event)
                except ValueError as exc:
                    raise _StageFailed(str(exc)) from exc
                run.parts.append(part)
                self._notify(progress_callback, "story:part", **part.as_dict())
            elif event_type == events.ERROR:
                raise _StageFailed(str(event.get("message") or "Unknown streaming error from server"))
            elif event_type == events.DONE:
                completed = True
                break

        if not completed:
            raise IncompleteStreamError("Story stream ended before completion.")
        if not run.parts:
            raise IncompleteStreamError("Story stream completed without any story parts.")

        run.parts.sort(key=lambda part: part.part_number)
        run.story_text = reconstruct_story(run.parts)
        self._transition(run, RunState.STORY_COMPLETE, progress_callback)

    # Prompt stage

    def _run_prompts(
        self,
        run: ComicRun,
        progress_callback: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> None:
        self._transition(run, RunState.PROMPTS_IN_PROGRESS, progress_callback)
        windows = chunk_parts(run.parts, self._batch_size)
        for window_index, window in enumerate(windows, start=1):
            if cancel_event is not None and cancel_event.is_set():
                return
            self._notify(
                progress_callback,
                "prompts:window",
                window=window_index,
                total_windows=len(windows),
                part_numbers=[part.part_number for part in window],
            )
            prompts = self._collect_window(window, progress_callback)
            run.prompts.extend(prompts)
            self._notify(
                progress_callback,
                "prompts:chunk",
                window=window_index,
                total_windows=len(windows),
                received=len(prompts),
                total_prompts=len(run.prompts),
            )
        self._transition(run, RunState.PROMPTS_COMPLETE, progress_callback)

    def _collect_window(
        self, window: Sequence[StoryPart], progress_callback: ProgressCallback | None
    ) -> list[ImagePrompt]:
        received: list[ImagePrompt] = []
        completed = False
        for event in self._transport.stream_prompts(window):
            event_type = event.get("type")
            if event_type == events.STATUS:
                self._notify(progress_callback, "prompts:status", message=event.get("message", ""))
            elif event_type == events.IMAGE_PROMPTS_CHUNK:
                received.extend(ImagePrompt.from_mapping(item) for item in event.get("prompts") or [])
            elif event_type == events.IMAGE_PROMPT_ITEM:
                received.append(ImagePrompt.from_mapping(event.get("item") or {}))
            elif event_type == events.ERROR:
                raise _StageFailed(str(event.get("message") or "Unknown streaming error from server"))
            elif event_type == events.DONE:
                completed = True
                break

        if not completed:
            raise IncompleteStreamError("Image prompt stream ended before completion.")
        if len(received) != len(window):
            raise GenerationCountMismatchError(expected=len(window), received=len(received))

        by_id = {prompt.id: prompt for prompt in received}
        expected_ids = [part.part_number for part in window]
        if set(by_id) != set(expected_ids):
            raise _StageFailed(
                f"Image prompt ids {sorted(by_id)} do not match story part numbers {expected_ids}."
            )
        return [by_id[number] for number in expected_ids]

    # Image stage

    def _maybe_start_images(
        self,
        run: ComicRun,
        progress_callback: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> None:
        if run.state is not RunState.PROMPTS_COMPLETE or not run.prompts or run.images_triggered:
            return
        run.images_triggered = True
        self._transition(run, RunState.IMAGES_IN_PROGRESS, progress_callback)

        stage = ImageStage(
            self._transport.render_image,
            pacing_seconds=self._image_pacing_seconds,
            sleep=self._sleep,
        )
        stage.run(
            run.prompts,
            progress_callback=progress_callback,
            on_image=run.images.append,
            cancel_event=cancel_event,
        )
        if cancel_event is not None and cancel_event.is_set():
            return
        logger.info(
            "Image generation complete: %s images, %s placeholders",
            len(run.images),
            run.placeholder_count,
        )
        self._transition(run, RunState.IMAGES_COMPLETE, progress_callback)

    # Persistence

    def _maybe_save(self, run: ComicRun, progress_callback: ProgressCallback | None) -> None:
        if (
            not self._persist
            or run.state is not RunState.IMAGES_COMPLETE
            or not run.images
            or not run.story_text
            or run.save_triggered
        ):
            return
        run.save_triggered = True
        if self._save_grace_seconds:
            self._sleep(self._save_grace_seconds)
        self._transition(run, RunState.SAVING, progress_callback)

        if self._book_saver is None:
            self._book_saver = SupabaseBookGateway(settings=self._settings)
        result = self._book_saver.save_complete_book(
            run.book_title,
            run.story_text,
            run.images,
            100,
            BookStatus.COMPLETED,
        )
        run.failed_uploads = list(result.failed_uploads)
        if result.book_id is None:
            message = str(result.error) if result.error else "Failed to save book"
            self._fail(run, message, progress_callback)
            return

        run.book_id = result.book_id
        self._notify(progress_callback, "save:done", book_id=run.book_id)
        self._transition(run, RunState.SAVED, progress_callback)

    # Helpers

    def _transition(
        self, run: ComicRun, state: RunState, progress_callback: ProgressCallback | None
    ) -> None:
        logger.debug("Run %r: %s -> %s", run.topic, run.state.value, state.value)
        run.state = state
        self._notify(progress_callback, "run:state", state=state.value)

    def _fail(self, run: ComicRun, message: str, progress_callback: ProgressCallback | None) -> None:
        logger.error("Run %r failed during %s: %s", run.topic, run.state.value, message)
        run.error = message
        self._transition(run, RunState.FAILED, progress_callback)
        self._notify(progress_callback, "run:failed", error=message)

    @staticmethod
    def _cancelled(cancel_event: threading.Event | None, run: ComicRun) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Run %r abandoned in state %s", run.topic, run.state.value)
            return True
        return False

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)
