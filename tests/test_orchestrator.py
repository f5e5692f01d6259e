"""
Tests for ComicBookOrchestrator and the story text helpers.
"""

import base64
import json
import threading

import pytest
import yaml

from comicbook.pipeline import events
from comicbook.pipeline import (
    ComicBookOrchestrator,
    LocalStageTransport,
    RunState,
    chunk_parts,
    parse_story_text,
    reconstruct_story,
)
from comicbook.story_generation import ComicStoryGenerator, ImagePromptGenerator, StoryPart

from tests.conftest import (
    WIFI_STORY,
    FakeCompletion,
    FakeImageGenerator,
    PromptCompletion,
    make_prompt_payload,
)


class StubTransport:
    """Transport replaying fixed event lists."""

    def __init__(self, story_events, prompt_events=None, image_generator=None):
        self.story_events = story_events
        self.prompt_events = prompt_events or []
        self.image_generator = image_generator or FakeImageGenerator()
        self.story_calls = 0

    def stream_story(self, topic):
        self.story_calls += 1
        return iter(self.story_events)

    def stream_prompts(self, parts):
        return iter(self.prompt_events)

    def render_image(self, prompt, *, filename=None):
        rendered = self.image_generator.generate_image(prompt)
        return {"imageBase64": base64.b64encode(rendered.image_bytes).decode("ascii")}


def story_events():
    replay = [events.story_summary_event("Title", "Summary")]
    replay += [dict(part, type="story_part") for part in WIFI_STORY["parts"]]
    replay.append(events.done_event(part_count=3))
    return replay


class TestStoryText:
    """Tests for reconstruct_story and parse_story_text."""

    def test_round_trip(self, story_parts):
        text = reconstruct_story(story_parts)

        assert text.startswith("Part 1: The Buffering Crisis\n")
        assert "\n\nPart 2: Riding the Radio Waves\n" in text
        assert parse_story_text(text) == story_parts

    def test_order_follows_part_number(self, story_parts):
        text = reconstruct_story(list(reversed(story_parts)))
        assert [part.part_number for part in parse_story_text(text)] == [1, 2, 3]

    def test_parse_ignores_mid_line_headers(self):
        text = "Part 1: Start\nShe said Part 2: not a header.\n\nPart 2: End\nDone."
        parts = parse_story_text(text)

        assert [part.part_number for part in parts] == [1, 2]
        assert parts[0].story_content == "She said Part 2: not a header."

    def test_parse_empty(self):
        assert parse_story_text("") == []


class TestChunkParts:
    """Tests for chunk_parts."""

    def test_windows(self):
        parts = [StoryPart(n, f"T{n}", f"C{n}") for n in (5, 1, 2, 4, 3)]
        windows = chunk_parts(parts, 3)

        assert [[p.part_number for p in window] for window in windows] == [[1, 2, 3], [4, 5]]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk_parts([], 0)


class TestComicBookOrchestrator:
    """Tests for full pipeline runs."""

    def test_end_to_end(self, orchestrator, supabase_client, image_generator):
        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.SAVED
        assert len(run.parts) == 3
        assert [prompt.id for prompt in run.prompts] == [1, 2, 3]
        assert [image.id for image in run.images] == [1, 2, 3]
        assert run.book_id == "book-123"
        assert run.title == WIFI_STORY["overall_chapter_name"]
        assert len(image_generator.prompts) == 3

        update = supabase_client.table.return_value.update.call_args[0][0]
        assert [entry["order"] for entry in update["images"]] == [1, 2, 3]

    def test_persisted_story_matches_streamed_parts(self, orchestrator, supabase_client):
        run = orchestrator.run("How WiFi Works")

        book_row = supabase_client.table.return_value.insert.call_args_list[0][0][0]
        assert book_row["title"] == WIFI_STORY["overall_chapter_name"]
        assert book_row["status"] == "completed"
        assert book_row["book_progress"] == 100
        assert parse_story_text(book_row["story_content"]) == run.parts

    def test_placeholder_on_bad_gateway_still_saves(
        self, story_generator, prompt_generator, gateway, settings, bad_gateway
    ):
        transport = LocalStageTransport(
            story_generator=story_generator,
            prompt_generator=prompt_generator,
            image_generator=FakeImageGenerator(failures={2: bad_gateway}),
            settings=settings,
        )
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.SAVED
        assert [image.is_placeholder for image in run.images] == [False, True, False]
        assert run.placeholder_count == 1

    def test_duplicate_submission_during_run_is_ignored(self, orchestrator, story_completion):
        nested = []

        def callback(stage, payload):
            if stage == "story:part":
                nested.append(orchestrator.run("How WiFi Works"))

        run = orchestrator.run("How WiFi Works", progress_callback=callback)

        assert run.state is RunState.SAVED
        assert nested == [None, None, None]
        assert len(story_completion.calls) == 1

    def test_same_topic_after_run_needs_reset(self, orchestrator, story_completion):
        orchestrator.run("How WiFi Works")

        assert orchestrator.run("How WiFi Works") is None
        assert orchestrator.current_run_topic == "How WiFi Works"

        orchestrator.reset()
        assert orchestrator.run("How WiFi Works").state is RunState.SAVED
        assert len(story_completion.calls) == 2

    def test_retry(self, orchestrator, story_completion):
        orchestrator.run("How WiFi Works")
        run = orchestrator.retry()

        assert run.state is RunState.SAVED
        assert len(story_completion.calls) == 2

    def test_retry_without_run(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.retry()

    def test_blank_topic(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.run("   ")
        assert orchestrator.current_run_topic is None

    def test_malformed_story_fails_run(self, prompt_generator, image_generator, gateway, settings):
        story_generator = ComicStoryGenerator(
            completion_fn=FakeCompletion("not json at all"), settings=settings
        )
        prompt_completion = PromptCompletion()
        transport = LocalStageTransport(
            story_generator=story_generator,
            prompt_generator=ImagePromptGenerator(completion_fn=prompt_completion, settings=settings),
            image_generator=image_generator,
            settings=settings,
        )
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.FAILED
        assert "Failed to parse story JSON response" in run.error
        assert run.parts == []
        assert prompt_completion.calls == []
        assert image_generator.prompts == []

    def test_incomplete_story_stream(self, gateway, settings):
        transport = StubTransport([{"type": "status", "message": "Connecting..."}])
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.FAILED
        assert "ended before completion" in run.error

    def test_prompt_count_mismatch_fails_run(self, gateway, settings):
        prompt_events = [
            {"type": "image_prompts_chunk", "prompts": [make_prompt_payload(WIFI_STORY["parts"][0])]},
            {"type": "done", "prompt_count": 1},
        ]
        transport = StubTransport(story_events(), prompt_events)
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.FAILED
        assert "Expected 3 prompts, got 1" in run.error
        assert run.images == []

    def test_prompt_items_are_accepted(self, settings):
        prompt_events = [
            events.image_prompt_item_event(make_prompt_payload(part))
            for part in reversed(WIFI_STORY["parts"])
        ]
        prompt_events.append(events.done_event())
        orchestrator = ComicBookOrchestrator(
            transport=StubTransport(story_events(), prompt_events),
            persist=False,
            settings=settings,
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.IMAGES_COMPLETE
        assert [prompt.id for prompt in run.prompts] == [1, 2, 3]

    def test_story_error_event_message_is_kept(self, gateway, settings):
        transport = StubTransport([{"type": "error", "message": "Upstream model timed out"}])
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.FAILED
        assert run.error == "Upstream model timed out"

    def test_batches_of_three(self, image_generator, gateway, settings):
        parts = [
            {"part_number": n, "chapter_title": f"Chapter {n}", "story_content": f"Content {n}."}
            for n in range(1, 6)
        ]
        story = dict(WIFI_STORY, parts=parts)
        prompt_completion = PromptCompletion()
        transport = LocalStageTransport(
            story_generator=ComicStoryGenerator(
                completion_fn=FakeCompletion(json.dumps(story)), part_count=5, settings=settings
            ),
            prompt_generator=ImagePromptGenerator(completion_fn=prompt_completion, settings=settings),
            image_generator=image_generator,
            settings=settings,
        )
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How Volcanoes Work")

        assert run.state is RunState.SAVED
        assert len(prompt_completion.calls) == 2
        assert [prompt.id for prompt in run.prompts] == [1, 2, 3, 4, 5]
        assert [image.id for image in run.images] == [1, 2, 3, 4, 5]

    def test_save_failure_fails_run(self, transport, supabase_client, gateway, settings):
        supabase_client.table.return_value.insert.return_value.execute.side_effect = RuntimeError(
            "connection refused"
        )
        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.FAILED
        assert run.book_id is None
        assert "Failed to create book" in run.error
        assert len(run.images) == 3

    def test_grace_period_before_save(self, transport, gateway, settings):
        pauses = []
        orchestrator = ComicBookOrchestrator(
            transport=transport,
            book_saver=gateway,
            settings=settings,
            save_grace_seconds=2.0,
            sleep=pauses.append,
        )

        orchestrator.run("How WiFi Works")

        assert pauses == [2.0]

    def test_no_persist(self, transport, supabase_client, settings):
        orchestrator = ComicBookOrchestrator(transport=transport, persist=False, settings=settings)

        run = orchestrator.run("How WiFi Works")

        assert run.state is RunState.IMAGES_COMPLETE
        supabase_client.table.assert_not_called()

    def test_title_falls_back_to_topic(self, gateway, supabase_client, settings):
        story = story_events()
        story[0] = events.story_summary_event("", "Summary")
        prompt_events = [
            {"type": "image_prompts_chunk", "prompts": [make_prompt_payload(p) for p in WIFI_STORY["parts"]]},
            {"type": "done"},
        ]
        orchestrator = ComicBookOrchestrator(
            transport=StubTransport(story, prompt_events), book_saver=gateway, settings=settings
        )
        topic = "x" * 150

        orchestrator.run(topic)

        book_row = supabase_client.table.return_value.insert.call_args_list[0][0][0]
        assert book_row["title"] == "x" * 100

    def test_cancel_abandons_run(self, transport, image_generator, gateway, settings):
        cancel = threading.Event()

        def callback(stage, payload):
            if stage == "run:state" and payload["state"] == RunState.STORY_COMPLETE.value:
                cancel.set()

        orchestrator = ComicBookOrchestrator(
            transport=transport, book_saver=gateway, settings=settings
        )
        run = orchestrator.run("How WiFi Works", progress_callback=callback, cancel_event=cancel)

        assert run.state is RunState.STORY_COMPLETE
        assert image_generator.prompts == []

    def test_yaml_report(self, orchestrator):
        run = orchestrator.run("How WiFi Works")
        report = yaml.safe_load(run.to_yaml())

        assert report["state"] == "saved"
        assert report["book_id"] == "book-123"
        assert len(report["images"]) == 3
        assert "image_base64" not in report["images"][0]
