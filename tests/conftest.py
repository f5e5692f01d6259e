"""
Pytest Configuration and Fixtures

Shared fakes for the LLM, image, and Supabase boundaries.
"""

import json
from io import BytesIO
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
from PIL import Image

from comicbook.ai_generation import RenderedImage
from comicbook.common import ChatResult, Settings, TransientServiceError
from comicbook.persistence import SupabaseBookGateway
from comicbook.pipeline import ComicBookOrchestrator, LocalStageTransport
from comicbook.story_generation import ComicStoryGenerator, ImagePromptGenerator, StoryPart


WIFI_STORY: Dict[str, Any] = {
    "overall_chapter_name": "Captain Signal and the Invisible Waves",
    "story_summary": "Captain Signal shows Maya how routers carry data on radio waves.",
    "parts": [
        {
            "part_number": 1,
            "chapter_title": "The Buffering Crisis",
            "story_content": "Maya's video freezes. \"WHY IS IT SO SLOW?\" she cries.",
        },
        {
            "part_number": 2,
            "chapter_title": "Riding the Radio Waves",
            "story_content": "Captain Signal shrinks Maya down to ride a 2.4 GHz wave.",
        },
        {
            "part_number": 3,
            "chapter_title": "Packets Home",
            "story_content": "Packets race back to the laptop. BEEP! The video plays.",
        },
    ],
}


def make_prompt_payload(part: Dict[str, Any]) -> Dict[str, Any]:
    """Image prompt JSON for one story part."""
    number = part["part_number"]
    return {
        "id": number,
        "title": part["chapter_title"],
        "panel_layout_description": f"Layout {number}: three vertical panels.",
        "panels": [
            {
                "panel_number": panel,
                "description": f"Part {number} panel {panel} scene.",
                "dialogue_caption": f"CAPTION {number}.{panel}",
            }
            for panel in (1, 2, 3)
        ],
        "art_style_mood_notes": f"Bold lines for part {number}.",
    }


def parts_from_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Recover the story parts embedded in an image prompt request."""
    user_content = messages[-1]["content"]
    return json.loads(user_content.split("\n\n", 1)[1])


class FakeCompletion:
    """Completion callable returning canned text and recording every call."""

    def __init__(self, *responses: str):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, **kwargs: Any) -> ChatResult:
        self.calls.append(kwargs)
        text = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return ChatResult(text=text, raw=None)


class PromptCompletion:
    """Completion callable answering every batch with one prompt per requested part."""

    def __init__(self, transform=None):
        self.calls: List[Dict[str, Any]] = []
        self.transform = transform

    def __call__(self, **kwargs: Any) -> ChatResult:
        self.calls.append(kwargs)
        prompts = [make_prompt_payload(part) for part in parts_from_messages(kwargs["messages"])]
        if self.transform is not None:
            prompts = self.transform(prompts)
        return ChatResult(text=json.dumps({"image_prompts": prompts}), raw=None)


def png_bytes(color=(0, 128, 255), size=(64, 96)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeImageGenerator:
    """Stand-in for ReplicateImageGenerator; ``failures`` maps call number to an exception."""

    def __init__(self, failures: Dict[int, Exception] = None):
        self.failures = failures or {}
        self.prompts: List[str] = []

    def generate_image(self, prompt: str, **kwargs: Any) -> RenderedImage:
        self.prompts.append(prompt)
        failure = self.failures.get(len(self.prompts))
        if failure is not None:
            raise failure
        return RenderedImage(image_bytes=png_bytes(), source_url=f"https://img.test/{len(self.prompts)}.png")


@pytest.fixture
def settings() -> Settings:
    """Settings with no pacing delays and no external credentials."""
    return Settings(
        llm_api_key="test-key",
        replicate_api_token="test-token",
        story_part_count=3,
        prompt_batch_size=3,
        image_pacing_seconds=0,
        save_grace_seconds=0,
        supabase_url="",
        supabase_key="",
    )


@pytest.fixture
def story_json() -> str:
    return json.dumps(WIFI_STORY)


@pytest.fixture
def story_parts() -> List[StoryPart]:
    return [StoryPart.from_mapping(part) for part in WIFI_STORY["parts"]]


@pytest.fixture
def story_completion(story_json) -> FakeCompletion:
    return FakeCompletion(story_json)


@pytest.fixture
def prompt_completion() -> PromptCompletion:
    return PromptCompletion()


@pytest.fixture
def story_generator(story_completion, settings) -> ComicStoryGenerator:
    return ComicStoryGenerator(completion_fn=story_completion, settings=settings)


@pytest.fixture
def prompt_generator(prompt_completion, settings) -> ImagePromptGenerator:
    return ImagePromptGenerator(completion_fn=prompt_completion, settings=settings)


@pytest.fixture
def image_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture
def transport(story_generator, prompt_generator, image_generator, settings) -> LocalStageTransport:
    return LocalStageTransport(
        story_generator=story_generator,
        prompt_generator=prompt_generator,
        image_generator=image_generator,
        settings=settings,
    )


@pytest.fixture
def supabase_client() -> MagicMock:
    """MagicMock Supabase client whose inserts return a row id."""
    client = MagicMock()
    table = client.table.return_value
    table.insert.return_value.execute.return_value = MagicMock(data=[{"id": "book-123"}])
    table.update.return_value.eq.return_value.execute.return_value = MagicMock(
        data=[{"id": "book-123"}]
    )
    bucket = client.storage.from_.return_value
    bucket.get_public_url.side_effect = lambda path: f"https://storage.test/{path}"
    return client


@pytest.fixture
def gateway(supabase_client, settings) -> SupabaseBookGateway:
    return SupabaseBookGateway(client=supabase_client, settings=settings)


@pytest.fixture
def orchestrator(transport, gateway, settings) -> ComicBookOrchestrator:
    return ComicBookOrchestrator(
        transport=transport,
        book_saver=gateway,
        settings=settings,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def bad_gateway() -> TransientServiceError:
    return TransientServiceError("Replicate returned 502 Bad Gateway", status_code=502)
