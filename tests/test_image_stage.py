"""
Tests for sequential image rendering with placeholder fallback.
"""

import threading
from io import BytesIO

import pytest
from PIL import Image

from comicbook.ai_generation import PLACEHOLDER_SIZE
from comicbook.common import RemoteServiceError
from comicbook.pipeline import ImageStage, LocalStageTransport, render_comic_image
from comicbook.story_generation import ImagePrompt

from tests.conftest import FakeImageGenerator, make_prompt_payload


@pytest.fixture
def prompts(story_parts):
    return [ImagePrompt.from_mapping(make_prompt_payload(part.as_dict())) for part in story_parts]


def stage_for(image_generator, settings, **kwargs):
    transport = LocalStageTransport(image_generator=image_generator, settings=settings)
    return ImageStage(transport.render_image, **kwargs)


class TestImageStage:
    """Tests for ImageStage."""

    def test_one_image_per_prompt_in_order(self, prompts, image_generator, settings):
        images = stage_for(image_generator, settings).run(prompts)

        assert [image.id for image in images] == [1, 2, 3]
        assert not any(image.is_placeholder for image in images)
        assert images[0].source_url == "https://img.test/1.png"
        assert len(image_generator.prompts) == 3

    def test_bad_gateway_becomes_placeholder(self, prompts, settings, bad_gateway):
        generator = FakeImageGenerator(failures={2: bad_gateway})

        images = stage_for(generator, settings).run(prompts)

        assert [image.id for image in images] == [1, 2, 3]
        assert [image.is_placeholder for image in images] == [False, True, False]
        placeholder = Image.open(BytesIO(images[1].image_bytes))
        assert placeholder.size == PLACEHOLDER_SIZE

    def test_every_failure_kind_is_absorbed(self, prompts, settings):
        generator = FakeImageGenerator(failures={
            1: RemoteServiceError("model exploded", status_code=500),
            2: RuntimeError("unexpected"),
            3: RemoteServiceError("Image model returned no output."),
        })

        images = stage_for(generator, settings).run(prompts)

        assert len(images) == 3
        assert all(image.is_placeholder for image in images)
        assert images[0].prompt == generator.prompts[0]

    def test_pacing_only_after_real_images(self, prompts, settings, bad_gateway):
        pauses = []
        generator = FakeImageGenerator(failures={2: bad_gateway})

        stage_for(generator, settings, pacing_seconds=0.8, sleep=pauses.append).run(prompts)

        assert pauses == [0.8, 0.8]

    def test_progress_and_callbacks(self, prompts, image_generator, settings):
        seen = []
        collected = []

        stage_for(image_generator, settings).run(
            prompts,
            progress_callback=lambda stage, payload: seen.append((stage, payload.get("index"))),
            on_image=collected.append,
        )

        assert seen[:2] == [("image:processing", 1), ("image:done", 1)]
        assert [image.id for image in collected] == [1, 2, 3]

    def test_cancel_stops_before_next_image(self, prompts, image_generator, settings):
        cancel = threading.Event()

        def on_image(image):
            cancel.set()

        images = stage_for(image_generator, settings).run(
            prompts, on_image=on_image, cancel_event=cancel
        )

        assert len(images) == 1
        assert len(image_generator.prompts) == 1


class TestRenderComicImage:
    """Tests for the per-image service."""

    def test_payload(self, image_generator):
        result = render_comic_image("A robot waves", image_generator)

        assert result["imageBase64"]
        assert result["imageUrl"] == "https://img.test/1.png"
        assert result["savedFilePath"] is None
        assert result["prompt"] == "A robot waves"

    def test_save_to_file(self, image_generator, tmp_path):
        output_dir = tmp_path / "generated-images"

        result = render_comic_image(
            "A robot waves",
            image_generator,
            save_to_file=True,
            filename="comic image 1.png",
            output_dir=output_dir,
        )

        assert result["savedFilePath"] == "/generated-images/comic-image-1.png"
        assert (output_dir / "comic-image-1.png").read_bytes().startswith(b"\x89PNG")

    def test_blank_prompt(self, image_generator):
        with pytest.raises(ValueError):
            render_comic_image("  ", image_generator)
