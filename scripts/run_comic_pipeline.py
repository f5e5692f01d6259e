"""
CLI to run the complete ComicBookAI pipeline end-to-end.

Usage:
    python scripts/run_comic_pipeline.py \
        --topic "How WiFi Works" \
        --output comicbook_run.yaml
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from comicbook.common import get_settings
from comicbook.common.logging import setup_logging
from comicbook.pipeline import (
    ComicBookOrchestrator,
    HttpStageTransport,
    LocalStageTransport,
    RunState,
)


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates for the ComicBookAI pipeline.
    """

    def __init__(self) -> None:
        self._image_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "run:state":
                state = payload.get("state")
                if state == RunState.STORY_IN_PROGRESS.value:
                    self._write("[1/4] Writing the story...")
                elif state == RunState.PROMPTS_IN_PROGRESS.value:
                    self._write("[2/4] Designing comic panels...")
                elif state == RunState.SAVING.value:
                    self._write("[4/4] Saving the comic book...")
            case "story:summary":
                self._write(f"[1/4] {payload.get('title') or 'Untitled'}: {payload.get('summary') or ''}")
            case "story:part":
                self._write(f"      Part {payload.get('part_number')}: {payload.get('chapter_title')}")
            case "prompts:chunk":
                self._write(
                    f"[2/4] Batch {payload.get('window')}/{payload.get('total_windows')} ready "
                    f"({payload.get('total_prompts')} prompts so far)."
                )
            case "image:processing":
                if self._image_bar is None:
                    total = payload.get("total", 0)
                    self._write(f"[3/4] Rendering {total} comic pages...")
                    self._image_bar = tqdm(total=total, desc="Comic pages", unit="image")
                title = payload.get("title") or ""
                truncated = (title[:45] + "…") if len(title) > 45 else title
                self._image_bar.set_description(f"Image {payload.get('index')}: {truncated}")
            case "image:done":
                if self._image_bar is not None:
                    self._image_bar.update(1)
                    if payload.get("placeholder"):
                        self._write(f"      {payload.get('message')}")
                    if payload.get("index") == payload.get("total"):
                        self.close()
            case "save:done":
                self._write(f"[4/4] Saved book {payload.get('book_id')}.")
            case "run:failed":
                self.close()
                self._write(f"Pipeline failed: {payload.get('error')}")

    def close(self) -> None:
        if self._image_bar is not None:
            self._image_bar.close()
            self._image_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full ComicBookAI generation pipeline.")
    parser.add_argument(
        "--topic",
        required=True,
        help="STEM topic to turn into a comic book.",
    )
    parser.add_argument(
        "--output",
        default="comicbook_run.yaml",
        help="Output YAML file to store the story, image prompts, and run outcome.",
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="Base URL of a running ComicBookAI API. Stages run in-process when omitted.",
    )
    parser.add_argument(
        "--no-save",
        dest="persist",
        action="store_false",
        default=True,
        help="Skip saving the finished book to Supabase.",
    )
    parser.add_argument(
        "--save-images",
        action="store_true",
        default=False,
        help="Also write each rendered image to the generated images directory.",
    )
    parser.add_argument(
        "--include-images",
        action="store_true",
        default=False,
        help="Embed base64 image data in the YAML output.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level)

    if args.api_url:
        transport = HttpStageTransport(args.api_url, save_to_file=args.save_images)
    else:
        transport = LocalStageTransport(save_to_file=args.save_images, settings=settings)

    orchestrator = ComicBookOrchestrator(
        transport=transport,
        persist=args.persist,
        settings=settings,
    )
    tracker = ProgressTracker()

    try:
        run = orchestrator.run(args.topic, progress_callback=tracker)
    finally:
        tracker.close()

    if run is None:
        return 1

    output_path = Path(args.output)
    output_path.write_text(run.to_yaml(include_images=args.include_images), encoding="utf-8")
    print(f"Saved run report to {output_path}")
    if run.placeholder_count:
        print(f"{run.placeholder_count} image(s) were replaced with placeholders.")
    return 1 if run.state is RunState.FAILED else 0


if __name__ == "__main__":
    raise SystemExit(main())
