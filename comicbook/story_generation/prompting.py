"""
Prompt construction utilities for the ComicBookAI story generation workflow.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

DEFAULT_PART_SENTENCES = "4-6"


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the chat model.
    """

    system: str
    user: str


def _example_parts(part_count: int) -> list[dict[str, object]]:
    examples: list[dict[str, object]] = []
    for number in range(1, part_count + 1):
        if number == 1:
            beat = "introducing the heroes and the concept"
        elif number == part_count:
            beat = "providing complete resolution and final understanding"
        else:
            beat = "advancing the adventure and deepening the explanation"
        examples.append(
            {
                "part_number": number,
                "chapter_title": f"Title for Part {number}",
                "story_content": f"Story content for Part {number} {beat}",
            }
        )
    return examples


def build_story_prompt(topic: str, *, part_count: int) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a structured comic story from the LLM.
    """
    if not topic or not topic.strip():
        raise ValueError("topic must be a non-empty string.")
    if part_count < 1:
        raise ValueError("part_count must be at least 1.")

    example = {
        "overall_chapter_name": "A catchy title for the entire comic adventure",
        "story_summary": "A 3-4 line summary of the adventure that does not spoil every detail",
        "parts": _example_parts(part_count),
    }

    system_prompt = f"""You are Comic GPT, a storytelling engine that turns any STEM concept into an exciting, easy-to-follow, {part_count}-part comic-book adventure.
You always answer with a single JSON object and nothing else.

The JSON object must have exactly this structure, with exactly {part_count} entries in "parts":

{json.dumps(example, indent=2)}

Story directives:
- Each part has {DEFAULT_PART_SENTENCES} sentences with comic-book flair.
- Use onomatopoeia (BAM!, WHOOSH!) and vivid action verbs.
- Personify the STEM concepts as characters (for example "Captain Circuit" for electricity).
- Build understanding step by step and link back to earlier parts.
- Embed clear definitions, analogies, or examples that teach the core principles.
- End every part except the last with a cliffhanger or transition; the last part resolves the story.
- Keep the tone fun and accessible, explaining technical terms through the action.
- Each chapter_title hints at the adventure inside that part.
- Number the parts from 1 to {part_count} in order.

Output valid JSON only, with no text before or after the object."""

    user_prompt = f"STEM Topic: {topic.strip()}"

    return StoryPrompt(system=system_prompt, user=user_prompt)
