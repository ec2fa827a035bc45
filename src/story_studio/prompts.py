"""Prompt templates and response parsing for the text-generation stages."""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Story
# ---------------------------------------------------------------------------

STORY_PROMPT_PREFIX = "Write a small and captivating story based on the following idea: "
STORY_PROMPT_SUFFIX = (
    "Provide the story in a narrative format, ensuring the story and characters are "
    "cinematic and immersive. It should be 1100 characters."
)

STORY_SYSTEM_PROMPT = "You are a creative assistant skilled in generating content."

# ---------------------------------------------------------------------------
# Image prompts
# ---------------------------------------------------------------------------

IMAGE_PROMPTS_SYSTEM_TEMPLATE = """\
You are a master cinematographer and storyboard artist who excels at visual storytelling. \
For each image prompt, maintain meticulous character consistency by specifying key identifying \
features that remain constant throughout the sequence: their physical attributes (age, height, \
build, facial features, hair style/color), distinct clothing elements or accessories, and \
characteristic expressions or mannerisms. Track any changes to the character's appearance \
(like dirt, injuries, or outfit modifications) and carry these changes forward in subsequent \
scenes. Consider these character details alongside consistent lighting conditions, color \
palettes, and environmental details throughout the sequence. Each prompt should provide a clear \
connection to the previous scene's established elements while naturally progressing the visual \
narrative, as if crafting scenes for a high-end film production. Focus on photorealistic \
quality, precise camera angles, and emotional resonance while keeping descriptions under 400 \
characters. Generate exactly {scene_count} image prompts."""

IMAGE_PROMPTS_USER_TEMPLATE = """\
Create a sequence of cinematic image prompts for this story: {story}. Each prompt must be under \
400 characters and capture the scene in photorealistic detail. Include camera angles, lighting, \
character details, and environment specifications. Maintain strict visual consistency between \
prompts, especially in character appearances and lighting conditions. Generate exactly \
{scene_count} prompts that flow like consecutive movie scenes. Provide only the prompts, one per \
line, without numbers or titles."""

# ---------------------------------------------------------------------------
# Narration
# ---------------------------------------------------------------------------

NARRATION_SYSTEM_TEMPLATE = """\
This is a request to create a simple, clear narration script that tells a story while matching \
the scenes shown in each image. The narration should focus on moving the story forward rather \
than describing what we can already see in the visuals. Think of the narration and visuals as \
partners - while the images show the scene, the narration shares the story's heart, the \
characters' feelings, or sets the mood. Generate exactly {scene_count} narration lines and each \
one should not exceed 100-120 characters (approximately 5 seconds of speaking time at natural \
pace). Use everyday language that's easy to understand and speak naturally, as if telling a \
story to a friend. The story should flow easily from one line to the next."""

NARRATION_USER_TEMPLATE = """\
Story: {story}
Prompts:
{prompts}"""


_LIST_MARKER = re.compile(r"^\s*(?:scene\s*\d+\s*[:.)-]|\d+\s*[.):-]|[-*•])\s*", re.IGNORECASE)


def build_full_prompt(prompt: str) -> str:
    """Expand the user's topic into the prompt sent to the story generator."""
    return f"{STORY_PROMPT_PREFIX}{prompt.strip()}. {STORY_PROMPT_SUFFIX}"


def clean_prompt(full_prompt: str) -> str:
    """Recover the user's topic from a stored full prompt (history display)."""
    cleaned = full_prompt
    if cleaned.startswith(STORY_PROMPT_PREFIX):
        cleaned = cleaned[len(STORY_PROMPT_PREFIX):]
    cleaned = cleaned.replace(STORY_PROMPT_SUFFIX, "")
    cleaned = re.sub(r" - \d{2}/\d{2}/\d{4}$", "", cleaned.strip())
    cleaned = cleaned.strip()
    if cleaned.endswith("."):
        cleaned = cleaned[:-1]
    return cleaned.strip()


def parse_prompt_lines(text: str) -> list[str]:
    """Split a newline-delimited model response into clean, non-empty lines.

    Leading list markers ("1.", "2)", "- ", "Scene 3:") are removed.
    """
    lines: list[str] = []
    for raw in text.splitlines():
        line = _LIST_MARKER.sub("", raw).strip().strip('"').strip()
        if line:
            lines.append(line)
    return lines


def format_story(story: str) -> str:
    """Normalise paragraph spacing of a generated story."""
    text = story.strip().replace("\r\n", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    paragraphs = [re.sub(r"[ \t]{2,}", " ", p.strip()) for p in text.split("\n\n")]
    return "\n\n".join(p for p in paragraphs if p)
