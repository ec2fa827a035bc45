"""OpenAI chat helpers for the text stages (story, image prompts, narration)."""

from __future__ import annotations

import structlog
from langchain_openai import ChatOpenAI

from story_studio.config import settings
from story_studio.models.script import NarrationScripts
from story_studio.prompts import (
    IMAGE_PROMPTS_SYSTEM_TEMPLATE,
    IMAGE_PROMPTS_USER_TEMPLATE,
    NARRATION_SYSTEM_TEMPLATE,
    NARRATION_USER_TEMPLATE,
    STORY_SYSTEM_PROMPT,
)

logger = structlog.get_logger()


def _chat_model(temperature: float | None = None) -> ChatOpenAI:
    return ChatOpenAI(
        model=settings.text_model,
        api_key=settings.openai_api_key,
        temperature=settings.text_temperature if temperature is None else temperature,
    )


async def write_story(full_prompt: str) -> str:
    """Generate the narrative text for an expanded story prompt."""
    llm = _chat_model()
    response = await llm.ainvoke([
        {"role": "system", "content": STORY_SYSTEM_PROMPT},
        {"role": "user", "content": full_prompt},
    ])

    story = (response.content or "").strip()
    if not story:
        raise RuntimeError("Text model returned an empty story")

    logger.info("write_story.done", story_len=len(story))
    return story


async def split_image_prompts(story: str, scene_count: int) -> str:
    """Ask for ``scene_count`` scene prompts; returns the raw newline-delimited text."""
    llm = _chat_model()
    response = await llm.ainvoke([
        {
            "role": "system",
            "content": IMAGE_PROMPTS_SYSTEM_TEMPLATE.format(scene_count=scene_count),
        },
        {
            "role": "user",
            "content": IMAGE_PROMPTS_USER_TEMPLATE.format(
                story=story, scene_count=scene_count,
            ),
        },
    ])

    text = (response.content or "").strip()
    logger.info("split_image_prompts.done", scene_count=scene_count, text_len=len(text))
    return text


async def write_narrations(story: str, prompts: list[str]) -> list[str]:
    """Generate one narration line per image prompt."""
    llm = _chat_model().with_structured_output(NarrationScripts)
    result: NarrationScripts = await llm.ainvoke([
        {
            "role": "system",
            "content": NARRATION_SYSTEM_TEMPLATE.format(scene_count=len(prompts)),
        },
        {
            "role": "user",
            "content": NARRATION_USER_TEMPLATE.format(
                story=story, prompts="\n".join(prompts),
            ),
        },
    ])

    scripts = [s.strip() for s in result.scripts]
    logger.info("write_narrations.done", count=len(scripts))
    return scripts
