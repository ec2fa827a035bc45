"""Luma Dream Machine image-to-video generation: async helper function."""

from __future__ import annotations

import asyncio

import structlog
from lumaai import AsyncLumaAI

from story_studio.config import settings

logger = structlog.get_logger()


async def luma_image_to_video(prompt: str, image_url: str) -> str:
    """Animate a scene image into a short clip and return the clip URL.

    Args:
        prompt: Scene prompt guiding the motion.
        image_url: Hosted URL of the generated scene image (first keyframe).

    Raises:
        RuntimeError: If generation fails, times out, or yields no video URL.
    """
    logger.info("luma_image_to_video.start", prompt_len=len(prompt), image_url=image_url)

    client = AsyncLumaAI(auth_token=settings.luma_api_key)

    generation = await client.generations.create(
        prompt=prompt,
        model=settings.luma_model,
        aspect_ratio=settings.luma_aspect_ratio,
        duration=settings.luma_duration,
        keyframes={"frame0": {"type": "image", "url": image_url}},
    )

    generation_id = generation.id
    elapsed = 0.0

    while elapsed < settings.luma_poll_timeout_sec:
        generation = await client.generations.get(id=generation_id)

        if generation.state == "completed":
            break
        if generation.state == "failed":
            raise RuntimeError(f"Video generation failed: {generation.failure_reason}")

        await asyncio.sleep(settings.luma_poll_interval_sec)
        elapsed += settings.luma_poll_interval_sec
    else:
        raise RuntimeError(
            f"Video generation timed out after {settings.luma_poll_timeout_sec:g}s "
            f"(id={generation_id})"
        )

    video_url = generation.assets.video if generation.assets else None
    if not video_url:
        raise RuntimeError(
            f"Video generation completed but no video URL (id={generation_id})"
        )

    logger.info("luma_image_to_video.done", generation_id=generation_id)
    return video_url
