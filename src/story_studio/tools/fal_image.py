"""fal.ai FLUX image generation: async helper function."""

from __future__ import annotations

import fal_client
import structlog

from story_studio.config import settings

logger = structlog.get_logger()


async def fal_generate_image(
    prompt: str,
    image_size: str | None = None,
    num_inference_steps: int | None = None,
    num_images: int = 1,
) -> str:
    """Generate one image for a scene prompt and return its hosted URL.

    Raises:
        RuntimeError: If the response carries no image URL.
    """
    image_size = image_size or settings.image_size
    steps = num_inference_steps or settings.num_inference_steps

    logger.info(
        "fal_generate_image.start",
        prompt_len=len(prompt),
        image_size=image_size,
        steps=steps,
    )

    client = fal_client.AsyncClient(key=settings.fal_key or None)
    result = await client.subscribe(
        settings.fal_image_model,
        arguments={
            "prompt": prompt,
            "image_size": image_size,
            "num_inference_steps": steps,
            "num_images": num_images,
            "enable_safety_checker": True,
        },
    )

    images = (result or {}).get("images") or []
    image_url = images[0].get("url") if images else None
    if not image_url:
        raise RuntimeError("fal.ai returned no image URL")

    logger.info("fal_generate_image.done", image_url=image_url)
    return image_url
