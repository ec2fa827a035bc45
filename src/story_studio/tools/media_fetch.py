"""Remote media download helper."""

from __future__ import annotations

import httpx
import structlog

logger = structlog.get_logger()


async def fetch_bytes(url: str, timeout: float = 60) -> bytes:
    """Download *url* and return its body.

    Raises:
        RuntimeError: If the response body is empty.
        httpx.HTTPStatusError: On a non-2xx response.
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as http:
        resp = await http.get(url)
        resp.raise_for_status()

    if not resp.content:
        raise RuntimeError(f"Empty response body from {url}")

    logger.info("fetch_bytes.done", url=url, bytes_read=len(resp.content))
    return resp.content
