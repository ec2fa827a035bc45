"""Supabase Storage uploads and story history persistence."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from supabase import create_client

from story_studio.config import settings
from story_studio.errors import UploadError

logger = structlog.get_logger()


def _get_supabase_client():
    """Create a Supabase client using service_role key."""
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def is_configured() -> bool:
    return bool(settings.supabase_url and settings.supabase_service_role_key)


def _public_url(bucket: str, storage_path: str) -> str:
    return f"{settings.supabase_url}/storage/v1/object/public/{bucket}/{storage_path}"


def _upload_bytes_sync(bucket: str, storage_path: str, data: bytes, content_type: str) -> str:
    """Upload a blob to Supabase Storage (sync, runs in thread pool)."""
    client = _get_supabase_client()
    client.storage.from_(bucket).upload(
        storage_path,
        data,
        file_options={"content-type": content_type, "cache-control": "3600", "upsert": "true"},
    )
    logger.info("supabase.upload.success", bucket=bucket, storage_path=storage_path)
    return _public_url(bucket, storage_path)


async def _upload(bucket: str, filename: str, data: bytes, content_type: str) -> str:
    if not is_configured():
        raise UploadError("Storage is not configured")
    try:
        return await asyncio.to_thread(_upload_bytes_sync, bucket, filename, data, content_type)
    except Exception as exc:
        logger.exception("supabase.upload.failed", bucket=bucket, storage_path=filename)
        raise UploadError(f"Failed to upload {filename}: {exc}") from exc


async def upload_audio(data: bytes, scene_index: int) -> str:
    """Store a narration clip in the audio bucket and return its public URL."""
    filename = f"scene_{scene_index}_{int(time.time() * 1000)}.mp3"
    return await _upload(settings.supabase_audio_bucket, filename, data, "audio/mpeg")


async def upload_final_video(data: bytes) -> str:
    """Store an exported video in the video bucket and return its public URL."""
    filename = f"final_video_{int(time.time() * 1000)}.mp4"
    return await _upload(settings.supabase_video_bucket, filename, data, "video/mp4")


def _insert_history_row_sync(row: dict[str, Any]) -> dict[str, Any]:
    """Insert a new history row (sync, runs in thread pool)."""
    client = _get_supabase_client()
    response = client.table(settings.history_table).insert(row).execute()
    if not response.data:
        raise RuntimeError("Supabase returned no row for history insert")
    saved = response.data[0]
    logger.info("supabase.history.inserted", id=saved.get("id"))
    return saved


async def insert_history_row(row: dict[str, Any]) -> dict[str, Any]:
    """Append a history row. Rows are never updated in place."""
    return await asyncio.to_thread(_insert_history_row_sync, row)


def _get_history_row_sync(row_id: int) -> dict | None:
    client = _get_supabase_client()
    response = (
        client.table(settings.history_table)
        .select("*")
        .eq("id", row_id)
        .maybe_single()
        .execute()
    )
    return response.data if response else None


async def get_history_row(row_id: int) -> dict | None:
    return await asyncio.to_thread(_get_history_row_sync, row_id)


def _list_history_rows_sync(user_id: str | None, limit: int) -> list[dict]:
    client = _get_supabase_client()
    query = client.table(settings.history_table).select("*")
    if user_id:
        query = query.eq("user_id", user_id)
    response = query.order("created_at", desc=True).limit(limit).execute()
    return response.data or []


async def list_history_rows(user_id: str | None, limit: int = 20) -> list[dict]:
    return await asyncio.to_thread(_list_history_rows_sync, user_id, limit)


def _fetch_story_length_sync() -> int | None:
    client = _get_supabase_client()
    response = (
        client.table(settings.settings_table)
        .select("value")
        .eq("key", "story_length")
        .maybe_single()
        .execute()
    )
    if not response or not response.data:
        return None
    try:
        length = int(response.data["value"])
    except (KeyError, TypeError, ValueError):
        return None
    return length if length > 0 else None


async def fetch_story_length() -> int:
    """Return the configured scene count, falling back to ``settings.story_length``."""
    if not is_configured():
        return settings.story_length
    try:
        length = await asyncio.to_thread(_fetch_story_length_sync)
    except Exception:
        logger.warning("supabase.story_length.fetch_failed", exc_info=True)
        return settings.story_length
    return length or settings.story_length
