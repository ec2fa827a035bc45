"""Mapping between ``StoryProject`` and persisted history rows."""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, Field

from story_studio.models.project import (
    Narration,
    Pending,
    StoryProject,
    Success,
    success_value,
)
from story_studio.prompts import clean_prompt


class HistorySummary(BaseModel):
    """Compact listing entry for the history view."""

    id: int
    created_at: str | None = None
    prompt: str = ""
    story_preview: str = ""
    scene_count: int = 0
    final_video_urls: list[str] = Field(default_factory=list)


def parse_array_field(field: Any) -> list[str]:
    """Read an array column that may arrive as a list, JSON text, or a Postgres literal."""
    if isinstance(field, list):
        return [str(item) for item in field]
    if isinstance(field, str):
        try:
            parsed = json.loads(field)
        except ValueError:
            body = re.sub(r"^\{|\}$", "", field.strip())
            if not body:
                return []
            return [
                item.strip().strip('"').replace('\\"', '"')
                for item in body.split(",")
            ]
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
    return []


def _legacy_result(url: str):
    return Success(value=url) if url else Pending()


def to_row(project: StoryProject, user_id: str | None = None) -> dict[str, Any]:
    """Build an insertable row: legacy columns plus the full snapshot."""
    return {
        "user_id": user_id,
        "prompt": project.original_prompt,
        "fullprompt": project.full_prompt,
        "story": project.story,
        "image_prompts": list(project.image_prompts),
        "narration_lines": [n.script for n in project.narrations],
        "generated_audio": [success_value(r) for r in project.audio_results()],
        "generated_images": [success_value(r) for r in project.generated_images],
        "generated_videos": [success_value(r) for r in project.generated_video],
        "final_video_url": list(project.final_video_urls),
        "snapshot": project.snapshot(),
    }


def from_row(row: dict[str, Any]) -> StoryProject:
    """Rebuild a project from a stored row.

    Rows written with a snapshot round-trip exactly. Older rows are
    reconstructed from their array columns; empty URLs become ``Pending``.
    """
    snapshot = row.get("snapshot")
    if isinstance(snapshot, str):
        snapshot = json.loads(snapshot)
    if snapshot:
        project = StoryProject.from_snapshot(snapshot)
        return project.model_copy(
            update={"id": row.get("id"), "created_at": _as_text(row.get("created_at"))}
        )

    scripts = parse_array_field(row.get("narration_lines"))
    audio = parse_array_field(row.get("generated_audio"))
    narrations = [
        Narration(script=script, audio=_legacy_result(audio[i] if i < len(audio) else ""))
        for i, script in enumerate(scripts)
    ]
    final_urls = parse_array_field(row.get("final_video_url"))
    full_prompt = row.get("fullprompt") or ""

    return StoryProject(
        id=row.get("id"),
        created_at=_as_text(row.get("created_at")),
        original_prompt=row.get("prompt") or clean_prompt(full_prompt),
        full_prompt=full_prompt,
        story=row.get("story") or "",
        image_prompts=parse_array_field(row.get("image_prompts")),
        narrations=narrations,
        generated_images=[_legacy_result(u) for u in parse_array_field(row.get("generated_images"))],
        generated_video=[_legacy_result(u) for u in parse_array_field(row.get("generated_videos"))],
        merged_video_url=final_urls[-1] if final_urls else None,
        final_video_urls=final_urls,
    )


def to_summary(project: StoryProject) -> HistorySummary:
    return HistorySummary(
        id=project.id or 0,
        created_at=project.created_at,
        prompt=project.original_prompt or clean_prompt(project.full_prompt),
        story_preview=project.story[:160],
        scene_count=len(project.image_prompts),
        final_video_urls=list(project.final_video_urls),
    )


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)
