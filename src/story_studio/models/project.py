"""Pydantic models for a story project and its per-scene results."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Pending(BaseModel):
    """Slot with no result yet."""

    model_config = ConfigDict(frozen=True)

    status: Literal["pending"] = "pending"


class Success(BaseModel):
    """Slot holding a generated URL (audio, image, video)."""

    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    value: str = Field(min_length=1)


class Failed(BaseModel):
    """Slot whose last call failed, with a user-facing message."""

    model_config = ConfigDict(frozen=True)

    status: Literal["failed"] = "failed"
    message: str


ItemResult = Annotated[Union[Pending, Success, Failed], Field(discriminator="status")]


def is_success(result: Any) -> bool:
    return isinstance(result, Success)


def success_value(result: Any) -> str:
    """Return the URL of a Success slot, or "" for any other state."""
    return result.value if isinstance(result, Success) else ""


class Narration(BaseModel):
    script: str
    audio: ItemResult = Field(default_factory=Pending)


class StoryProject(BaseModel):
    """Root aggregate for one pipeline run.

    ``narrations``, ``generated_images`` and ``generated_video`` are either empty
    or index-aligned with ``image_prompts``.
    """

    id: Optional[int] = None
    created_at: Optional[str] = None

    original_prompt: str = ""
    full_prompt: str = ""
    story: str = ""
    image_prompts: list[str] = Field(default_factory=list)
    narrations: list[Narration] = Field(default_factory=list)
    generated_images: list[ItemResult] = Field(default_factory=list)
    generated_video: list[ItemResult] = Field(default_factory=list)
    merged_video_url: Optional[str] = None
    final_video_urls: list[str] = Field(default_factory=list)

    # stage name -> hash of that stage's inputs when its output was applied
    fingerprints: dict[str, str] = Field(default_factory=dict)

    def snapshot(self) -> dict[str, Any]:
        """Serialize the whole project to a JSON-compatible dict."""
        return self.model_dump(mode="json")

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "StoryProject":
        return cls.model_validate(data)

    def audio_results(self) -> list:
        return [narration.audio for narration in self.narrations]
