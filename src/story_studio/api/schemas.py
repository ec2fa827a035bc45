"""Request/Response schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from story_studio.models.history import HistorySummary
from story_studio.models.project import StoryProject

# ---------------------------------------------------------------------------
# Stateless generation endpoints
# ---------------------------------------------------------------------------


class StoryRequest(BaseModel):
    prompt: str
    story: Optional[str] = None
    type: Literal["story", "imagePrompts"] = "story"


class StoryResponse(BaseModel):
    result: str


class NarrationRequest(BaseModel):
    story: str
    prompts: list[str]


class NarrationResponse(BaseModel):
    scripts: list[str]


class AudioRequest(BaseModel):
    text: str
    story: Optional[str] = None
    index: int = 0


class AudioResponse(BaseModel):
    audioUrl: str


class ImageRequest(BaseModel):
    prompt: str
    image_size: Optional[str] = None
    num_inference_steps: Optional[int] = None
    num_images: int = 1
    story: Optional[str] = None


class ImageResponse(BaseModel):
    imageUrl: str


class ImageToVideoRequest(BaseModel):
    prompt: str
    imageUrl: str
    story: Optional[str] = None


class ImageToVideoResponse(BaseModel):
    videoUrl: Optional[str] = None
    message: Optional[str] = None


class UploadVideoResponse(BaseModel):
    videoUrl: str


# ---------------------------------------------------------------------------
# Project sessions
# ---------------------------------------------------------------------------


class ProjectCreateRequest(BaseModel):
    user_id: Optional[str] = None
    history_id: Optional[int] = Field(default=None, description="Open a saved project")


class ProjectResponse(BaseModel):
    project_id: str
    state: str
    project: StoryProject
    can_advance: dict[str, bool]
    stale_stages: list[str] = Field(default_factory=list)
    export_status: str = "idle"
    export_progress: float = 0.0
    export_error: Optional[str] = None


class StoryStageRequest(BaseModel):
    prompt: str


class AudioStageRequest(BaseModel):
    sequential: bool = True


class ItemRetryRequest(BaseModel):
    force: bool = False


class ItemResultResponse(BaseModel):
    project_id: str
    stage: str
    index: int
    result: dict[str, Any]


class CancelResponse(BaseModel):
    project_id: str
    stage: str
    index: int
    cancelled: bool


class StoryEditRequest(BaseModel):
    story: str


class ImagePromptEditRequest(BaseModel):
    prompt: str


class NarrationEditRequest(BaseModel):
    script: str


class ExportResponse(BaseModel):
    project_id: str
    download_url: str
    uploaded_url: Optional[str] = None
    upload_error: Optional[str] = None
    merged_video_url: Optional[str] = None


class ExportStartResponse(BaseModel):
    project_id: str
    status: str = "queued"


class AutorunRequest(BaseModel):
    prompt: Optional[str] = None


class AutorunResponse(BaseModel):
    project_id: str
    run_id: str
    start_stage: str
    status: str = "started"


class AutorunStatusResponse(BaseModel):
    run_id: str
    status: str  # "running" | "completed" | "stopped" | "failed"
    completed: list[str] = Field(default_factory=list)
    last_stage: Optional[str] = None
    failed_items: list[int] = Field(default_factory=list)
    error: Optional[str] = None


class HistoryListResponse(BaseModel):
    items: list[HistorySummary]
