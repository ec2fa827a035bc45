"""FastAPI route handlers for the story studio API."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Awaitable, Callable, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from story_studio.api.dependencies import (
    get_compiled_graph,
    get_history_store,
    get_registry,
    get_services,
)
from story_studio.api.schemas import (
    AudioRequest,
    AudioResponse,
    AudioStageRequest,
    AutorunRequest,
    AutorunResponse,
    AutorunStatusResponse,
    CancelResponse,
    ExportResponse,
    ExportStartResponse,
    HistoryListResponse,
    ImagePromptEditRequest,
    ImageRequest,
    ImageResponse,
    ImageToVideoRequest,
    ImageToVideoResponse,
    ItemResultResponse,
    ItemRetryRequest,
    NarrationEditRequest,
    NarrationRequest,
    NarrationResponse,
    ProjectCreateRequest,
    ProjectResponse,
    StoryEditRequest,
    StoryRequest,
    StoryResponse,
    StoryStageRequest,
    UploadVideoResponse,
)
from story_studio.errors import ExportError, NotFoundError, StageError, StudioError, UploadError
from story_studio.graph.builder import initial_state
from story_studio.memory.history_store import HistoryStore
from story_studio.memory.project_registry import ProjectRegistry
from story_studio.models.history import to_summary
from story_studio.models.project import StoryProject
from story_studio.pipeline.stages import STAGE_ORDER, Stage
from story_studio.pipeline.studio import StoryStudio, StudioServices
from story_studio.prompts import build_full_prompt, format_story
from story_studio.tools import supabase_storage

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1")

_ITEM_STAGES = {"audio": Stage.AUDIO, "images": Stage.IMAGES, "video": Stage.VIDEO}

_EXPORT_POLL_SEC = 0.5


def get_video_uploader() -> Callable[[bytes], Awaitable[str]]:
    return supabase_storage.upload_final_video


def _to_http(exc: StudioError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, StageError):
        return HTTPException(status_code=502 if exc.upstream else 400, detail=exc.message)
    if isinstance(exc, UploadError):
        return HTTPException(status_code=502, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


def _project_response(studio: StoryStudio) -> ProjectResponse:
    return ProjectResponse(
        project_id=studio.project_id,
        state=studio.sequencer.current_state(),
        project=studio.project,
        can_advance={s.value: studio.sequencer.can_advance(s) for s in STAGE_ORDER},
        stale_stages=[s.value for s in studio.stale_stages()],
        export_status=studio.export_status,
        export_progress=studio.export_progress,
        export_error=studio.export_error,
    )


def _get_studio(project_id: str, registry: ProjectRegistry) -> StoryStudio:
    try:
        return registry.get(project_id)
    except NotFoundError as exc:
        raise _to_http(exc)


def _item_stage(stage: str) -> Stage:
    if stage not in _ITEM_STAGES:
        raise HTTPException(status_code=404, detail=f"Unknown per-item stage: {stage}")
    return _ITEM_STAGES[stage]


# ---------------------------------------------------------------------------
# Stateless generation endpoints
# ---------------------------------------------------------------------------


@router.post("/story-generator", response_model=StoryResponse)
async def story_generator(
    request: StoryRequest, services: StudioServices = Depends(get_services)
):
    """Generate a story, or split a story into newline-delimited image prompts."""
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    try:
        if request.type == "imagePrompts":
            if not request.story:
                raise HTTPException(status_code=400, detail="Story is required for image prompts")
            scene_count = await services.scene_count()
            result = await services.split_image_prompts(request.story, scene_count)
        else:
            result = format_story(await services.write_story(build_full_prompt(request.prompt)))
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("story_generator.failed", type=request.type)
        raise HTTPException(status_code=502, detail=f"Failed to generate {request.type}: {exc}")

    return StoryResponse(result=result)


@router.post("/generate-narration", response_model=NarrationResponse)
async def generate_narration(
    request: NarrationRequest, services: StudioServices = Depends(get_services)
):
    if not request.story or not request.prompts:
        raise HTTPException(status_code=400, detail="Story and prompts are required")

    try:
        scripts = await services.write_narrations(request.story, request.prompts)
    except Exception as exc:
        logger.exception("generate_narration.failed")
        raise HTTPException(status_code=502, detail=f"Failed to generate narration: {exc}")

    if len(scripts) != len(request.prompts):
        raise HTTPException(status_code=502, detail="Mismatch in number of narrations returned.")
    return NarrationResponse(scripts=scripts)


@router.post("/generate-audio", response_model=AudioResponse)
async def generate_audio(
    request: AudioRequest, services: StudioServices = Depends(get_services)
):
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    try:
        audio_url = await services.synthesize(request.text, request.index)
    except Exception as exc:
        logger.exception("generate_audio.failed", index=request.index)
        raise HTTPException(status_code=502, detail=f"Failed to generate audio: {exc}")
    return AudioResponse(audioUrl=audio_url)


@router.post("/generate-image", response_model=ImageResponse)
async def generate_image(
    request: ImageRequest, services: StudioServices = Depends(get_services)
):
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    try:
        image_url = await services.generate_image(
            request.prompt,
            image_size=request.image_size,
            num_inference_steps=request.num_inference_steps,
            num_images=request.num_images,
        )
    except Exception as exc:
        logger.exception("generate_image.failed")
        raise HTTPException(status_code=502, detail=f"Failed to generate image: {exc}")
    return ImageResponse(imageUrl=image_url)


@router.post("/image-to-video", response_model=ImageToVideoResponse)
async def image_to_video(
    request: ImageToVideoRequest, services: StudioServices = Depends(get_services)
):
    try:
        video_url = await services.image_to_video(request.prompt, request.imageUrl)
    except Exception as exc:
        logger.exception("image_to_video.failed")
        return JSONResponse(status_code=500, content={"message": str(exc)})
    return ImageToVideoResponse(videoUrl=video_url)


@router.post("/upload-final-video", response_model=UploadVideoResponse)
async def upload_final_video(
    video: UploadFile = File(...),
    story: Optional[str] = Form(None),
    prompt: Optional[str] = Form(None),
    upload: Callable[[bytes], Awaitable[str]] = Depends(get_video_uploader),
):
    data = await video.read()
    if not data:
        raise HTTPException(status_code=400, detail="No video file provided")

    try:
        video_url = await upload(data)
    except UploadError as exc:
        raise _to_http(exc)

    logger.info("upload_final_video.done", bytes_uploaded=len(data), has_story=bool(story))
    return UploadVideoResponse(videoUrl=video_url)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@router.get("/history", response_model=HistoryListResponse)
async def list_history(
    user_id: Optional[str] = None,
    limit: int = 20,
    history: HistoryStore = Depends(get_history_store),
):
    projects = await history.list(user_id, limit)
    return HistoryListResponse(items=[to_summary(p) for p in projects])


@router.post("/history", response_model=StoryProject)
async def save_history(
    project: StoryProject,
    user_id: Optional[str] = None,
    history: HistoryStore = Depends(get_history_store),
):
    """Append a project snapshot; returns it with the generated id and created_at."""
    return await history.save(project, user_id)


@router.get("/history/{history_id}", response_model=StoryProject)
async def get_history(history_id: int, history: HistoryStore = Depends(get_history_store)):
    project = await history.load(history_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"History record {history_id} not found")
    return project


# ---------------------------------------------------------------------------
# Project sessions
# ---------------------------------------------------------------------------


@router.post("/projects", response_model=ProjectResponse)
async def create_project(
    request: ProjectCreateRequest, registry: ProjectRegistry = Depends(get_registry)
):
    studio = registry.create(user_id=request.user_id)
    if request.history_id is not None:
        try:
            await studio.load_from_history(request.history_id)
        except StudioError as exc:
            registry.remove(studio.project_id)
            raise _to_http(exc)

    logger.info("project.created", project_id=studio.project_id, user_id=request.user_id)
    return _project_response(studio)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    return _project_response(_get_studio(project_id, registry))


@router.delete("/projects/{project_id}")
async def close_project(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    _get_studio(project_id, registry)
    registry.remove(project_id)
    return {"project_id": project_id, "status": "closed"}


async def _run_stage(studio: StoryStudio, action: Awaitable) -> ProjectResponse:
    try:
        await action
    except StudioError as exc:
        raise _to_http(exc)
    return _project_response(studio)


@router.post("/projects/{project_id}/story", response_model=ProjectResponse)
async def project_story(
    project_id: str, request: StoryStageRequest, registry: ProjectRegistry = Depends(get_registry)
):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.generate_story(request.prompt))


@router.post("/projects/{project_id}/image-prompts", response_model=ProjectResponse)
async def project_image_prompts(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.generate_image_prompts())


@router.post("/projects/{project_id}/narrations", response_model=ProjectResponse)
async def project_narrations(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.generate_narrations())


@router.post("/projects/{project_id}/audio", response_model=ProjectResponse)
async def project_audio(
    project_id: str,
    request: AudioStageRequest = AudioStageRequest(),
    registry: ProjectRegistry = Depends(get_registry),
):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.generate_audio(sequential=request.sequential))


@router.post("/projects/{project_id}/audio/retry-failed", response_model=ProjectResponse)
async def project_audio_retry_failed(
    project_id: str, registry: ProjectRegistry = Depends(get_registry)
):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.retry_failed_audio())


@router.post("/projects/{project_id}/images", response_model=ProjectResponse)
async def project_images(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.generate_images())


@router.post("/projects/{project_id}/video", response_model=ProjectResponse)
async def project_videos(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.generate_videos())


@router.post("/projects/{project_id}/{stage}/{index}/retry", response_model=ItemResultResponse)
async def project_retry_item(
    project_id: str,
    stage: str,
    index: int,
    request: ItemRetryRequest = ItemRetryRequest(),
    registry: ProjectRegistry = Depends(get_registry),
):
    studio = _get_studio(project_id, registry)
    item_stage = _item_stage(stage)
    try:
        result = await studio.retry_item(item_stage, index, force=request.force)
    except StudioError as exc:
        raise _to_http(exc)
    return ItemResultResponse(
        project_id=project_id, stage=stage, index=index, result=result.model_dump()
    )


@router.post("/projects/{project_id}/{stage}/{index}/cancel", response_model=CancelResponse)
async def project_cancel_item(
    project_id: str, stage: str, index: int, registry: ProjectRegistry = Depends(get_registry)
):
    studio = _get_studio(project_id, registry)
    cancelled = studio.cancel_item(_item_stage(stage), index)
    return CancelResponse(project_id=project_id, stage=stage, index=index, cancelled=cancelled)


@router.put("/projects/{project_id}/story", response_model=ProjectResponse)
async def project_edit_story(
    project_id: str, request: StoryEditRequest, registry: ProjectRegistry = Depends(get_registry)
):
    studio = _get_studio(project_id, registry)
    studio.edit_story(request.story)
    return _project_response(studio)


@router.put("/projects/{project_id}/image-prompts/{index}", response_model=ProjectResponse)
async def project_edit_image_prompt(
    project_id: str,
    index: int,
    request: ImagePromptEditRequest,
    registry: ProjectRegistry = Depends(get_registry),
):
    studio = _get_studio(project_id, registry)
    try:
        studio.edit_image_prompt(index, request.prompt)
    except StudioError as exc:
        raise _to_http(exc)
    return _project_response(studio)


@router.put("/projects/{project_id}/narrations/{index}", response_model=ProjectResponse)
async def project_edit_narration(
    project_id: str,
    index: int,
    request: NarrationEditRequest,
    registry: ProjectRegistry = Depends(get_registry),
):
    studio = _get_studio(project_id, registry)
    try:
        studio.edit_narration(index, request.script)
    except StudioError as exc:
        raise _to_http(exc)
    return _project_response(studio)


# -- export ---------------------------------------------------------------


@router.post("/projects/{project_id}/export", response_model=ExportResponse)
async def project_export(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    """Queue an export and wait for the merged file."""
    studio = _get_studio(project_id, registry)
    try:
        result = await studio.export()
    except StudioError as exc:
        raise _to_http(exc)
    return ExportResponse(
        project_id=project_id,
        download_url=result.download_url,
        uploaded_url=result.uploaded_url,
        upload_error=result.upload_error,
        merged_video_url=studio.project.merged_video_url,
    )


async def _export_in_background(studio: StoryStudio) -> None:
    try:
        await studio.export(claimed=True)
    except ExportError as exc:
        logger.warning("project.export.failed", project_id=studio.project_id, error=exc.message)
    except StudioError as exc:
        studio.export_status = "failed"
        studio.export_error = exc.message
        logger.warning("project.export.rejected", project_id=studio.project_id, error=exc.message)


@router.post("/projects/{project_id}/export/start", response_model=ExportStartResponse)
async def project_export_start(
    project_id: str,
    background_tasks: BackgroundTasks,
    registry: ProjectRegistry = Depends(get_registry),
):
    """Queue an export without waiting; follow it on ``/export/stream``."""
    studio = _get_studio(project_id, registry)
    try:
        studio.claim_export()
    except StudioError as exc:
        raise _to_http(exc)
    background_tasks.add_task(_export_in_background, studio)
    return ExportStartResponse(project_id=project_id)


@router.get("/projects/{project_id}/export/stream")
async def project_export_stream(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    """SSE endpoint for export progress updates."""
    studio = _get_studio(project_id, registry)

    async def event_generator():
        last = None
        while True:
            snapshot = {
                "status": studio.export_status,
                "progress": round(studio.export_progress, 1),
                "error": studio.export_error,
                "merged_video_url": studio.project.merged_video_url,
            }
            if snapshot != last:
                yield {"event": "progress", "data": json.dumps(snapshot)}
                last = snapshot
            if studio.export_status in ("done", "failed", "idle"):
                yield {"event": "end", "data": json.dumps(snapshot)}
                return
            await asyncio.sleep(_EXPORT_POLL_SEC)

    return EventSourceResponse(event_generator())


# -- history from a session ----------------------------------------------


@router.post("/projects/{project_id}/save", response_model=ProjectResponse)
async def project_save(project_id: str, registry: ProjectRegistry = Depends(get_registry)):
    studio = _get_studio(project_id, registry)
    try:
        await studio.save_to_history()
    except Exception as exc:
        logger.exception("project.save.failed", project_id=project_id)
        raise HTTPException(status_code=502, detail=f"Failed to save project: {exc}")
    return _project_response(studio)


@router.post("/projects/{project_id}/load/{history_id}", response_model=ProjectResponse)
async def project_load(
    project_id: str, history_id: int, registry: ProjectRegistry = Depends(get_registry)
):
    studio = _get_studio(project_id, registry)
    return await _run_stage(studio, studio.load_from_history(history_id))


# -- autorun ----------------------------------------------------------------


async def _run_autorun(run_id: str, state: dict) -> None:
    """Execute the autorun graph in the background."""
    graph = get_compiled_graph()
    config = {"configurable": {"thread_id": run_id}}
    try:
        await graph.ainvoke(state, config=config)
    except Exception as exc:
        logger.exception("autorun.failed", run_id=run_id)
        try:
            await graph.aupdate_state(config, {"error": f"Autorun failed: {exc}"})
        except Exception:
            logger.exception("autorun.set_error_state.failed", run_id=run_id)


@router.post("/projects/{project_id}/autorun", response_model=AutorunResponse)
async def project_autorun(
    project_id: str,
    background_tasks: BackgroundTasks,
    request: AutorunRequest = AutorunRequest(),
    registry: ProjectRegistry = Depends(get_registry),
):
    """Drive the project forward from its first unfinished stage."""
    studio = _get_studio(project_id, registry)
    state = initial_state(studio, request.prompt)
    run_id = str(uuid.uuid4())
    background_tasks.add_task(_run_autorun, run_id, state)

    logger.info("autorun.started", run_id=run_id, project_id=project_id, start=state["start_stage"])
    return AutorunResponse(project_id=project_id, run_id=run_id, start_stage=state["start_stage"])


@router.get("/projects/{project_id}/autorun/{run_id}", response_model=AutorunStatusResponse)
async def project_autorun_status(project_id: str, run_id: str, graph=Depends(get_compiled_graph)):
    config = {"configurable": {"thread_id": run_id}}
    state = await graph.aget_state(config)
    if not state.values or state.values.get("project_id") != project_id:
        raise HTTPException(status_code=404, detail=f"Autorun {run_id} not found")

    values = state.values
    if values.get("error"):
        status = "failed"
    elif state.next:
        status = "running"
    elif values.get("failed_items"):
        status = "stopped"
    else:
        status = "completed"

    return AutorunStatusResponse(
        run_id=run_id,
        status=status,
        completed=values.get("completed", []),
        last_stage=values.get("last_stage"),
        failed_items=values.get("failed_items", []),
        error=values.get("error"),
    )
