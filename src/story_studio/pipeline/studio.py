"""Story studio: one project's generate/review/regenerate/export workflow."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from story_studio.config import settings
from story_studio.errors import NotFoundError, StageError
from story_studio.memory.history_store import HistoryStore, InMemoryHistoryStore
from story_studio.models.project import StoryProject, Success
from story_studio.pipeline.export import ExportJob, ExportQueue, ExportResult, ProgressHook
from story_studio.pipeline.stages import Stage, StageSequencer
from story_studio.pipeline.tracker import ItemTracker
from story_studio.prompts import build_full_prompt, format_story, parse_prompt_lines

logger = structlog.get_logger()


@dataclass
class StudioServices:
    """External collaborators used by the studio, one coroutine function each."""

    write_story: Callable[[str], Awaitable[str]]
    split_image_prompts: Callable[[str, int], Awaitable[str]]
    write_narrations: Callable[[str, list[str]], Awaitable[list[str]]]
    synthesize: Callable[[str, int], Awaitable[str]]
    generate_image: Callable[..., Awaitable[str]]
    image_to_video: Callable[[str, str], Awaitable[str]]
    scene_count: Callable[[], Awaitable[int]]


def default_services() -> StudioServices:
    """Services backed by OpenAI, ElevenLabs, fal.ai, Luma and Supabase."""
    from story_studio.tools.elevenlabs import synthesize_narration
    from story_studio.tools.fal_image import fal_generate_image
    from story_studio.tools.luma import luma_image_to_video
    from story_studio.tools.supabase_storage import fetch_story_length
    from story_studio.tools.text_generation import (
        split_image_prompts,
        write_narrations,
        write_story,
    )

    return StudioServices(
        write_story=write_story,
        split_image_prompts=split_image_prompts,
        write_narrations=write_narrations,
        synthesize=synthesize_narration,
        generate_image=fal_generate_image,
        image_to_video=luma_image_to_video,
        scene_count=fetch_story_length,
    )


class StoryStudio:
    """Drive one ``StoryProject`` through the stages.

    Single-shot stages (story, image prompts, narrations) either apply their
    whole result or raise ``StageError`` leaving the project untouched.
    Per-item stages (audio, images, video) never raise for an individual
    failure; each index carries its own result.
    """

    def __init__(
        self,
        services: StudioServices,
        export_queue: ExportQueue,
        history: HistoryStore | None = None,
        project_id: str | None = None,
        user_id: str | None = None,
        timeout: float | None = None,
    ):
        self.project_id = project_id or uuid.uuid4().hex
        self.user_id = user_id
        self.services = services
        self.history = history or InMemoryHistoryStore()
        self.export_queue = export_queue
        self.timeout = settings.request_timeout_sec if timeout is None else timeout
        self.sequencer = StageSequencer()

        self.export_status = "idle"
        self.export_progress = 0.0
        self.export_error: Optional[str] = None
        self.last_export: Optional[ExportResult] = None

        self._trackers: dict[Stage, ItemTracker] = {
            Stage.AUDIO: ItemTracker("audio", self._audio_worker, self.timeout),
            Stage.IMAGES: ItemTracker("image", self.services.generate_image, self.timeout),
            Stage.VIDEO: ItemTracker("video", self._video_worker, self.timeout),
        }
        self._busy: set[Stage] = set()

    @property
    def project(self) -> StoryProject:
        return self.sequencer.project

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _audio_worker(self, item: tuple[int, str]) -> str:
        index, script = item
        return await self.services.synthesize(script, index)

    async def _video_worker(self, item: tuple[int, str, Any]) -> str:
        index, prompt, image = item
        if not isinstance(image, Success):
            raise RuntimeError(f"Image URL for prompt {index + 1} is not available.")
        return await self.services.image_to_video(prompt, image.value)

    def _tracker_inputs(self, stage: Stage) -> tuple[list, list]:
        p = self.project
        if stage is Stage.AUDIO:
            return [(i, n.script) for i, n in enumerate(p.narrations)], p.audio_results()
        if stage is Stage.IMAGES:
            return list(p.image_prompts), list(p.generated_images)
        images = p.generated_images
        inputs = [
            (i, prompt, images[i] if i < len(images) else None)
            for i, prompt in enumerate(p.image_prompts)
        ]
        return inputs, list(p.generated_video)

    # ------------------------------------------------------------------
    # Single-shot stages
    # ------------------------------------------------------------------

    async def _call(self, stage: Stage, coro: Awaitable[Any], failure: str) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("studio.stage.timeout", stage=stage.value, project_id=self.project_id)
            raise StageError(
                stage.value, f"{failure}: timed out after {self.timeout:g}s", upstream=True
            ) from exc
        except Exception as exc:
            logger.exception("studio.stage.failed", stage=stage.value, project_id=self.project_id)
            raise StageError(stage.value, f"{failure}: {exc}", upstream=True) from exc

    def _require(self, stage: Stage, message: str) -> None:
        if not self.sequencer.can_advance(stage):
            raise StageError(stage.value, message)

    async def generate_story(self, prompt: str) -> StoryProject:
        prompt = (prompt or "").strip()
        if not prompt:
            raise StageError(Stage.STORY.value, "Please enter a prompt.")

        full_prompt = build_full_prompt(prompt)
        story = await self._call(
            Stage.STORY, self.services.write_story(full_prompt), "Failed to generate story"
        )
        story = format_story(story or "")
        if not story:
            raise StageError(
                Stage.STORY.value, "Failed to generate story: empty response", upstream=True
            )

        logger.info("studio.story.done", project_id=self.project_id, story_len=len(story))
        return self.sequencer.apply_stage_result(
            Stage.STORY,
            {"original_prompt": prompt, "full_prompt": full_prompt, "story": story},
        )

    async def generate_image_prompts(self) -> StoryProject:
        self._require(Stage.IMAGE_PROMPTS, "Generate a story first.")
        story = self.project.story

        scene_count = await self.services.scene_count()
        text = await self._call(
            Stage.IMAGE_PROMPTS,
            self.services.split_image_prompts(story, scene_count),
            "Failed to generate image prompts",
        )
        prompts = parse_prompt_lines(text or "")
        if len(prompts) < scene_count:
            raise StageError(
                Stage.IMAGE_PROMPTS.value,
                f"Insufficient image prompts generated ({len(prompts)}/{scene_count})",
                upstream=True,
            )

        logger.info("studio.image_prompts.done", project_id=self.project_id, count=scene_count)
        return self.sequencer.apply_stage_result(Stage.IMAGE_PROMPTS, prompts[:scene_count])

    async def generate_narrations(self) -> StoryProject:
        self._require(Stage.NARRATIONS, "Generate a story and image prompts first.")
        prompts = list(self.project.image_prompts)

        scripts = await self._call(
            Stage.NARRATIONS,
            self.services.write_narrations(self.project.story, prompts),
            "Failed to generate narration",
        )
        if not isinstance(scripts, list) or len(scripts) != len(prompts):
            raise StageError(
                Stage.NARRATIONS.value, "Mismatch in number of narrations returned.", upstream=True
            )

        logger.info("studio.narrations.done", project_id=self.project_id, count=len(scripts))
        return self.sequencer.apply_stage_result(Stage.NARRATIONS, scripts)

    # ------------------------------------------------------------------
    # Per-item stages
    # ------------------------------------------------------------------

    def _claim(self, stage: Stage) -> ItemTracker:
        if stage in self._busy:
            raise StageError(stage.value, f"{stage.value} generation is already running.")
        tracker = self._trackers[stage]
        if tracker.any_in_flight():
            raise StageError(
                stage.value, f"Wait for the {stage.value} retries in progress to finish."
            )
        self._busy.add(stage)
        return tracker

    async def _generate_items(self, stage: Stage, sequential: bool = False) -> StoryProject:
        tracker = self._claim(stage)
        try:
            inputs, _ = self._tracker_inputs(stage)
            if sequential:
                tracker.load(inputs)
                slots = await tracker.retry_all_sequentially()
            else:
                slots = await tracker.generate_all(inputs)
            return self.sequencer.apply_stage_result(stage, slots)
        finally:
            self._busy.discard(stage)

    async def generate_audio(self, sequential: bool = True) -> StoryProject:
        """Synthesize every narration, then append a history snapshot."""
        self._require(Stage.AUDIO, "Generate narration scripts first.")
        await self._generate_items(Stage.AUDIO, sequential=sequential)
        try:
            await self.save_to_history()
        except Exception:
            logger.exception("studio.history.save_failed", project_id=self.project_id)
        return self.project

    async def generate_images(self) -> StoryProject:
        self._require(Stage.IMAGES, "Generate image prompts first.")
        return await self._generate_items(Stage.IMAGES)

    async def generate_videos(self) -> StoryProject:
        self._require(Stage.VIDEO, "Generate images first.")
        return await self._generate_items(Stage.VIDEO)

    async def retry_failed_audio(self) -> StoryProject:
        """Walk the audio slots in order, regenerating each one without a success."""
        self._require(Stage.AUDIO, "Generate narration scripts first.")
        if not self.project.narrations:
            raise StageError(Stage.AUDIO.value, "Nothing to retry.")
        tracker = self._claim(Stage.AUDIO)
        try:
            tracker.load(*self._tracker_inputs(Stage.AUDIO))
            slots = await tracker.retry_all_sequentially()
            return self.sequencer.apply_stage_result(Stage.AUDIO, slots)
        finally:
            self._busy.discard(Stage.AUDIO)

    async def retry_item(self, stage: Stage, index: int, force: bool = False) -> Any:
        """Regenerate one slot; every other slot is left as it is."""
        if stage in self._busy:
            raise StageError(stage.value, f"{stage.value} generation is already running.")
        inputs, slots = self._tracker_inputs(stage)
        if len(slots) != len(inputs) or not slots:
            raise StageError(stage.value, f"No {stage.value} results to retry yet.")
        if not 0 <= index < len(slots):
            raise StageError(stage.value, f"Index {index} is out of range.")

        tracker = self._trackers[stage]
        if tracker.in_flight(index):
            raise StageError(stage.value, f"Item {index + 1} is already being generated.")
        tracker.load(inputs, slots)
        result = await tracker.retry_one(index, force=force)
        if self._tracker_inputs(stage)[0] != inputs:
            logger.info(
                "studio.item.discarded", project_id=self.project_id, stage=stage.value, index=index
            )
            return result
        self.sequencer.apply_item_result(stage, index, result)
        logger.info(
            "studio.item.retried",
            project_id=self.project_id,
            stage=stage.value,
            index=index,
            status=result.status,
        )
        return result

    async def retry_audio(self, index: int, force: bool = False) -> Any:
        return await self.retry_item(Stage.AUDIO, index, force)

    async def retry_image(self, index: int, force: bool = False) -> Any:
        return await self.retry_item(Stage.IMAGES, index, force)

    async def retry_video(self, index: int, force: bool = False) -> Any:
        return await self.retry_item(Stage.VIDEO, index, force)

    def cancel_item(self, stage: Stage, index: int) -> bool:
        if stage not in self._trackers:
            raise StageError(stage.value, f"{stage.value} has no per-item calls to cancel.")
        return self._trackers[stage].cancel(index)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _check_index(self, stage: Stage, index: int, size: int) -> None:
        if not 0 <= index < size:
            raise StageError(stage.value, f"Index {index} is out of range.")

    def edit_story(self, story: str) -> StoryProject:
        return self.sequencer.edit_story(story)

    def edit_image_prompt(self, index: int, prompt: str) -> StoryProject:
        self._check_index(Stage.IMAGE_PROMPTS, index, len(self.project.image_prompts))
        return self.sequencer.edit_image_prompt(index, prompt)

    def edit_narration(self, index: int, script: str) -> StoryProject:
        self._check_index(Stage.NARRATIONS, index, len(self.project.narrations))
        return self.sequencer.edit_narration(index, script)

    def stale_stages(self) -> list[Stage]:
        return self.sequencer.stale_stages()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def _on_export_progress(self, percent: float, hook: ProgressHook | None) -> None:
        self.export_progress = percent
        if self.export_status == "queued":
            self.export_status = "running"
        if hook is not None:
            hook(percent)

    @property
    def export_in_progress(self) -> bool:
        return self.export_status in ("queued", "running")

    def claim_export(self) -> None:
        """Mark an export as queued; refuses while another one is still going."""
        self._require(Stage.EXPORT, "Generate videos and narration audio first.")
        if self.export_in_progress:
            raise StageError(Stage.EXPORT.value, "An export is already in progress.")
        self.export_status = "queued"
        self.export_progress = 0.0
        self.export_error = None

    async def export(
        self, on_progress: ProgressHook | None = None, claimed: bool = False
    ) -> ExportResult:
        """Queue an export and wait for it.

        ``merged_video_url`` changes only when the job succeeds. Pass
        *claimed* when :meth:`claim_export` was already called for this run.
        """
        if not claimed:
            self.claim_export()
        p = self.project
        job = ExportJob(
            project_id=self.project_id,
            video_results=list(p.generated_video),
            audio_results=p.audio_results(),
            story=p.story,
            prompt=p.original_prompt,
            on_progress=lambda percent: self._on_export_progress(percent, on_progress),
        )

        try:
            result = await self.export_queue.enqueue(job)
        except (Exception, asyncio.CancelledError) as exc:
            self.export_status = "failed"
            self.export_error = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            raise

        self.sequencer.apply_stage_result(Stage.EXPORT, result.download_url)
        if result.uploaded_url:
            urls = [*self.project.final_video_urls, result.uploaded_url]
            self.sequencer.replace_project(
                self.project.model_copy(update={"final_video_urls": urls})
            )
        self.last_export = result
        self.export_status = "done"
        self.export_progress = 100.0
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def save_to_history(self) -> StoryProject:
        """Append a snapshot of the current project; the project takes the new id."""
        saved = await self.history.save(self.project, self.user_id)
        self.sequencer.replace_project(
            self.project.model_copy(update={"id": saved.id, "created_at": saved.created_at})
        )
        logger.info("studio.history.saved", project_id=self.project_id, history_id=saved.id)
        return self.project

    async def load_from_history(self, history_id: int) -> StoryProject:
        project = await self.history.load(history_id)
        if project is None:
            raise NotFoundError(f"History record {history_id} not found")
        logger.info("studio.history.loaded", project_id=self.project_id, history_id=history_id)
        return self.sequencer.replace_project(project)

    async def list_history(self, limit: int = 20) -> list[StoryProject]:
        return await self.history.list(self.user_id, limit)
