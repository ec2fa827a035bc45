"""Stage sequencer: forward gating and result merging for a story project."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Sequence

import structlog

from story_studio.errors import StageError
from story_studio.models.project import (
    Narration,
    Pending,
    StoryProject,
    is_success,
    success_value,
)

logger = structlog.get_logger()


class Stage(str, Enum):
    STORY = "story"
    IMAGE_PROMPTS = "image_prompts"
    NARRATIONS = "narrations"
    AUDIO = "audio"
    IMAGES = "images"
    VIDEO = "video"
    EXPORT = "export"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.STORY,
    Stage.IMAGE_PROMPTS,
    Stage.NARRATIONS,
    Stage.AUDIO,
    Stage.IMAGES,
    Stage.VIDEO,
    Stage.EXPORT,
)

PER_ITEM_STAGES = frozenset({Stage.AUDIO, Stage.IMAGES, Stage.VIDEO})

# Derived project state, in the order a project reaches them.
PROJECT_STATES = ("empty", "story", "image_prompts", "narrations", "audio", "images", "video", "exported")


def _stage_inputs(project: StoryProject, stage: Stage) -> Any:
    """Return the declared inputs of *stage*, used for fingerprinting."""
    if stage is Stage.STORY:
        return project.original_prompt
    if stage is Stage.IMAGE_PROMPTS:
        return project.story
    if stage is Stage.NARRATIONS:
        return [project.story, project.image_prompts]
    if stage is Stage.AUDIO:
        return [n.script for n in project.narrations]
    if stage is Stage.IMAGES:
        return project.image_prompts
    if stage is Stage.VIDEO:
        return [project.image_prompts, [success_value(r) for r in project.generated_images]]
    return [
        [success_value(r) for r in project.generated_video],
        [success_value(r) for r in project.audio_results()],
    ]


def fingerprint(project: StoryProject, stage: Stage) -> str:
    payload = json.dumps(_stage_inputs(project, stage), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StageSequencer:
    """Single source of truth for one ``StoryProject``.

    Gates each stage on its prerequisites and merges stage outputs into the
    project without touching any other field. Upstream edits never clear
    downstream data; instead the affected stages are reported by
    :meth:`stale_stages`.
    """

    def __init__(self, project: StoryProject | None = None):
        self.project = project or StoryProject()

    # -- gating -----------------------------------------------------------

    def can_advance(self, stage: Stage) -> bool:
        p = self.project
        if stage is Stage.STORY:
            return bool(p.original_prompt.strip())
        if stage is Stage.IMAGE_PROMPTS:
            return bool(p.story.strip())
        if stage is Stage.NARRATIONS:
            return bool(p.story.strip()) and bool(p.image_prompts)
        if stage is Stage.AUDIO:
            return bool(p.narrations)
        if stage is Stage.IMAGES:
            return bool(p.image_prompts)
        if stage is Stage.VIDEO:
            return bool(p.generated_images)
        return bool(p.generated_video) and bool(p.narrations)

    def current_state(self) -> str:
        """Return the furthest state the project has reached."""
        p = self.project
        reached = {
            "story": bool(p.story),
            "image_prompts": bool(p.image_prompts),
            "narrations": bool(p.narrations),
            "audio": bool(p.narrations) and any(not isinstance(n.audio, Pending) for n in p.narrations),
            "images": bool(p.generated_images),
            "video": bool(p.generated_video),
            "exported": bool(p.merged_video_url),
        }
        state = "empty"
        for name in PROJECT_STATES[1:]:
            if reached[name]:
                state = name
        return state

    def next_stage(self) -> Stage | None:
        """First stage whose output is missing or holds a non-success item."""
        p = self.project
        outputs = {
            Stage.STORY: [p.story] if p.story else [],
            Stage.IMAGE_PROMPTS: p.image_prompts,
            Stage.NARRATIONS: p.narrations,
            Stage.AUDIO: p.audio_results(),
            Stage.IMAGES: p.generated_images,
            Stage.VIDEO: p.generated_video,
            Stage.EXPORT: [p.merged_video_url] if p.merged_video_url else [],
        }
        for stage in STAGE_ORDER:
            items = outputs[stage]
            if not items:
                return stage
            if stage in PER_ITEM_STAGES and not all(is_success(r) for r in items):
                return stage
        return None

    # -- merging ----------------------------------------------------------

    def _check_length(self, stage: Stage, items: Sequence[Any]) -> None:
        expected = len(self.project.image_prompts)
        if len(items) != expected:
            raise StageError(
                stage.value,
                f"{stage.value} result has {len(items)} items, expected {expected}",
            )

    def apply_stage_result(self, stage: Stage, result: Any) -> StoryProject:
        """Merge *result* into the project, leaving every other field untouched.

        Expected result shapes:
          STORY          mapping with ``original_prompt``, ``full_prompt``, ``story``
          IMAGE_PROMPTS  list of prompt strings
          NARRATIONS     list of scripts (audio slots start Pending)
          AUDIO/IMAGES/VIDEO  full replacement list of item results
          EXPORT         merged video URL
        """
        p = self.project
        if stage is Stage.STORY:
            updates = {
                "original_prompt": result["original_prompt"],
                "full_prompt": result["full_prompt"],
                "story": result["story"],
            }
        elif stage is Stage.IMAGE_PROMPTS:
            prompts = list(result)
            updates = {"image_prompts": prompts}
            if p.image_prompts and len(prompts) != len(p.image_prompts):
                # Per-item lists are indexed by scene; a new scene count drops them.
                updates.update(narrations=[], generated_images=[], generated_video=[])
                dropped = [s.value for s in PER_ITEM_STAGES | {Stage.NARRATIONS}]
                updates["fingerprints"] = {
                    k: v for k, v in p.fingerprints.items() if k not in dropped
                }
                logger.info(
                    "sequencer.scene_count_changed",
                    old=len(p.image_prompts),
                    new=len(prompts),
                )
        elif stage is Stage.NARRATIONS:
            self._check_length(stage, result)
            updates = {"narrations": [Narration(script=s) for s in result]}
        elif stage is Stage.AUDIO:
            self._check_length(stage, result)
            updates = {
                "narrations": [
                    n.model_copy(update={"audio": r}) for n, r in zip(p.narrations, result)
                ]
            }
        elif stage is Stage.IMAGES:
            self._check_length(stage, result)
            updates = {"generated_images": list(result)}
        elif stage is Stage.VIDEO:
            self._check_length(stage, result)
            updates = {"generated_video": list(result)}
        else:
            updates = {"merged_video_url": result}

        self.project = p.model_copy(update=updates)
        self._stamp(stage)
        logger.info("sequencer.stage_applied", stage=stage.value, state=self.current_state())
        return self.project

    def apply_item_result(self, stage: Stage, index: int, result: Any) -> StoryProject:
        """Replace a single slot of a per-item stage."""
        if stage not in PER_ITEM_STAGES:
            raise ValueError(f"{stage.value} is not a per-item stage")
        p = self.project
        if stage is Stage.AUDIO:
            narrations = list(p.narrations)
            narrations[index] = narrations[index].model_copy(update={"audio": result})
            updates: dict[str, Any] = {"narrations": narrations}
        elif stage is Stage.IMAGES:
            images = list(p.generated_images)
            images[index] = result
            updates = {"generated_images": images}
        else:
            videos = list(p.generated_video)
            videos[index] = result
            updates = {"generated_video": videos}
        self.project = p.model_copy(update=updates)
        return self.project

    def replace_project(self, project: StoryProject) -> StoryProject:
        """Swap in a whole project (history load)."""
        self.project = project
        return project

    # -- edits ------------------------------------------------------------

    def edit_story(self, story: str) -> StoryProject:
        self.project = self.project.model_copy(update={"story": story})
        return self.project

    def edit_image_prompt(self, index: int, prompt: str) -> StoryProject:
        prompts = list(self.project.image_prompts)
        prompts[index] = prompt
        self.project = self.project.model_copy(update={"image_prompts": prompts})
        return self.project

    def edit_narration(self, index: int, script: str) -> StoryProject:
        narrations = list(self.project.narrations)
        narrations[index] = Narration(script=script)
        self.project = self.project.model_copy(update={"narrations": narrations})
        return self.project

    # -- staleness --------------------------------------------------------

    def _stamp(self, stage: Stage) -> None:
        fingerprints = dict(self.project.fingerprints)
        fingerprints[stage.value] = fingerprint(self.project, stage)
        self.project = self.project.model_copy(update={"fingerprints": fingerprints})

    def stale_stages(self) -> list[Stage]:
        """Stages whose output was produced from inputs that have since changed."""
        stale = []
        for stage in STAGE_ORDER:
            recorded = self.project.fingerprints.get(stage.value)
            if recorded is not None and recorded != fingerprint(self.project, stage):
                stale.append(stage)
        return stale
