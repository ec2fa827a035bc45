"""StateGraph definition: one node per stage, each driving the project's studio."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import structlog
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, START, StateGraph

from story_studio.errors import StudioError
from story_studio.graph.edges import STAGE_NAMES, route_after_stage, route_start
from story_studio.graph.state import AutorunState
from story_studio.memory.project_registry import ProjectRegistry
from story_studio.models.project import Failed
from story_studio.pipeline.stages import PER_ITEM_STAGES, Stage
from story_studio.pipeline.studio import StoryStudio

logger = structlog.get_logger()


def _failed_indices(studio: StoryStudio, stage: Stage) -> list[int]:
    p = studio.project
    if stage is Stage.AUDIO:
        results = p.audio_results()
    elif stage is Stage.IMAGES:
        results = p.generated_images
    else:
        results = p.generated_video
    return [i for i, r in enumerate(results) if isinstance(r, Failed)]


def _stage_action(stage: Stage, state: AutorunState) -> Callable[[StoryStudio], Awaitable[Any]]:
    actions = {
        Stage.STORY: lambda s: s.generate_story(state.get("prompt") or s.project.original_prompt),
        Stage.IMAGE_PROMPTS: lambda s: s.generate_image_prompts(),
        Stage.NARRATIONS: lambda s: s.generate_narrations(),
        Stage.AUDIO: lambda s: s.generate_audio(),
        Stage.IMAGES: lambda s: s.generate_images(),
        Stage.VIDEO: lambda s: s.generate_videos(),
        Stage.EXPORT: lambda s: s.export(),
    }
    return actions[stage]


def make_stage_node(stage: Stage, registry: ProjectRegistry):
    """Build the node that runs *stage* on the project named in the state."""

    async def node(state: AutorunState) -> dict:
        project_id = state["project_id"]
        logger.info("autorun.stage.start", project_id=project_id, stage=stage.value)
        try:
            studio = registry.get(project_id)
            await _stage_action(stage, state)(studio)
        except StudioError as exc:
            logger.warning(
                "autorun.stage.failed", project_id=project_id, stage=stage.value, error=exc.message
            )
            return {"last_stage": stage.value, "failed_items": [], "error": exc.message}

        failed = _failed_indices(studio, stage) if stage in PER_ITEM_STAGES else []
        if failed:
            logger.warning(
                "autorun.stage.items_failed", project_id=project_id, stage=stage.value, failed=failed
            )
        else:
            logger.info("autorun.stage.done", project_id=project_id, stage=stage.value)
        return {
            "last_stage": stage.value,
            "failed_items": failed,
            "completed": [*state.get("completed", []), stage.value],
        }

    node.__name__ = f"{stage.value}_node"
    return node


def build_graph(registry: ProjectRegistry, checkpointer: BaseCheckpointSaver | None = None):
    """Build and compile the autorun graph.

    Args:
        registry: Open studio sessions, looked up by ``project_id``.
        checkpointer: Optional checkpoint saver for run status lookups.

    Returns:
        Compiled StateGraph ready for invocation.
    """
    graph = StateGraph(AutorunState)

    for stage in Stage:
        graph.add_node(stage.value, make_stage_node(stage, registry))

    path_map = {name: name for name in STAGE_NAMES}
    path_map[END] = END

    graph.add_conditional_edges(START, route_start, path_map)
    for name in STAGE_NAMES:
        graph.add_conditional_edges(name, route_after_stage, path_map)

    return graph.compile(checkpointer=checkpointer)


def initial_state(studio: StoryStudio, prompt: str | None = None) -> AutorunState:
    """Starting state for an autorun of *studio*'s project."""
    if prompt:
        start = Stage.STORY
    else:
        start = studio.sequencer.next_stage()
    return {
        "project_id": studio.project_id,
        "prompt": prompt,
        "start_stage": start.value if start is not None else END,
        "completed": [],
        "last_stage": None,
        "failed_items": [],
        "error": None,
    }
