"""Conditional edge routing functions for the autorun graph."""

from __future__ import annotations

from story_studio.graph.state import AutorunState
from story_studio.pipeline.stages import STAGE_ORDER, Stage

END = "__end__"

STAGE_NAMES = [stage.value for stage in STAGE_ORDER]


def route_start(state: AutorunState) -> str:
    """Enter the graph at the requested stage."""
    start = state.get("start_stage") or Stage.STORY.value
    return start if start in STAGE_NAMES else END


def route_after_stage(state: AutorunState) -> str:
    """Advance to the next stage, or stop on an error or any failed item."""
    if state.get("error") or state.get("failed_items"):
        return END
    last = state.get("last_stage")
    if last not in STAGE_NAMES:
        return END
    position = STAGE_NAMES.index(last)
    if position + 1 >= len(STAGE_NAMES):
        return END
    return STAGE_NAMES[position + 1]
