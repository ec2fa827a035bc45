"""Autorun state definition for the LangGraph workflow."""

from __future__ import annotations

from typing import Optional

from typing_extensions import TypedDict


class AutorunState(TypedDict):
    """State shared across the autorun nodes.

    The project itself lives in the studio registry; only its id and the
    run bookkeeping are checkpointed.
    """

    project_id: str

    # Topic for the story stage; empty when the project already has a story
    prompt: Optional[str]

    # First stage to run ("story", "image_prompts", ...)
    start_stage: str

    # Stages finished so far, in order
    completed: list[str]

    # Last stage executed and the indices it left as failed
    last_stage: Optional[str]
    failed_items: list[int]

    # Error tracking
    error: Optional[str]
