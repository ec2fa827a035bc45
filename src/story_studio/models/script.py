"""Pydantic models for LLM structured output (narration stage)."""

from pydantic import BaseModel, Field


class NarrationScripts(BaseModel):
    """Narration lines returned by the model, one per scene in scene order."""

    scripts: list[str] = Field(
        description=(
            "Narration lines, exactly one per image prompt and in the same order. "
            "Each line is at most 120 characters of plain spoken English."
        )
    )
