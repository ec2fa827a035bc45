"""FastAPI dependency injection: services, queues, registry and graph."""

from __future__ import annotations

from functools import lru_cache

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import InMemorySaver

from story_studio.config import settings
from story_studio.graph.builder import build_graph
from story_studio.memory.history_store import (
    HistoryStore,
    InMemoryHistoryStore,
    SupabaseHistoryStore,
)
from story_studio.memory.project_registry import ProjectRegistry
from story_studio.pipeline.export import ExportQueue
from story_studio.pipeline.studio import StoryStudio, StudioServices, default_services
from story_studio.tools import supabase_storage
from story_studio.tools.media_fetch import fetch_bytes
from story_studio.tools.moviepy_tools import MoviePyTranscoder


@lru_cache(maxsize=1)
def get_services() -> StudioServices:
    return default_services()


@lru_cache(maxsize=1)
def get_history_store() -> HistoryStore:
    """Supabase-backed history when configured, otherwise process-local."""
    if supabase_storage.is_configured():
        return SupabaseHistoryStore()
    return InMemoryHistoryStore()


@lru_cache(maxsize=1)
def get_export_queue() -> ExportQueue:
    """Return the process-wide export queue (one transcoder, one worker)."""
    upload = supabase_storage.upload_final_video if supabase_storage.is_configured() else None
    return ExportQueue(
        fetch=fetch_bytes,
        transcoder=MoviePyTranscoder(fps=settings.video_fps),
        upload=upload,
        output_dir=settings.output_base_dir,
        files_url=settings.public_files_url,
    )


@lru_cache(maxsize=1)
def get_registry() -> ProjectRegistry:
    def factory(user_id: str | None = None) -> StoryStudio:
        return StoryStudio(
            services=get_services(),
            export_queue=get_export_queue(),
            history=get_history_store(),
            user_id=user_id,
        )

    return ProjectRegistry(factory)


@lru_cache(maxsize=1)
def get_checkpointer() -> BaseCheckpointSaver:
    return InMemorySaver()


@lru_cache(maxsize=1)
def get_compiled_graph():
    """Return the compiled autorun graph with checkpointer."""
    return build_graph(get_registry(), checkpointer=get_checkpointer())
