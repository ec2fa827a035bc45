"""In-process registry of open studio sessions."""

from __future__ import annotations

from typing import Callable

from story_studio.errors import NotFoundError
from story_studio.pipeline.studio import StoryStudio


class ProjectRegistry:
    """Maps project ids to live ``StoryStudio`` instances. Not persisted."""

    def __init__(self, factory: Callable[..., StoryStudio]):
        self._factory = factory
        self._studios: dict[str, StoryStudio] = {}

    def create(self, user_id: str | None = None) -> StoryStudio:
        studio = self._factory(user_id=user_id)
        self._studios[studio.project_id] = studio
        return studio

    def get(self, project_id: str) -> StoryStudio:
        studio = self._studios.get(project_id)
        if studio is None:
            raise NotFoundError(f"Project {project_id} not found")
        return studio

    def remove(self, project_id: str) -> None:
        self._studios.pop(project_id, None)

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._studios

    def __len__(self) -> int:
        return len(self._studios)
