"""Story history stores: append-only snapshots of finished projects."""

from __future__ import annotations

import copy
import itertools
from datetime import datetime, timezone
from typing import Protocol

from story_studio.models.history import from_row, to_row
from story_studio.models.project import StoryProject
from story_studio.tools import supabase_storage


class HistoryStore(Protocol):
    async def save(self, project: StoryProject, user_id: str | None = None) -> StoryProject: ...

    async def load(self, project_id: int) -> StoryProject | None: ...

    async def list(self, user_id: str | None = None, limit: int = 20) -> list[StoryProject]: ...


class InMemoryHistoryStore:
    """Process-local history store. Every save creates a new record."""

    def __init__(self):
        self._rows: dict[int, dict] = {}
        self._ids = itertools.count(1)

    async def save(self, project: StoryProject, user_id: str | None = None) -> StoryProject:
        row = to_row(project, user_id)
        row["id"] = next(self._ids)
        row["created_at"] = datetime.now(timezone.utc).isoformat()
        self._rows[row["id"]] = copy.deepcopy(row)
        return from_row(row)

    async def load(self, project_id: int) -> StoryProject | None:
        row = self._rows.get(project_id)
        return from_row(copy.deepcopy(row)) if row else None

    async def list(self, user_id: str | None = None, limit: int = 20) -> list[StoryProject]:
        rows = [
            r for r in reversed(self._rows.values())
            if user_id is None or r.get("user_id") == user_id
        ]
        return [from_row(copy.deepcopy(r)) for r in rows[:limit]]


class SupabaseHistoryStore:
    """History rows in the ``story_generations`` table."""

    async def save(self, project: StoryProject, user_id: str | None = None) -> StoryProject:
        saved = await supabase_storage.insert_history_row(to_row(project, user_id))
        return from_row(saved)

    async def load(self, project_id: int) -> StoryProject | None:
        row = await supabase_storage.get_history_row(project_id)
        return from_row(row) if row else None

    async def list(self, user_id: str | None = None, limit: int = 20) -> list[StoryProject]:
        rows = await supabase_storage.list_history_rows(user_id, limit)
        return [from_row(r) for r in rows]
