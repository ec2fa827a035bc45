"""Exception taxonomy for the story pipeline."""

from __future__ import annotations


class StudioError(Exception):
    """Base class for errors surfaced to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StageError(StudioError):
    """A single-shot stage failed or its prerequisites are missing.

    The project is left exactly as it was before the stage was triggered.
    ``upstream`` is set when an external service failed rather than a
    prerequisite being missing.
    """

    def __init__(self, stage: str, message: str, upstream: bool = False):
        super().__init__(message)
        self.stage = stage
        self.upstream = upstream


class ExportError(StudioError):
    """An export job aborted; no output artifact was produced."""


class UploadError(StudioError):
    """Uploading an artifact to persistent storage failed."""


class NotFoundError(StudioError):
    """A project or history record does not exist."""
