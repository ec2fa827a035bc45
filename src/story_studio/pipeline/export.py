"""Export queue: serialized mux, concatenate and upload of a finished project."""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from story_studio.config import settings
from story_studio.errors import ExportError
from story_studio.models.project import Failed, Success
from story_studio.tools.moviepy_tools import write_concat_list

logger = structlog.get_logger()

ProgressHook = Callable[[float], None]
FetchFn = Callable[[str], Awaitable[bytes]]
UploadFn = Callable[[bytes], Awaitable[str]]

FALLBACK_MESSAGE = "Failed to process videos. Please try again."


class Transcoder(Protocol):
    def mux(self, video_path: str, audio_path: str, output_path: str, on_fraction=None) -> str: ...

    def concat(self, list_path: str, output_path: str, on_fraction=None) -> str: ...


@dataclass
class ExportJob:
    project_id: str
    video_results: list[Any]
    audio_results: list[Any]
    story: str = ""
    prompt: str = ""
    on_progress: Optional[ProgressHook] = None


@dataclass
class ExportResult:
    local_path: str
    download_url: str
    uploaded_url: Optional[str] = None
    upload_error: Optional[str] = None
    started_at: float = 0.0
    finished_at: float = 0.0


@dataclass
class _Progress:
    """Overall percentage across N mux operations plus one concat."""

    total_ops: int
    hook: Optional[ProgressHook]
    loop: asyncio.AbstractEventLoop
    done_ops: int = field(default=0)

    def report(self, fraction: float = 0.0) -> None:
        if self.hook is None:
            return
        percent = min((self.done_ops + fraction) / self.total_ops * 100.0, 100.0)
        self.loop.call_soon_threadsafe(self.hook, percent)

    def advance(self) -> None:
        self.done_ops += 1
        self.report()


def _precheck(job: ExportJob) -> None:
    videos, audios = job.video_results, job.audio_results
    if not videos:
        raise ExportError("Please ensure all videos are loaded")
    if len(audios) != len(videos):
        raise ExportError("Mismatch between videos and narration audios.")
    for i, video in enumerate(videos):
        if isinstance(video, Failed):
            raise ExportError(f"Video {i + 1} has an error: {video.message}")
        if not isinstance(video, Success):
            raise ExportError("Please ensure all videos are loaded")
    for i, audio in enumerate(audios):
        if not isinstance(audio, Success):
            raise ExportError(f"Narration {i + 1} has no audio.")


class ExportQueue:
    """FIFO of export jobs drained by a single worker.

    Jobs enqueued while another is running wait their turn; they are never
    dropped or run in parallel. The transcoder is held under a lock for the
    whole of steps 1-3 of a job.
    """

    def __init__(
        self,
        fetch: FetchFn,
        transcoder: Transcoder,
        upload: Optional[UploadFn] = None,
        output_dir: str | Path | None = None,
        files_url: str | None = None,
    ):
        self._fetch = fetch
        self._transcoder = transcoder
        self._upload = upload
        self._output_dir = Path(output_dir or settings.output_base_dir)
        self._files_url = (files_url or settings.public_files_url).rstrip("/")
        self._queue: deque[tuple[ExportJob, asyncio.Future]] = deque()
        self._worker: asyncio.Task | None = None
        self._transcoder_lock = asyncio.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, job: ExportJob) -> asyncio.Future:
        """Queue *job*; the returned future resolves to an ``ExportResult``."""
        future = asyncio.get_running_loop().create_future()
        self._queue.append((job, future))
        logger.info("export.job.queued", project_id=job.project_id, pending=len(self._queue))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return future

    async def _drain(self) -> None:
        while self._queue:
            job, future = self._queue.popleft()
            self._running = True
            try:
                result = await self._run_job(job)
            except ExportError as exc:
                logger.warning("export.job.failed", project_id=job.project_id, error=exc.message)
                if not future.done():
                    future.set_exception(exc)
            except Exception as exc:
                logger.exception("export.job.failed", project_id=job.project_id)
                if not future.done():
                    future.set_exception(ExportError(str(exc) or FALLBACK_MESSAGE))
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._running = False

    async def _run_job(self, job: ExportJob) -> ExportResult:
        started_at = time.monotonic()
        logger.info("export.job.start", project_id=job.project_id, clips=len(job.video_results))
        _precheck(job)

        count = len(job.video_results)
        progress = _Progress(total_ops=count + 1, hook=job.on_progress, loop=asyncio.get_running_loop())
        progress.report()

        dest_dir = self._output_dir / job.project_id
        with tempfile.TemporaryDirectory(prefix="story_export_") as workdir:
            work = Path(workdir)
            try:
                async with self._transcoder_lock:
                    merged: list[str] = []
                    for i in range(count):
                        merged.append(await self._mux_pair(work, i, job, progress))
                        progress.advance()

                    list_path = write_concat_list(merged, str(work / "filelist.txt"))
                    final_tmp = str(work / "final_output.mp4")
                    await asyncio.to_thread(
                        self._transcoder.concat, list_path, final_tmp, progress.report,
                    )
                    progress.advance()
            except ExportError:
                raise
            except Exception as exc:
                raise ExportError(str(exc) or FALLBACK_MESSAGE) from exc

            dest_dir.mkdir(parents=True, exist_ok=True)
            name = f"final_video_{int(time.time() * 1000)}.mp4"
            local_path = dest_dir / name
            shutil.move(final_tmp, local_path)

        result = ExportResult(
            local_path=str(local_path),
            download_url=f"{self._files_url}/{job.project_id}/{name}",
            started_at=started_at,
        )
        logger.info("export.job.merged", project_id=job.project_id, local_path=result.local_path)

        if self._upload is not None:
            try:
                result.uploaded_url = await self._upload(local_path.read_bytes())
            except Exception as exc:
                logger.exception("export.upload.failed", project_id=job.project_id)
                result.upload_error = str(exc) or "Failed to upload final video"

        result.finished_at = time.monotonic()
        logger.info(
            "export.job.done",
            project_id=job.project_id,
            uploaded=result.uploaded_url is not None,
            elapsed_sec=round(result.finished_at - started_at, 2),
        )
        return result

    async def _mux_pair(self, work: Path, index: int, job: ExportJob, progress: _Progress) -> str:
        video_path = work / f"video{index}.mp4"
        audio_path = work / f"narration{index}.mp3"
        video_path.write_bytes(await self._fetch(job.video_results[index].value))
        audio_path.write_bytes(await self._fetch(job.audio_results[index].value))

        output_path = str(work / f"merged{index}.mp4")
        await asyncio.to_thread(
            self._transcoder.mux, str(video_path), str(audio_path), output_path, progress.report,
        )
        return output_path
