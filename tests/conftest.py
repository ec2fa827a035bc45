"""Shared fixtures: fake external services, fake transcoder, studio factory."""

from __future__ import annotations

import asyncio
import sys
import threading
import time
from pathlib import Path

import pytest

_SRC = Path(__file__).resolve().parents[1] / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from story_studio.memory.history_store import InMemoryHistoryStore  # noqa: E402
from story_studio.pipeline.export import ExportQueue  # noqa: E402
from story_studio.pipeline.studio import StoryStudio, StudioServices  # noqa: E402
from story_studio.tools.moviepy_tools import read_concat_list  # noqa: E402

STORY_TEXT = (
    "In a quiet workshop, a small robot named Pip found a box of paints.\n\n"
    "Night after night it practised, until its canvas finally glowed with colour."
)


class FakeBackend:
    """Stand-in for the text, speech, image and video services."""

    def __init__(self, scene_count: int = 5):
        self.scene_count_value = scene_count
        self.fail_story = False
        self.prompt_lines: int | None = None
        self.narration_count: int | None = None
        self.fail_audio: set[int] = set()
        self.fail_image_prompts: set[str] = set()
        self.fail_video_prompts: set[str] = set()
        self.image_gate: asyncio.Event | None = None
        self.image_started = asyncio.Event()
        self.calls: dict[str, list] = {
            "story": [], "prompts": [], "narrations": [], "audio": [], "image": [], "video": [],
        }

    async def write_story(self, full_prompt: str) -> str:
        self.calls["story"].append(full_prompt)
        if self.fail_story:
            raise RuntimeError("text model unavailable")
        return STORY_TEXT

    async def split_image_prompts(self, story: str, scene_count: int) -> str:
        self.calls["prompts"].append((story, scene_count))
        count = scene_count if self.prompt_lines is None else self.prompt_lines
        return "\n".join(f"{i + 1}. Scene {i + 1}: Pip paints at the easel" for i in range(count))

    async def write_narrations(self, story: str, prompts: list[str]) -> list[str]:
        self.calls["narrations"].append(list(prompts))
        count = len(prompts) if self.narration_count is None else self.narration_count
        return [f"Pip tries once more, stroke {i + 1}." for i in range(count)]

    async def synthesize(self, text: str, index: int) -> str:
        self.calls["audio"].append(index)
        if index in self.fail_audio:
            raise RuntimeError("speech service returned 503")
        return f"https://cdn.test/audio/scene_{index}.mp3"

    async def generate_image(self, prompt: str, **kwargs) -> str:
        self.calls["image"].append(prompt)
        if self.image_gate is not None:
            self.image_started.set()
            await self.image_gate.wait()
        if prompt in self.fail_image_prompts:
            raise RuntimeError("image service rejected the prompt")
        return f"https://cdn.test/images/{abs(hash(prompt))}.png"

    async def image_to_video(self, prompt: str, image_url: str) -> str:
        self.calls["video"].append((prompt, image_url))
        if prompt in self.fail_video_prompts:
            raise RuntimeError("video generation failed")
        return image_url.replace("/images/", "/videos/").replace(".png", ".mp4")

    async def scene_count(self) -> int:
        return self.scene_count_value

    def services(self) -> StudioServices:
        return StudioServices(
            write_story=self.write_story,
            split_image_prompts=self.split_image_prompts,
            write_narrations=self.write_narrations,
            synthesize=self.synthesize,
            generate_image=self.generate_image,
            image_to_video=self.image_to_video,
            scene_count=self.scene_count,
        )


class FakeTranscoder:
    """Writes byte-joined files instead of encoding; records call windows."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, float, float]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _enter(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def _exit(self):
        with self._lock:
            self.active -= 1

    def mux(self, video_path, audio_path, output_path, on_fraction=None):
        self._enter()
        start = time.monotonic()
        try:
            time.sleep(self.delay)
            if on_fraction:
                on_fraction(0.5)
            data = Path(video_path).read_bytes() + b"|" + Path(audio_path).read_bytes()
            Path(output_path).write_bytes(data)
        finally:
            self._exit()
        self.calls.append(("mux", start, time.monotonic()))
        return output_path

    def concat(self, list_path, output_path, on_fraction=None):
        self._enter()
        start = time.monotonic()
        try:
            paths = read_concat_list(list_path)
            Path(output_path).write_bytes(b"\n".join(Path(p).read_bytes() for p in paths))
            if on_fraction:
                on_fraction(1.0)
        finally:
            self._exit()
        self.calls.append(("concat", start, time.monotonic()))
        return output_path


class FakeStorage:
    def __init__(self):
        self.fail_fetch: set[str] = set()
        self.fail_upload = False
        self.fetched: list[str] = []
        self.uploaded: list[bytes] = []

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        if url in self.fail_fetch:
            raise RuntimeError(f"404 for {url}")
        return url.encode("utf-8")

    async def upload(self, data: bytes) -> str:
        if self.fail_upload:
            raise RuntimeError("bucket unavailable")
        self.uploaded.append(data)
        return f"https://storage.test/generated-videos/final_video_{len(self.uploaded)}.mp4"


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "output"


@pytest.fixture
def export_queue(storage, transcoder, output_dir):
    return ExportQueue(
        fetch=storage.fetch,
        transcoder=transcoder,
        upload=storage.upload,
        output_dir=output_dir,
        files_url="/files/output",
    )


@pytest.fixture
def history():
    return InMemoryHistoryStore()


@pytest.fixture
def make_studio(backend, export_queue, history):
    def factory(user_id=None, timeout=5.0):
        return StoryStudio(
            services=backend.services(),
            export_queue=export_queue,
            history=history,
            user_id=user_id,
            timeout=timeout,
        )

    return factory


@pytest.fixture
def studio(make_studio):
    return make_studio()
