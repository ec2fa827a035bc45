"""MoviePy transcoding: mux narration onto scene clips and concatenate them."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import structlog
from moviepy import AudioFileClip, VideoFileClip, concatenate_videoclips
from proglog import ProgressBarLogger

from story_studio.config import settings

logger = structlog.get_logger()

ProgressCallback = Callable[[float], None]


class FractionLogger(ProgressBarLogger):
    """Forward MoviePy's frame progress as a fraction in ``[0, 1]``."""

    def __init__(self, on_fraction: ProgressCallback):
        super().__init__()
        self._on_fraction = on_fraction

    def bars_callback(self, bar, attr, value, old_value=None):
        if attr != "index":
            return
        total = self.bars[bar].get("total") or 0
        if total:
            self._on_fraction(max(0.0, min(value / total, 1.0)))


def write_concat_list(paths: list[str], list_path: str) -> str:
    """Write an ffmpeg concat-demuxer list naming *paths* in order."""
    lines = [f"file '{Path(p).name}'" for p in paths]
    Path(list_path).write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


def read_concat_list(list_path: str) -> list[str]:
    """Resolve the entries of a concat list relative to the list's directory."""
    base = Path(list_path).parent
    paths: list[str] = []
    for line in Path(list_path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line.startswith("file "):
            continue
        name = line[len("file "):].strip().strip("'")
        paths.append(str(base / name))
    return paths


class MoviePyTranscoder:
    """In-process transcoder. Not safe for concurrent use; callers serialize access."""

    def __init__(self, fps: int | None = None):
        self.fps = fps or settings.video_fps

    def mux(
        self,
        video_path: str,
        audio_path: str,
        output_path: str,
        on_fraction: Optional[ProgressCallback] = None,
    ) -> str:
        """Lay the narration track onto the scene clip."""
        video = VideoFileClip(video_path)
        audio = AudioFileClip(audio_path)
        try:
            merged = video.with_audio(audio)
            merged.write_videofile(
                output_path,
                fps=self.fps,
                codec="libx264",
                audio_codec="aac",
                preset="ultrafast",
                logger=FractionLogger(on_fraction) if on_fraction else None,
            )
        finally:
            audio.close()
            video.close()

        logger.info("transcoder.mux.done", output_path=output_path)
        return output_path

    def concat(
        self,
        list_path: str,
        output_path: str,
        on_fraction: Optional[ProgressCallback] = None,
    ) -> str:
        """Concatenate the clips named in *list_path* into one file."""
        paths = read_concat_list(list_path)
        if not paths:
            raise RuntimeError(f"Concat list is empty: {list_path}")

        clips = [VideoFileClip(p) for p in paths]
        try:
            final = concatenate_videoclips(clips, method="chain")
            final.write_videofile(
                output_path,
                fps=self.fps,
                codec="libx264",
                audio_codec="aac",
                preset="ultrafast",
                logger=FractionLogger(on_fraction) if on_fraction else None,
            )
            final.close()
        finally:
            for clip in clips:
                clip.close()

        logger.info("transcoder.concat.done", output_path=output_path, clips=len(paths))
        return output_path
