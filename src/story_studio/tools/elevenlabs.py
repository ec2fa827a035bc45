"""ElevenLabs text-to-speech: async helper functions."""

from __future__ import annotations

import structlog
from elevenlabs import AsyncElevenLabs, VoiceSettings

from story_studio.config import settings
from story_studio.tools.supabase_storage import upload_audio

logger = structlog.get_logger()

_NARRATOR_SETTINGS = VoiceSettings(
    stability=0.55, similarity_boost=0.75, style=0.15, speed=1.0,
)


async def elevenlabs_tts(text: str, voice_id: str | None = None) -> bytes:
    """Convert a narration line to MP3 bytes.

    Raises:
        RuntimeError: If the API returns empty audio data.
    """
    voice_id = voice_id or settings.elevenlabs_voice_id

    logger.info("elevenlabs_tts.start", voice_id=voice_id, text_len=len(text))

    client = AsyncElevenLabs(api_key=settings.elevenlabs_api_key)

    audio_iter = client.text_to_speech.convert(
        voice_id=voice_id,
        text=text,
        model_id=settings.elevenlabs_model_id,
        voice_settings=_NARRATOR_SETTINGS,
    )

    chunks: list[bytes] = []
    async for chunk in audio_iter:
        chunks.append(chunk)

    audio_data = b"".join(chunks)
    if not audio_data:
        raise RuntimeError(f"ElevenLabs returned empty audio for voice_id={voice_id}")

    logger.info("elevenlabs_tts.done", bytes_generated=len(audio_data))
    return audio_data


async def synthesize_narration(text: str, scene_index: int) -> str:
    """Generate narration audio and store it; returns the public audio URL."""
    audio_data = await elevenlabs_tts(text)
    return await upload_audio(audio_data, scene_index)
