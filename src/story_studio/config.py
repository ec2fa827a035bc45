"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings

LOCAL_DEV_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # LLM
    openai_api_key: str = ""
    text_model: str = "gpt-4o"
    text_temperature: float = 0.7

    # Media Generation
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "9BWtsMINqrJLrRacOk9x"
    elevenlabs_model_id: str = "eleven_multilingual_v2"

    fal_key: str = ""
    fal_image_model: str = "fal-ai/flux/schnell"
    image_size: str = "landscape_16_9"
    num_inference_steps: int = 4

    luma_api_key: str = ""
    luma_model: str = "ray-2"
    luma_aspect_ratio: str = "16:9"
    luma_duration: str = "5s"
    luma_poll_interval_sec: float = 5.0
    luma_poll_timeout_sec: float = 300.0

    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_audio_bucket: str = "audio"
    supabase_video_bucket: str = "generated-videos"
    history_table: str = "story_generations"
    settings_table: str = "settings"

    # Pipeline Settings
    story_length: int = 3
    request_timeout_sec: float = 300.0

    # Output
    output_base_dir: str = "./output"
    public_files_url: str = "/files/output"
    video_fps: int = 24

    # API (comma-separated, added to the local dev origins)
    allowed_origins: str = ""

    @property
    def cors_origins(self) -> list[str]:
        extra = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return sorted({*LOCAL_DEV_ORIGINS, *extra})


settings = Settings()
