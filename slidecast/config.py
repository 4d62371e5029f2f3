from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SLIDECAST_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "slidecast"
    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "INFO"

    # Working storage and local output
    work_root: str = "work"
    output_root: str = "output"
    public_base_url: str = ""

    # Render target
    render_width: int = 1280
    render_height: int = 768
    render_fps: int = 30
    transition: str = "fade"
    transition_duration: float = 0.5
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    caption_font_path: str = ""
    render_timeout_seconds: float = 600.0

    # Slide timing
    default_slide_duration: float = 4.0
    min_slide_duration: float = 2.0

    # Captions
    caption_max_words_per_line: int = 8
    caption_default_color: str = "white"
    caption_default_position: str = "bottom"

    # Mixing policy
    music_gain: float = 0.2
    narration_gain: float = 1.0
    audio_sample_rate: int = 44100

    # Asset acquisition
    fetch_timeout_seconds: float = 30.0
    fetch_retries: int = 3
    fetch_backoff_seconds: float = 1.0
    # Directory local and file:// asset refs may read from; empty disables them
    local_asset_root: str = ""

    # Webhook delivery
    webhook_timeout_seconds: float = 10.0
    webhook_retries: int = 2
    webhook_backoff_seconds: float = 1.0

    # Blob store: local | s3 | supabase
    blob_store: str = "local"
    storage_folder_prefix: str = "videos"
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "generated-videos"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str = "virtual"
    supabase_url: str = ""
    supabase_public_url: str = ""
    supabase_bucket: str = "videos"
    supabase_api_key: str = ""

    # Job lifecycle
    cleanup_delay_success_seconds: float = 30.0
    cleanup_delay_failure_seconds: float = 5.0
    job_retention_seconds: float = 3600.0
    stale_job_retention_seconds: float = 86400.0
    eviction_interval_seconds: float = 60.0
    max_concurrent_jobs: int = 0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
