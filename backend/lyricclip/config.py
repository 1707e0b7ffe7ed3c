"""Application configuration."""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LYRICCLIP_",
    )

    # App settings
    app_name: str = "LyricClip"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/lyricclip.db"

    # Data directories
    data_dir: Path = Path("./data")
    uploads_dir: Path = Path("./data/uploads")
    renders_dir: Path = Path("./data/renders")

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Analysis
    analysis_sample_rate: int = 16000  # Decode rate for PCM analysis

    # Transcription (optional, faster-whisper)
    enable_transcription: bool = False
    transcription_model: str = "small.en"
    transcription_device: str = "cpu"
    transcription_compute_type: str = "int8"
    transcription_cache_ttl_seconds: float = 7 * 24 * 3600

    # Export settings
    export_video_codec: str = "libx264"
    export_video_preset: str = "veryfast"
    export_video_crf: int = 20
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "192k"

    # Render defaults
    default_ducking_db: float = 8.0
    default_fade_ms: int = 250
    render_progress_interval: float = 0.5  # Min seconds between progress writes

    # bullmq is used when a Redis URL is configured
    redis_url: Optional[str] = None
    render_queue_name: str = "lyricclip-renders"

    # Frontend
    frontend_url: str = "http://localhost:3000"


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.uploads_dir.mkdir(parents=True, exist_ok=True)
settings.renders_dir.mkdir(parents=True, exist_ok=True)
