"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

# Built-in presets shipped with the package (quality matrix, bandwidth estimates)
PRESETS_DIR = Path(__file__).resolve().parent / "presets"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    data_root: Path = Path("/data")
    temp_dir: Path = Path("/data/temp")
    output_dir: Path = Path("/data/processed")
    cache_dir: Path = Path("/data/video_cache")
    config_dir: Path = PRESETS_DIR

    # Engines
    ffmpeg_timeout: int = 900
    remote_engine_url: str | None = None
    remote_engine_api_key: str | None = None
    remote_timeout: float = 600.0

    # Transcription (AssemblyAI-compatible REST API)
    speech_api_url: str = "https://api.assemblyai.com/v2"
    speech_api_key: str | None = None
    speech_language: str = "en"
    speech_poll_interval: float = 5.0
    speech_max_poll_attempts: int = 60

    # Processing defaults for unset options
    default_enable_face_blur: bool = True
    default_enable_voice_change: bool = True
    default_enable_transcription: bool = True
    default_quality: str = "medium"
    default_voice_effect: str = "deep"
    default_mode: str = "hybrid"

    max_concurrent_jobs: int = 2
    face_sample_stride: int = 30  # every Nth frame (~1 fps at 30 fps)
    face_box_padding: int = 20
    degraded_fallback_enabled: bool = True

    # Network profiling
    network_test_urls: list[str] = [
        "https://www.google.com/images/phd/px.gif",
        "https://www.cloudflare.com/cdn-cgi/trace",
    ]
    network_measure_interval: float = 30.0
    network_request_timeout: float = 5.0

    # On-device cache
    cache_max_size_bytes: int = 500 * 1024 * 1024
    cache_max_entries: int = 100
    cache_preload_limit: int = 5
    memory_pressure_threshold: float = 0.8
    memory_poll_interval: float = 10.0

    # Background job queue
    queue_max_workers: int = 2
    queue_max_retries: int = 3
    queue_retry_backoff: float = 1.0
    queue_limit: int = 50
    queue_history_limit: int = 100

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_pipeline: str | None = None
    log_level_engines: str | None = None
    log_level_transcription: str | None = None
    log_level_delivery: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_delivery_config(settings: Settings | None = None) -> dict:
    """
    Load adaptive delivery configuration from delivery.yaml.

    Lookup order (first found wins):
    1. config_dir/delivery.yaml
    2. built-in presets/delivery.yaml

    Args:
        settings: Optional settings instance

    Returns:
        Dict with "quality_matrix" and "connection_estimates" sections
    """
    if settings is None:
        settings = get_settings()

    config_path = settings.config_dir / "delivery.yaml"
    if not config_path.exists():
        config_path = PRESETS_DIR / "delivery.yaml"

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)
