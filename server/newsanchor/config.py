"""Configuration helpers for the video generation service."""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from newsanchor import SERVER_DIR


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once at import time. Clients pull credentials from here when
    they are constructed and fail fast if a required one is absent.
    """

    # Speech synthesis (Google Cloud Text-to-Speech). The client library reads
    # GOOGLE_APPLICATION_CREDENTIALS on its own; we only surface it for preflight.
    google_application_credentials: Optional[str] = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    tts_language_code: str = os.getenv("TTS_LANGUAGE_CODE", "en-US")
    tts_male_voice: str = os.getenv("TTS_MALE_VOICE", "en-US-Neural2-D")
    tts_female_voice: str = os.getenv("TTS_FEMALE_VOICE", "en-US-Neural2-F")
    tts_speaking_rate: float = float(os.getenv("TTS_SPEAKING_RATE", "1.0"))

    # Local media tooling.
    scratch_dir: str = os.getenv("SCRATCH_DIR", os.path.join(tempfile.gettempdir(), "newsanchor"))
    avatar_dir: str = os.getenv("AVATAR_DIR", str(SERVER_DIR / "avatars"))
    ffmpeg_binary: str = os.getenv("FFMPEG_BINARY", "ffmpeg")
    ffprobe_binary: str = os.getenv("FFPROBE_BINARY", "ffprobe")
    video_width: int = int(os.getenv("VIDEO_WIDTH", "1920"))
    video_height: int = int(os.getenv("VIDEO_HEIGHT", "1080"))
    # Shared by the baseline encode, the fallback animation and the lip-sync request.
    video_fps: int = int(os.getenv("VIDEO_FPS", "30"))
    fallback_max_zoom: float = float(os.getenv("FALLBACK_MAX_ZOOM", "1.1"))
    fallback_zoom_step: float = float(os.getenv("FALLBACK_ZOOM_STEP", "0.0015"))
    audio_bitrate: str = os.getenv("AUDIO_BITRATE", "192k")
    default_audio_duration_seconds: float = float(os.getenv("DEFAULT_AUDIO_DURATION_SECONDS", "30"))

    # Durable storage + result recording (Supabase).
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_storage_bucket: str = os.getenv("SUPABASE_STORAGE_BUCKET", "anchor-media")
    supabase_storage_folder: str = os.getenv("SUPABASE_STORAGE_FOLDER", "ai-news-summaries")
    supabase_results_table: str = os.getenv("SUPABASE_RESULTS_TABLE", "video_summaries")
    record_results: bool = _env_bool("RECORD_RESULTS", True)

    # Hosted lip-sync job API (sync.so).
    sync_api_key: Optional[str] = os.getenv("SYNC_API_KEY")
    sync_api_base: str = os.getenv("SYNC_API_BASE", "https://api.sync.so/v2")
    sync_model: str = os.getenv("SYNC_MODEL", "lipsync-2.0.0")
    sync_poll_interval_seconds: float = float(os.getenv("SYNC_POLL_INTERVAL_SECONDS", "10"))
    sync_max_poll_attempts: int = int(os.getenv("SYNC_MAX_POLL_ATTEMPTS", "30"))

    # Avatar-as-a-service provider (HeyGen) for direct-provider mode.
    heygen_api_key: Optional[str] = os.getenv("HEYGEN_API_KEY")
    heygen_api_base: str = os.getenv("HEYGEN_API_BASE", "https://api.heygen.com")
    heygen_male_voice_id: Optional[str] = os.getenv("HEYGEN_MALE_VOICE_ID")
    heygen_female_voice_id: Optional[str] = os.getenv("HEYGEN_FEMALE_VOICE_ID")
    heygen_max_poll_attempts: int = int(os.getenv("HEYGEN_MAX_POLL_ATTEMPTS", "30"))
    heygen_initial_delay_seconds: float = float(os.getenv("HEYGEN_INITIAL_DELAY_SECONDS", "10"))
    heygen_base_delay_seconds: float = float(os.getenv("HEYGEN_BASE_DELAY_SECONDS", "5"))
    heygen_max_delay_seconds: float = float(os.getenv("HEYGEN_MAX_DELAY_SECONDS", "60"))
    heygen_max_jitter_seconds: float = float(os.getenv("HEYGEN_MAX_JITTER_SECONDS", "5"))
    heygen_max_text_chars: int = int(os.getenv("HEYGEN_MAX_TEXT_CHARS", "1500"))

    # Providers can be slow; synthesis/upload/submission share one generous timeout.
    provider_request_timeout_seconds: float = float(os.getenv("PROVIDER_REQUEST_TIMEOUT_SECONDS", "300"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
