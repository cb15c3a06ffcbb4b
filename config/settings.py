"""Application settings constants."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Retry defaults for calls into the extraction library.
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
DEFAULT_BACKOFF_FACTOR = 2.0

# Player clients tried in order when fetching video info.
DEFAULT_CLIENT_ORDER = ("web_embedded", "ios", "android", "tv")

DEFAULT_SOCKET_TIMEOUT_SECONDS = 30.0
DEFAULT_AUDIO_BITRATE = "192k"
DEFAULT_AUDIO_FORMAT = "mp3"
DEFAULT_FRAME_RATE = 1.0
MAX_FRAME_COUNT = 500


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    values = tuple(part.strip().lower() for part in raw.split(",") if part.strip())
    return values or default


@dataclass(frozen=True)
class Settings:
    app_version: str = "0.0.0"
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    client_order: tuple[str, ...] = field(default=DEFAULT_CLIENT_ORDER)
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT_SECONDS
    audio_bitrate: str = DEFAULT_AUDIO_BITRATE
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    max_frame_count: int = MAX_FRAME_COUNT

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_version=os.getenv("YTBSHOW_VERSION", "0.0.0"),
            max_retries=max(1, _env_int("YTBSHOW_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
            initial_delay=max(0.0, _env_float("YTBSHOW_INITIAL_DELAY_SECONDS", DEFAULT_INITIAL_DELAY_SECONDS)),
            max_delay=max(0.0, _env_float("YTBSHOW_MAX_DELAY_SECONDS", DEFAULT_MAX_DELAY_SECONDS)),
            backoff_factor=max(1.0, _env_float("YTBSHOW_BACKOFF_FACTOR", DEFAULT_BACKOFF_FACTOR)),
            client_order=_env_list("YTBSHOW_PLAYER_CLIENTS", DEFAULT_CLIENT_ORDER),
            socket_timeout=_env_float("YTBSHOW_SOCKET_TIMEOUT_SECONDS", DEFAULT_SOCKET_TIMEOUT_SECONDS),
            audio_bitrate=os.getenv("YTBSHOW_AUDIO_BITRATE", DEFAULT_AUDIO_BITRATE),
            ffmpeg_bin=os.getenv("YTBSHOW_FFMPEG_BIN", "ffmpeg"),
            ffprobe_bin=os.getenv("YTBSHOW_FFPROBE_BIN", "ffprobe"),
            max_frame_count=max(1, _env_int("YTBSHOW_MAX_FRAME_COUNT", MAX_FRAME_COUNT)),
        )
