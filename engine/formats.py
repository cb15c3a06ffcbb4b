from __future__ import annotations

import re
import urllib.parse
from typing import Any, Optional, Sequence

from engine.providers import StreamFormat

HIGHEST_QUALITY = "highest"
TARGET_CONTAINER = "mp4"

_VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|v/|shorts/|live/)|youtu\.be/)([A-Za-z0-9_-]{11})"
)
_YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtu.be",
    "www.youtu.be",
}


def extract_video_id(url: str | None) -> Optional[str]:
    if not url:
        return None
    match = _VIDEO_ID_RE.search(url)
    if match:
        return match.group(1)
    return None


def is_youtube_url(url: str | None) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urllib.parse.urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    if (parsed.hostname or "").lower() not in _YOUTUBE_HOSTS:
        return False
    return extract_video_id(url) is not None


def select_format(
    formats: Sequence[StreamFormat],
    quality: str | None = HIGHEST_QUALITY,
    *,
    container: str = TARGET_CONTAINER,
) -> Optional[StreamFormat]:
    """Pick the stream to download.

    Candidates are ``container`` streams carrying audio and video; when there
    are none, any ``container`` stream with video. ``"highest"`` takes the
    first stream of maximum height, anything else an exact quality label
    match or the first candidate.
    """
    in_container = [f for f in formats if (f.container or "").lower() == container and f.has_video]
    candidates = [f for f in in_container if f.has_audio] or in_container
    if not candidates:
        return None

    if not quality or quality == HIGHEST_QUALITY:
        selected = candidates[0]
        for candidate in candidates[1:]:
            if (candidate.height or 0) > (selected.height or 0):
                selected = candidate
        return selected

    for candidate in candidates:
        if candidate.quality_label == quality:
            return candidate
    return candidates[0]


def format_duration(seconds: Any) -> Optional[str]:
    """``125`` -> ``"2:05"``; ``3725`` -> ``"1:02:05"``; ``None`` when unknown."""
    try:
        total = int(float(seconds))
    except (TypeError, ValueError):
        return None
    if total < 0:
        return None
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def describe_format(fmt: StreamFormat) -> dict[str, Any]:
    return {
        "formatId": fmt.format_id,
        "container": fmt.container,
        "qualityLabel": fmt.quality_label,
        "height": fmt.height,
        "width": fmt.width,
        "fps": fmt.fps,
        "hasVideo": fmt.has_video,
        "hasAudio": fmt.has_audio,
        "bitrate": fmt.bitrate,
        "filesize": fmt.filesize,
    }
