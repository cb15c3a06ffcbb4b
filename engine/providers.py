"""Metadata/stream providers backed by third-party extraction libraries."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from yt_dlp import YoutubeDL

from engine.fallback import ClientIdentity

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StreamFormat:
    format_id: str
    container: str
    quality_label: Optional[str] = None
    height: Optional[int] = None
    width: Optional[int] = None
    fps: Optional[float] = None
    has_video: bool = False
    has_audio: bool = False
    bitrate: Optional[float] = None
    filesize: Optional[int] = None
    url: Optional[str] = None


@dataclass
class VideoInfo:
    video_id: Optional[str]
    title: Optional[str]
    thumbnail: Optional[str] = None
    duration_seconds: Optional[int] = None
    author: Optional[str] = None
    view_count: Optional[int] = None
    upload_date: Optional[str] = None
    description: str = ""
    formats: list[StreamFormat] = field(default_factory=list)
    client: Optional[str] = None
    source: str = "yt-dlp"
    degraded: bool = False


class VideoProvider(Protocol):
    name: str

    def get_info(self, url: str, client: ClientIdentity) -> VideoInfo:
        """Fetch metadata and stream URLs while impersonating ``client``."""

    def lookup_oembed(self, url: str, video_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Public metadata endpoint used when every client failed."""

    def download(self, stream_url: str, dest: Path) -> int:
        """Write the stream to ``dest`` and return the number of bytes written."""


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _float_or_none(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def stream_format_from_ytdlp(fmt: dict[str, Any]) -> StreamFormat:
    vcodec = str(fmt.get("vcodec") or "none").lower()
    acodec = str(fmt.get("acodec") or "none").lower()
    height = _int_or_none(fmt.get("height"))
    has_video = vcodec != "none"
    quality_label = fmt.get("format_note") if has_video else None
    if has_video and height and not (isinstance(quality_label, str) and quality_label.endswith("p")):
        quality_label = f"{height}p"
    return StreamFormat(
        format_id=str(fmt.get("format_id") or ""),
        container=str(fmt.get("ext") or "").lower(),
        quality_label=quality_label,
        height=height,
        width=_int_or_none(fmt.get("width")),
        fps=_float_or_none(fmt.get("fps")),
        has_video=has_video,
        has_audio=acodec != "none",
        bitrate=_float_or_none(fmt.get("tbr")),
        filesize=_int_or_none(fmt.get("filesize") or fmt.get("filesize_approx")),
        url=fmt.get("url"),
    )


def video_info_from_ytdlp(info: dict[str, Any], *, client: Optional[str] = None) -> VideoInfo:
    formats = [
        stream_format_from_ytdlp(fmt)
        for fmt in info.get("formats") or []
        if isinstance(fmt, dict) and fmt.get("url")
    ]
    return VideoInfo(
        video_id=info.get("id"),
        title=info.get("title"),
        thumbnail=info.get("thumbnail"),
        duration_seconds=_int_or_none(info.get("duration")),
        author=info.get("channel") or info.get("uploader"),
        view_count=_int_or_none(info.get("view_count")),
        upload_date=info.get("upload_date"),
        description=info.get("description") or "",
        formats=formats,
        client=client,
    )


def build_session(user_agent: str = USER_AGENT) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.4,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": user_agent, "Accept-Language": "en-US,en;q=0.9"})
    return session


class YtDlpProvider:
    name = "yt-dlp"

    def __init__(self, *, socket_timeout: float = 30.0, session: Optional[requests.Session] = None) -> None:
        self.socket_timeout = socket_timeout
        self._session = session or build_session()

    def build_opts(self, client: ClientIdentity) -> dict[str, Any]:
        return {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "socket_timeout": self.socket_timeout,
            "extractor_args": {"youtube": {"player_client": [client.value]}},
        }

    def get_info(self, url: str, client: ClientIdentity) -> VideoInfo:
        with YoutubeDL(self.build_opts(client)) as ydl:
            info = ydl.extract_info(url, download=False)
        if not isinstance(info, dict):
            raise RuntimeError("No streaming data available")
        return video_info_from_ytdlp(info, client=client.value)

    def lookup_oembed(self, url: str, video_id: Optional[str] = None) -> Optional[dict[str, Any]]:
        candidate_urls = []
        if video_id:
            candidate_urls.append(f"https://www.youtube.com/watch?v={video_id}")
        if url and url not in candidate_urls:
            candidate_urls.append(url)
        for candidate_url in candidate_urls:
            try:
                resp = self._session.get(
                    OEMBED_URL,
                    params={"url": candidate_url, "format": "json"},
                    timeout=min(self.socket_timeout, 10.0),
                )
                if not resp.ok:
                    logger.info("[OEMBED] url=%s status=%s", candidate_url, resp.status_code)
                    continue
                payload = resp.json() if resp.content else {}
            except (requests.RequestException, ValueError) as exc:
                logger.info("[OEMBED] url=%s error=%s", candidate_url, exc)
                continue
            if not isinstance(payload, dict) or not payload.get("title"):
                continue
            return {
                "title": str(payload.get("title") or "").strip(),
                "author": str(payload.get("author_name") or "").strip() or None,
                "thumbnail": str(payload.get("thumbnail_url") or "").strip() or None,
            }
        return None

    def download(self, stream_url: str, dest: Path) -> int:
        written = 0
        with self._session.get(stream_url, stream=True, timeout=self.socket_timeout) as resp:
            resp.raise_for_status()
            with open(dest, "wb") as handle:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
                        written += len(chunk)
        if written <= 0:
            try:
                os.remove(dest)
            except OSError:
                pass
            raise RuntimeError("Failed to download video: empty response")
        return written
