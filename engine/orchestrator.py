"""Request orchestration: cache check, fetch, derive, respond."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import functools
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Sequence

import anyio

from config.settings import DEFAULT_AUDIO_FORMAT, DEFAULT_FRAME_RATE, Settings
from engine.cache import ArtifactCategory, DiskCache, format_bytes
from engine.errors import (
    MSG_INVALID_URL,
    MSG_NO_FORMATS,
    InputError,
    NotFoundError,
    TranscodeError,
    UpstreamUnavailableError,
    classify_error,
    is_retryable_error,
)
from engine.fallback import ClientIdentity, parse_client_order, with_fallback
from engine.formats import (
    HIGHEST_QUALITY,
    describe_format,
    extract_video_id,
    format_duration,
    is_youtube_url,
    select_format,
)
from engine.paths import resolve_within
from engine.providers import VideoInfo, VideoProvider
from engine.retry import RetryPolicy, with_retry
from media import ffmpeg
from media.ffprobe import probe_video_stream

logger = logging.getLogger(__name__)

VIDEO_EXT = "mp4"
DELIVERY_INLINE = "inline"
DELIVERY_FILES = "files"
PURGE_TYPES = ("all", "videos", "frames", "audio")
CACHE_FIRST_SUGGESTION = "Cache the video first via /api/download-cache, then retry."


def _cleanup_dir(path: Optional[str]) -> None:
    if not path:
        return
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError:
        logger.warning("[CLEANUP] failed to remove temp dir path=%s", path)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _frame_variant(frame_rate: Optional[float], frame_count: Optional[int]) -> str:
    """Name of the cached frame set for one sampling request: ``count-10`` or ``rate-0.5``."""
    if frame_count:
        return f"count-{frame_count}"
    return f"rate-{frame_rate:g}"


class ExtractionOrchestrator:
    def __init__(
        self,
        settings: Settings,
        cache: DiskCache,
        provider: VideoProvider,
        *,
        public_dir: str,
        temp_dir: Optional[str] = None,
        identities: Optional[Sequence[ClientIdentity]] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.provider = provider
        self.public_dir = public_dir
        self.temp_dir = temp_dir
        self.identities = tuple(identities or parse_client_order(settings.client_order))
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._key_locks: dict[str, list] = {}

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @contextlib.asynccontextmanager
    async def _locked(self, name: str):
        """Serialize work on one artifact; the entry is dropped when nobody holds or waits."""
        entry = self._key_locks.setdefault(name, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._key_locks.pop(name, None)

    def _mkdtemp(self, prefix: str) -> str:
        if self.temp_dir:
            os.makedirs(self.temp_dir, exist_ok=True)
        return tempfile.mkdtemp(prefix=prefix, dir=self.temp_dir)

    @staticmethod
    def _require_url(url: Optional[str]) -> str:
        cleaned = str(url or "").strip()
        if not cleaned:
            raise InputError("URL is required")
        if not is_youtube_url(cleaned):
            raise InputError(MSG_INVALID_URL)
        return cleaned

    def _resolve_key(self, url: Optional[str], video_id: Optional[str]) -> tuple[Optional[str], str]:
        if url and str(url).strip():
            cleaned = self._require_url(url)
            return cleaned, self.cache.key_for(cleaned)
        key = str(video_id or "").strip().lower()
        if not key:
            raise InputError("URL or videoId is required")
        if len(key) != 32 or any(ch not in "0123456789abcdef" for ch in key):
            raise InputError("videoId must be a cache key returned by /api/download-cache")
        return None, key

    async def _fetch_info(self, url: str) -> VideoInfo:
        def _on_retry(error: BaseException, attempt: int) -> None:
            logger.info("[FETCH] retrying url=%s attempt=%s reason=%s", url, attempt, classify_error(error))

        async def _attempt(client: ClientIdentity) -> VideoInfo:
            return await with_retry(
                functools.partial(anyio.to_thread.run_sync, self.provider.get_info, url, client),
                self.retry_policy,
                on_retry=_on_retry,
                should_retry=is_retryable_error,
            )

        return await with_fallback(_attempt, self.identities)

    async def _oembed(self, url: str) -> Optional[dict[str, Any]]:
        try:
            return await anyio.to_thread.run_sync(self.provider.lookup_oembed, url, extract_video_id(url))
        except Exception:
            logger.exception("[OEMBED] lookup failed url=%s", url)
            return None

    @staticmethod
    def _info_payload(info: VideoInfo) -> dict[str, Any]:
        video_formats = [describe_format(f) for f in info.formats if f.has_video]
        audio_formats = [describe_format(f) for f in info.formats if f.has_audio and not f.has_video]
        return {
            "title": info.title,
            "thumbnail": info.thumbnail,
            "duration": format_duration(info.duration_seconds),
            "lengthSeconds": info.duration_seconds,
            "author": info.author,
            "viewCount": info.view_count,
            "uploadDate": info.upload_date,
            "description": info.description,
            "formats": video_formats,
            "audioFormats": audio_formats,
            "client": info.client,
            "source": info.source,
            "degraded": info.degraded,
        }

    # ------------------------------------------------------------------
    # video info / download
    # ------------------------------------------------------------------
    async def get_video_info(self, url: Optional[str]) -> dict[str, Any]:
        url = self._require_url(url)
        try:
            info = await self._fetch_info(url)
        except Exception as exc:
            message = classify_error(exc)
            logger.warning("[FETCH] all clients failed url=%s error=%s", url, exc)
            fallback = await self._oembed(url)
            if not fallback:
                raise UpstreamUnavailableError(message, details=str(exc)) from exc
            logger.info("[FETCH] degraded info from oEmbed url=%s", url)
            info = VideoInfo(
                video_id=extract_video_id(url),
                title=fallback.get("title"),
                thumbnail=fallback.get("thumbnail"),
                author=fallback.get("author"),
                source="oembed",
                degraded=True,
            )
        return self._info_payload(info)

    async def _info_or_unavailable(self, url: str, *, with_oembed: bool) -> VideoInfo:
        try:
            return await self._fetch_info(url)
        except Exception as exc:
            message = classify_error(exc)
            logger.warning("[FETCH] all clients failed url=%s error=%s", url, exc)
            if not with_oembed:
                raise UpstreamUnavailableError(message, details=str(exc)) from exc
            fallback = await self._oembed(url)
            if fallback:
                raise UpstreamUnavailableError(
                    "Direct video download is currently unavailable due to YouTube API restrictions.",
                    details=message,
                    suggestion="You can still view video information and try again later.",
                    video_info=fallback,
                ) from exc
            raise UpstreamUnavailableError(
                "Video download is temporarily unavailable. Please try again later or use a different video.",
                details=message,
            ) from exc

    async def resolve_download(self, url: Optional[str], quality: Optional[str] = None) -> dict[str, Any]:
        url = self._require_url(url)
        info = await self._info_or_unavailable(url, with_oembed=False)
        selected = select_format(info.formats, quality or HIGHEST_QUALITY)
        if selected is None or not selected.url:
            raise InputError(MSG_NO_FORMATS)
        return {
            "downloadUrl": selected.url,
            "title": info.title,
            "quality": selected.quality_label,
            "filesize": selected.filesize,
        }

    async def cache_video(self, url: Optional[str], quality: Optional[str] = None) -> dict[str, Any]:
        url = self._require_url(url)
        key = self.cache.key_for(url)
        file_name = f"{key}.{VIDEO_EXT}"

        async with self._locked(f"videos:{key}"):
            path = self.cache.path_for(ArtifactCategory.VIDEOS, key, VIDEO_EXT)
            if self.cache.has(ArtifactCategory.VIDEOS, key, VIDEO_EXT):
                logger.info("[CACHE] hit category=videos key=%s", key)
                return {
                    "success": True,
                    "videoId": key,
                    "fileName": file_name,
                    "fileSize": path.stat().st_size,
                    "cached": True,
                    "message": "Video already cached and ready for processing",
                }

            info = await self._info_or_unavailable(url, with_oembed=True)
            selected = select_format(info.formats, quality or HIGHEST_QUALITY)
            if selected is None or not selected.url:
                raise InputError(MSG_NO_FORMATS)

            temp_dir = self._mkdtemp("ytbshow-video-")
            try:
                temp_path = Path(temp_dir) / file_name
                try:
                    await with_retry(
                        functools.partial(anyio.to_thread.run_sync, self.provider.download, selected.url, temp_path),
                        self.retry_policy,
                        should_retry=is_retryable_error,
                    )
                except Exception as exc:
                    raise UpstreamUnavailableError(classify_error(exc), details=str(exc)) from exc
                stored = await anyio.to_thread.run_sync(
                    self.cache.put, ArtifactCategory.VIDEOS, key, temp_path, VIDEO_EXT
                )
            finally:
                _cleanup_dir(temp_dir)

        size = stored.stat().st_size
        logger.info("[CACHE] video cached key=%s size=%s", key, size)
        return {
            "success": True,
            "videoId": key,
            "fileName": file_name,
            "fileSize": size,
            "title": info.title,
            "quality": selected.quality_label,
            "cached": False,
            "message": "Video downloaded and cached successfully",
        }

    def cached_video_path(self, key: str) -> Path:
        return self.cache.path_for(ArtifactCategory.VIDEOS, key, VIDEO_EXT)

    async def _ensure_source(self, url: Optional[str], key: str) -> tuple[Path, Optional[str]]:
        """Return the cached source video, fetching it first when the URL is known."""
        title = None
        if not self.cache.has(ArtifactCategory.VIDEOS, key, VIDEO_EXT):
            if not url:
                raise NotFoundError(
                    "Video not found in cache",
                    suggestion=CACHE_FIRST_SUGGESTION,
                )
            result = await self.cache_video(url)
            title = result.get("title")
        return self.cached_video_path(key), title

    # ------------------------------------------------------------------
    # audio
    # ------------------------------------------------------------------
    async def extract_audio(
        self,
        url: Optional[str] = None,
        video_id: Optional[str] = None,
        audio_format: Optional[str] = None,
    ) -> dict[str, Any]:
        fmt = str(audio_format or DEFAULT_AUDIO_FORMAT).strip().lower()
        if fmt not in ffmpeg.AUDIO_CODECS:
            raise InputError(f"Unsupported audio format: {fmt}")
        url, key = self._resolve_key(url, video_id)

        title = None
        async with self._locked(f"audio:{key}:{fmt}"):
            data = self.cache.get(ArtifactCategory.AUDIO, key, fmt)
            from_cache = data is not None
            if data is None:
                source, title = await self._ensure_source(url, key)
                temp_dir = self._mkdtemp("ytbshow-audio-")
                try:
                    audio_path = os.path.join(temp_dir, f"{key}.{fmt}")
                    try:
                        await anyio.to_thread.run_sync(
                            functools.partial(
                                ffmpeg.extract_audio,
                                str(source),
                                audio_path,
                                fmt,
                                bitrate=self.settings.audio_bitrate,
                                ffmpeg_bin=self.settings.ffmpeg_bin,
                            )
                        )
                    except Exception as exc:
                        logger.error("[FFMPEG] audio extraction failed key=%s error=%s", key, exc)
                        raise TranscodeError("Failed to extract audio from the video.", details=str(exc)) from exc
                    await anyio.to_thread.run_sync(self.cache.put, ArtifactCategory.AUDIO, key, audio_path, fmt)
                finally:
                    _cleanup_dir(temp_dir)
                data = self.cache.get(ArtifactCategory.AUDIO, key, fmt)
            else:
                logger.info("[CACHE] hit category=audio key=%s", key)

        encoded = _b64(data)
        payload = {
            "success": True,
            "audio": {
                "filename": f"{key}.{fmt}",
                "data": encoded,
                "dataUrl": f"data:audio/{fmt};base64,{encoded}",
                "format": fmt,
                "size": len(data),
            },
            "videoId": key,
            "cached": from_cache,
        }
        if title:
            payload["videoTitle"] = title
        return payload

    # ------------------------------------------------------------------
    # frames
    # ------------------------------------------------------------------
    def _validate_frame_args(
        self, frame_rate: Optional[float], frame_count: Optional[int]
    ) -> tuple[Optional[float], Optional[int]]:
        if frame_count is not None:
            if frame_count <= 0:
                raise InputError("frameCount must be a positive integer")
            if frame_count > self.settings.max_frame_count:
                raise InputError(f"frameCount must not exceed {self.settings.max_frame_count}")
            return None, int(frame_count)
        if frame_rate is not None and frame_rate <= 0:
            raise InputError("frameRate must be positive")
        return frame_rate or DEFAULT_FRAME_RATE, None

    def _derive_frames(
        self,
        source: Path,
        frames_dir: str,
        frame_rate: Optional[float],
        frame_count: Optional[int],
    ) -> list[Path]:
        total_frames = None
        if frame_count:
            try:
                total_frames = probe_video_stream(str(source), ffprobe_bin=self.settings.ffprobe_bin).frame_count
            except (RuntimeError, ValueError):
                logger.warning("[FFMPEG] ffprobe frame count failed; sampling every frame path=%s", source)
        return ffmpeg.extract_frames(
            str(source),
            frames_dir,
            frame_rate=frame_rate,
            frame_count=frame_count,
            total_frames=total_frames,
            ffmpeg_bin=self.settings.ffmpeg_bin,
        )

    def _publish_frames(self, prefix: str, frames: list[Path]) -> list[dict[str, str]]:
        os.makedirs(self.public_dir, exist_ok=True)
        published = []
        for frame in frames:
            filename = f"{prefix}_{frame.name}"
            shutil.copyfile(frame, os.path.join(self.public_dir, filename))
            published.append({"filename": filename, "url": f"/api/files/{filename}"})
        return published

    async def extract_frames(
        self,
        url: Optional[str] = None,
        video_id: Optional[str] = None,
        *,
        frame_rate: Optional[float] = None,
        frame_count: Optional[int] = None,
        delivery: Optional[str] = None,
    ) -> dict[str, Any]:
        delivery = (delivery or DELIVERY_INLINE).strip().lower()
        if delivery not in (DELIVERY_INLINE, DELIVERY_FILES):
            raise InputError("delivery must be 'inline' or 'files'")
        frame_rate, frame_count = self._validate_frame_args(frame_rate, frame_count)
        url, key = self._resolve_key(url, video_id)

        variant = _frame_variant(frame_rate, frame_count)
        title = None
        async with self._locked(f"frames:{key}:{variant}"):
            frames = self.cache.get(ArtifactCategory.FRAMES, key, variant)
            from_cache = frames is not None
            if frames is None:
                source, title = await self._ensure_source(url, key)
                temp_dir = self._mkdtemp("ytbshow-frames-")
                try:
                    frames_dir = os.path.join(temp_dir, key)
                    try:
                        produced = await anyio.to_thread.run_sync(
                            self._derive_frames, source, frames_dir, frame_rate, frame_count
                        )
                    except Exception as exc:
                        logger.error("[FFMPEG] frame extraction failed key=%s error=%s", key, exc)
                        raise TranscodeError("Failed to extract frames from the video.", details=str(exc)) from exc
                    await anyio.to_thread.run_sync(self.cache.put, ArtifactCategory.FRAMES, key, produced, variant)
                finally:
                    _cleanup_dir(temp_dir)
                frames = self.cache.get(ArtifactCategory.FRAMES, key, variant) or []
            else:
                logger.info("[CACHE] hit category=frames key=%s variant=%s", key, variant)

        if delivery == DELIVERY_FILES:
            items = await anyio.to_thread.run_sync(self._publish_frames, f"{key}_{variant}", frames)
        else:
            items = [{"filename": frame.name, "data": _b64(frame.read_bytes())} for frame in frames]

        payload = {
            "success": True,
            "frames": items,
            "videoId": key,
            "frameCount": len(items),
            "totalFrames": len(items),
            "cached": from_cache,
        }
        if title:
            payload["videoTitle"] = title
        return payload

    # ------------------------------------------------------------------
    # static files / cache management
    # ------------------------------------------------------------------
    def resolve_public_file(self, filename: str) -> str:
        resolved = resolve_within(self.public_dir, filename)
        if not resolved or os.sep in filename or not os.path.isfile(resolved):
            raise NotFoundError("File not found")
        return resolved

    def cache_stats(self) -> dict[str, Any]:
        return {"success": True, "cache": self.cache.stats()}

    def purge_cache(self, cache_type: Optional[str]) -> dict[str, Any]:
        cache_type = str(cache_type or "").strip().lower()
        if cache_type not in PURGE_TYPES:
            raise InputError("type must be one of: all, videos, frames, audio")
        result = self.cache.purge(cache_type)
        size_label = format_bytes(result.size)
        return {
            "success": True,
            "message": f"Cleared {result.count} cache item(s), freed {size_label}",
            "deleted": {"count": result.count, "size": result.size, "sizeFormatted": size_label},
        }

