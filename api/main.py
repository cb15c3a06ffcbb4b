#!/usr/bin/env python3
import json
import logging
import math
import os
import re
import unicodedata
import urllib.parse
from typing import Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from config.settings import Settings
from engine.cache import DiskCache
from engine.errors import ExtractionError, classify_error
from engine.orchestrator import ExtractionOrchestrator
from engine.paths import build_engine_paths, ensure_dir
from engine.providers import YtDlpProvider
from engine.runtime import get_runtime_info

APP_NAME = "ytbshow API"


def _safe_json(value):
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {str(k): _safe_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_safe_json(v) for v in value]
    return value


class SafeJSONResponse(JSONResponse):
    def render(self, content):
        return json.dumps(
            _safe_json(content),
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        ).encode("utf-8")


def _setup_logging(log_dir):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    log_path = os.path.join(log_dir, "ytbshow.log")
    root.setLevel(logging.INFO)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == os.path.abspath(log_path):
                return
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    root.addHandler(file_handler)


def build_orchestrator(paths, settings=None):
    settings = settings or Settings.from_env()
    return ExtractionOrchestrator(
        settings,
        DiskCache(paths.cache_dir),
        YtDlpProvider(socket_timeout=settings.socket_timeout),
        public_dir=paths.public_dir,
        temp_dir=paths.temp_dir,
    )


class VideoInfoRequest(BaseModel):
    url: Optional[str] = None


class DownloadRequest(BaseModel):
    url: Optional[str] = None
    quality: Optional[str] = None
    mode: Optional[str] = None


class ExtractAudioRequest(BaseModel):
    url: Optional[str] = None
    video_id: Optional[str] = Field(default=None, alias="videoId")
    format: Optional[str] = None


class ExtractFramesRequest(BaseModel):
    url: Optional[str] = None
    video_id: Optional[str] = Field(default=None, alias="videoId")
    frame_rate: Optional[float] = Field(default=None, alias="frameRate")
    frame_count: Optional[int] = Field(default=None, alias="frameCount")
    delivery: Optional[str] = None


app = FastAPI(
    title=APP_NAME,
    description="Fetch YouTube video info, cache downloads, and extract audio and frames.",
    default_response_class=SafeJSONResponse,
)


@app.on_event("startup")
async def startup():
    app.state.paths = build_engine_paths()
    _setup_logging(app.state.paths.log_dir)
    app.state.orchestrator = build_orchestrator(app.state.paths)
    logging.info("Startup complete cache_dir=%s", app.state.paths.cache_dir)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return SafeJSONResponse(
        {"error": "Invalid request body", "details": str(exc.errors())},
        status_code=400,
    )


def _orchestrator() -> ExtractionOrchestrator:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        paths = getattr(app.state, "paths", None) or build_engine_paths()
        app.state.paths = paths
        orchestrator = build_orchestrator(paths)
        app.state.orchestrator = orchestrator
    return orchestrator


def _error_response(exc: Exception) -> SafeJSONResponse:
    if isinstance(exc, ExtractionError):
        if exc.status_code >= 500:
            logging.warning("Request failed status=%s error=%s details=%s", exc.status_code, exc.message, exc.details)
        return SafeJSONResponse(exc.to_payload(), status_code=exc.status_code)
    logging.exception("Unhandled error while processing request")
    return SafeJSONResponse({"error": classify_error(exc), "details": str(exc)}, status_code=500)


def _iter_file(path, chunk_size=1024 * 1024):
    with open(path, "rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def _safe_filename(name):
    cleaned = re.sub(r'[\\/:*?"<>|\r\n]+', "", str(name or "")).strip()
    return cleaned[:150] or "video"


def _content_disposition(name, ext):
    # Header values go out as latin-1: ASCII fallback plus an RFC 5987 UTF-8 name.
    filename = f"{_safe_filename(name)}.{ext}"
    ascii_name = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii").strip()
    if not ascii_name or ascii_name.startswith("."):
        ascii_name = f"video.{ext}"
    quoted = urllib.parse.quote(filename, safe="")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quoted}"


@app.post("/api/video-info")
async def api_video_info(payload: VideoInfoRequest = Body(default=VideoInfoRequest())):
    try:
        return await _orchestrator().get_video_info(payload.url)
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/download-video")
async def api_download_video(payload: DownloadRequest = Body(default=DownloadRequest())):
    orchestrator = _orchestrator()
    try:
        if (payload.mode or "link").strip().lower() != "file":
            return await orchestrator.resolve_download(payload.url, payload.quality)
        result = await orchestrator.cache_video(payload.url, payload.quality)
    except Exception as exc:
        return _error_response(exc)

    path = orchestrator.cached_video_path(result["videoId"])
    headers = {
        "Content-Disposition": _content_disposition(result.get("title") or result["videoId"], "mp4"),
        "Content-Length": str(result["fileSize"]),
    }
    return StreamingResponse(_iter_file(path), media_type="video/mp4", headers=headers)


@app.post("/api/download-cache")
async def api_download_cache(payload: DownloadRequest = Body(default=DownloadRequest())):
    try:
        return await _orchestrator().cache_video(payload.url, payload.quality)
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/extract-audio")
async def api_extract_audio(payload: ExtractAudioRequest = Body(default=ExtractAudioRequest())):
    try:
        return await _orchestrator().extract_audio(
            url=payload.url,
            video_id=payload.video_id,
            audio_format=payload.format,
        )
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/extract-frames")
async def api_extract_frames(payload: ExtractFramesRequest = Body(default=ExtractFramesRequest())):
    try:
        return await _orchestrator().extract_frames(
            url=payload.url,
            video_id=payload.video_id,
            frame_rate=payload.frame_rate,
            frame_count=payload.frame_count,
            delivery=payload.delivery,
        )
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/files/{filename}")
async def api_files(filename: str):
    try:
        path = _orchestrator().resolve_public_file(filename)
    except Exception as exc:
        return _error_response(exc)
    headers = {"Cache-Control": "public, max-age=3600"}
    return StreamingResponse(_iter_file(path), media_type="image/png", headers=headers)


@app.get("/api/cache-management")
async def api_cache_info():
    try:
        return _orchestrator().cache_stats()
    except Exception as exc:
        return _error_response(exc)


@app.delete("/api/cache-management")
async def api_cache_purge(cache_type: Optional[str] = Query(default=None, alias="type")):
    try:
        return _orchestrator().purge_cache(cache_type)
    except Exception as exc:
        return _error_response(exc)


@app.get("/api/version")
async def api_version():
    settings = _orchestrator().settings
    return get_runtime_info(settings.app_version, settings.ffmpeg_bin, settings.ffprobe_bin)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=os.environ.get("YTBSHOW_HOST", "127.0.0.1"),
        port=int(os.environ.get("YTBSHOW_PORT", "8000")),
    )
