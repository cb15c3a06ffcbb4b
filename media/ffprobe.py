"""Wrapper utilities for retrieving media information using ffprobe."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class VideoStreamProbe:
    duration: Optional[float]
    fps: Optional[float]
    frame_count: Optional[int]


def _parse_rate(value: object) -> Optional[float]:
    text = str(value or "").strip()
    if not text:
        return None
    if "/" in text:
        num, _, den = text.partition("/")
        try:
            numerator = float(num)
            denominator = float(den)
        except ValueError:
            return None
        if denominator == 0:
            return None
        return numerator / denominator
    try:
        return float(text)
    except ValueError:
        return None


def _run_ffprobe(command: list[str], file_path: str) -> dict:
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            timeout=15,
        )
    except FileNotFoundError as exc:
        raise RuntimeError("ffprobe is not installed or not available in PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"ffprobe timed out while probing: {file_path}") from exc
    except subprocess.CalledProcessError as exc:
        stderr_text = (exc.stderr or "").strip()
        raise RuntimeError(f"ffprobe failed for {file_path}: {stderr_text or exc}") from exc

    try:
        payload = json.loads(completed.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"ffprobe returned invalid JSON for {file_path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"ffprobe returned invalid JSON for {file_path}")
    return payload


def probe_video_stream(file_path: str, *, ffprobe_bin: str = "ffprobe") -> VideoStreamProbe:
    """Describe the first video stream: duration, frame rate and frame count.

    ``nb_frames`` is often missing from containers; the count is then
    estimated as ``duration * fps``.

    Raises:
        RuntimeError: If ``ffprobe`` execution fails or the command is missing.
        ValueError: If ``ffprobe`` output is not a JSON object.
    """
    payload = _run_ffprobe(
        [
            ffprobe_bin,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=nb_frames,avg_frame_rate,r_frame_rate,duration:format=duration",
            "-print_format",
            "json",
            file_path,
        ],
        file_path,
    )
    streams = payload.get("streams") or []
    stream = streams[0] if streams and isinstance(streams[0], dict) else {}
    fmt = payload.get("format") or {}

    duration = _parse_rate(stream.get("duration")) or _parse_rate(fmt.get("duration"))
    fps = _parse_rate(stream.get("avg_frame_rate")) or _parse_rate(stream.get("r_frame_rate"))

    frame_count = None
    raw_frames = str(stream.get("nb_frames") or "").strip()
    if raw_frames.isdigit() and int(raw_frames) > 0:
        frame_count = int(raw_frames)
    elif duration and fps:
        frame_count = int(duration * fps)

    return VideoStreamProbe(duration=duration, fps=fps, frame_count=frame_count)
