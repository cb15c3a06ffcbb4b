"""ffmpeg invocations used to derive audio tracks and still frames."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%04d.png"

# Output extension -> ffmpeg audio encoder.
AUDIO_CODECS = {
    "mp3": "libmp3lame",
    "m4a": "aac",
    "aac": "aac",
    "ogg": "libvorbis",
    "opus": "libopus",
    "wav": "pcm_s16le",
    "flac": "flac",
}
_LOSSLESS = {"wav", "flac"}


def ffmpeg_available(ffmpeg_bin: str = "ffmpeg") -> bool:
    """Whether the binary (ffmpeg or ffprobe) resolves on PATH."""
    return shutil.which(ffmpeg_bin) is not None


def _run_ffmpeg(command: list[str]) -> None:
    logger.info("[FFMPEG] running %s", " ".join(command))
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=False)
    except FileNotFoundError as exc:
        raise RuntimeError("ffmpeg is not installed or not available in PATH") from exc
    if completed.returncode != 0:
        stderr_text = (completed.stderr or "").strip().splitlines()
        tail = stderr_text[-1] if stderr_text else ""
        raise RuntimeError(f"ffmpeg exited with code {completed.returncode}: {tail}")


def build_audio_command(
    video_path: str,
    audio_path: str,
    audio_format: str = "mp3",
    *,
    bitrate: str = "192k",
    ffmpeg_bin: str = "ffmpeg",
) -> list[str]:
    codec = AUDIO_CODECS.get(audio_format)
    if codec is None:
        raise ValueError(f"unsupported audio format: {audio_format}")
    command = [ffmpeg_bin, "-y", "-v", "error", "-i", video_path, "-vn", "-acodec", codec]
    if audio_format not in _LOSSLESS:
        command.extend(["-b:a", bitrate])
    command.append(audio_path)
    return command


def extract_audio(
    video_path: str,
    audio_path: str,
    audio_format: str = "mp3",
    *,
    bitrate: str = "192k",
    ffmpeg_bin: str = "ffmpeg",
) -> str:
    """Strip the video track and encode the audio; partial output is removed on failure."""
    command = build_audio_command(video_path, audio_path, audio_format, bitrate=bitrate, ffmpeg_bin=ffmpeg_bin)
    try:
        _run_ffmpeg(command)
    except Exception:
        try:
            os.remove(audio_path)
        except OSError:
            pass
        raise
    if not os.path.isfile(audio_path):
        raise RuntimeError(f"ffmpeg produced no audio output: {audio_path}")
    return audio_path


def frame_skip_interval(total_frames: Optional[int], frame_count: int) -> int:
    """Keep every ``n``-th frame so roughly ``frame_count`` frames come out."""
    if frame_count <= 0:
        raise ValueError("frame_count must be positive")
    if not total_frames or total_frames <= frame_count:
        return 1
    return max(1, total_frames // frame_count)


def build_frames_command(
    video_path: str,
    frames_dir: str,
    *,
    frame_rate: Optional[float] = None,
    frame_count: Optional[int] = None,
    total_frames: Optional[int] = None,
    ffmpeg_bin: str = "ffmpeg",
) -> list[str]:
    command = [ffmpeg_bin, "-y", "-v", "error", "-i", video_path]
    if frame_count:
        skip = frame_skip_interval(total_frames, frame_count)
        command.extend(["-vf", f"select=not(mod(n\\,{skip}))", "-vsync", "vfr", "-frames:v", str(frame_count)])
    else:
        command.extend(["-vf", f"fps={frame_rate or 1}"])
    command.append(os.path.join(frames_dir, FRAME_PATTERN))
    return command


def extract_frames(
    video_path: str,
    frames_dir: str,
    *,
    frame_rate: Optional[float] = None,
    frame_count: Optional[int] = None,
    total_frames: Optional[int] = None,
    ffmpeg_bin: str = "ffmpeg",
) -> list[Path]:
    """Write ``frame_0001.png``... into ``frames_dir`` and return them in order."""
    os.makedirs(frames_dir, exist_ok=True)
    command = build_frames_command(
        video_path,
        frames_dir,
        frame_rate=frame_rate,
        frame_count=frame_count,
        total_frames=total_frames,
        ffmpeg_bin=ffmpeg_bin,
    )
    try:
        _run_ffmpeg(command)
    except Exception:
        shutil.rmtree(frames_dir, ignore_errors=True)
        raise
    frames = sorted(Path(frames_dir).glob("frame_*.png"))
    if not frames:
        raise RuntimeError("ffmpeg produced no frames")
    return frames
