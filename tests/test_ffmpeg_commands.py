from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from media import ffmpeg


def test_audio_command_for_lossy_format() -> None:
    command = ffmpeg.build_audio_command("in.mp4", "out.mp3", "mp3", bitrate="128k")
    assert command == [
        "ffmpeg", "-y", "-v", "error", "-i", "in.mp4", "-vn", "-acodec", "libmp3lame", "-b:a", "128k", "out.mp3",
    ]


def test_audio_command_for_lossless_format_skips_bitrate() -> None:
    command = ffmpeg.build_audio_command("in.mp4", "out.flac", "flac", ffmpeg_bin="/opt/ffmpeg")
    assert command[0] == "/opt/ffmpeg"
    assert "-b:a" not in command
    assert command[-3:] == ["-acodec", "flac", "out.flac"]


def test_audio_command_rejects_unknown_format() -> None:
    with pytest.raises(ValueError):
        ffmpeg.build_audio_command("in.mp4", "out.xyz", "xyz")


@pytest.mark.parametrize(
    ("total", "count", "expected"),
    [(300, 10, 30), (100, 30, 3), (10, 50, 1), (None, 5, 1), (0, 5, 1), (50, 50, 1)],
)
def test_frame_skip_interval(total, count, expected) -> None:
    assert ffmpeg.frame_skip_interval(total, count) == expected


def test_frame_skip_interval_rejects_non_positive_count() -> None:
    with pytest.raises(ValueError):
        ffmpeg.frame_skip_interval(100, 0)


def test_frames_command_by_count_uses_select_filter(tmp_path) -> None:
    command = ffmpeg.build_frames_command("in.mp4", str(tmp_path), frame_count=10, total_frames=300)
    assert command[command.index("-vf") + 1] == "select=not(mod(n\\,30))"
    assert command[command.index("-frames:v") + 1] == "10"
    assert command[-1] == str(tmp_path / "frame_%04d.png")


def test_frames_command_by_rate_uses_fps_filter(tmp_path) -> None:
    command = ffmpeg.build_frames_command("in.mp4", str(tmp_path), frame_rate=0.5)
    assert command[command.index("-vf") + 1] == "fps=0.5"
    assert "-frames:v" not in command


def test_nonzero_exit_removes_partial_audio(monkeypatch, tmp_path) -> None:
    audio_path = tmp_path / "out.mp3"

    def _fake_run(command, **kwargs):
        audio_path.write_bytes(b"partial")
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="line one\nInvalid data found\n")

    monkeypatch.setattr(ffmpeg.subprocess, "run", _fake_run)

    with pytest.raises(RuntimeError) as excinfo:
        ffmpeg.extract_audio("in.mp4", str(audio_path), "mp3")

    assert "code 1" in str(excinfo.value)
    assert "Invalid data found" in str(excinfo.value)
    assert not audio_path.exists()


def test_missing_binary_is_reported(monkeypatch, tmp_path) -> None:
    def _fake_run(command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(ffmpeg.subprocess, "run", _fake_run)

    with pytest.raises(RuntimeError, match="not installed"):
        ffmpeg.extract_audio("in.mp4", str(tmp_path / "out.mp3"), "mp3")


def test_frame_failure_removes_output_dir(monkeypatch, tmp_path) -> None:
    frames_dir = tmp_path / "frames"

    def _fake_run(command, **kwargs):
        (frames_dir / "frame_0001.png").write_bytes(b"png")
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="boom")

    monkeypatch.setattr(ffmpeg.subprocess, "run", _fake_run)

    with pytest.raises(RuntimeError):
        ffmpeg.extract_frames("in.mp4", str(frames_dir), frame_rate=1.0)

    assert not frames_dir.exists()


def test_frames_are_returned_sorted(monkeypatch, tmp_path) -> None:
    frames_dir = tmp_path / "frames"

    def _fake_run(command, **kwargs):
        for index in (2, 1, 3):
            (frames_dir / f"frame_{index:04d}.png").write_bytes(b"png")
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    monkeypatch.setattr(ffmpeg.subprocess, "run", _fake_run)

    frames = ffmpeg.extract_frames("in.mp4", str(frames_dir), frame_count=3)

    assert [Path(frame).name for frame in frames] == ["frame_0001.png", "frame_0002.png", "frame_0003.png"]


def test_no_frames_produced_is_an_error(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(
        ffmpeg.subprocess,
        "run",
        lambda command, **kwargs: subprocess.CompletedProcess(command, 0, stdout="", stderr=""),
    )
    with pytest.raises(RuntimeError, match="no frames"):
        ffmpeg.extract_frames("in.mp4", str(tmp_path / "frames"))


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_real_ffmpeg_extracts_audio_and_frames(tmp_path) -> None:
    video = tmp_path / "clip.mp4"
    subprocess.run(
        [
            "ffmpeg", "-y", "-v", "error",
            "-f", "lavfi", "-i", "testsrc=duration=2:size=64x64:rate=10",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=2",
            "-shortest", "-pix_fmt", "yuv420p", str(video),
        ],
        check=True,
    )

    audio = ffmpeg.extract_audio(str(video), str(tmp_path / "clip.wav"), "wav")
    frames = ffmpeg.extract_frames(str(video), str(tmp_path / "frames"), frame_rate=1.0)

    assert Path(audio).stat().st_size > 0
    assert frames
    assert frames[0].name == "frame_0001.png"
