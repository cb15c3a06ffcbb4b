from __future__ import annotations

import pytest

from engine.formats import extract_video_id, format_duration, is_youtube_url, select_format
from engine.providers import StreamFormat


def _fmt(format_id, *, container="mp4", height=None, label=None, video=True, audio=True):
    return StreamFormat(
        format_id=format_id,
        container=container,
        quality_label=label or (f"{height}p" if height else None),
        height=height,
        has_video=video,
        has_audio=audio,
        url=f"https://cdn.example/{format_id}",
    )


def test_highest_picks_tallest_muxed_mp4() -> None:
    formats = [
        _fmt("18", height=360),
        _fmt("22", height=720),
        _fmt("137", height=1080, audio=False),
        _fmt("248", container="webm", height=1080),
    ]
    assert select_format(formats, "highest").format_id == "22"


def test_highest_tie_resolves_to_first_in_provider_order() -> None:
    formats = [_fmt("a", height=720), _fmt("b", height=720)]
    assert select_format(formats).format_id == "a"


def test_exact_quality_label_match() -> None:
    formats = [_fmt("18", height=360), _fmt("22", height=720)]
    assert select_format(formats, "360p").format_id == "18"


def test_unknown_quality_falls_back_to_first_candidate() -> None:
    formats = [_fmt("18", height=360), _fmt("22", height=720)]
    assert select_format(formats, "4320p").format_id == "18"


def test_video_only_mp4_used_when_no_muxed_stream() -> None:
    formats = [
        _fmt("140", container="m4a", video=False),
        _fmt("136", height=720, audio=False),
        _fmt("137", height=1080, audio=False),
    ]
    assert select_format(formats).format_id == "137"


def test_no_candidate_returns_none() -> None:
    formats = [_fmt("251", container="webm", video=False), _fmt("248", container="webm", height=1080)]
    assert select_format(formats) is None
    assert select_format([]) is None


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(125, "2:05"), (0, "0:00"), (59, "0:59"), (3725, "1:02:05"), ("61", "1:01"), (None, None), (-1, None)],
)
def test_format_duration(seconds, expected) -> None:
    assert format_duration(seconds) == expected


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://m.youtube.com/embed/dQw4w9WgXcQ",
        "http://music.youtube.com/watch?v=dQw4w9WgXcQ",
    ],
)
def test_accepts_youtube_urls(url) -> None:
    assert is_youtube_url(url)
    assert extract_video_id(url) == "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "not a url",
        "https://vimeo.com/123456",
        "https://www.youtube.com/",
        "ftp://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://evil.example/?u=youtube.com/watch?v=dQw4w9WgXcQ",
    ],
)
def test_rejects_non_youtube_urls(url) -> None:
    assert not is_youtube_url(url)
