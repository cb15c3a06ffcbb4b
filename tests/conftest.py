import sys
from pathlib import Path

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)


class FakeProvider:
    """In-memory stand-in for the yt-dlp provider."""

    name = "fake"

    def __init__(self, *, title="T", duration=125, failing_clients=(), error=None, oembed=None):
        self.title = title
        self.duration = duration
        self.failing_clients = set(failing_clients)
        self.error = error or RuntimeError("Sign in to confirm you're not a bot")
        self.oembed = oembed
        self.info_calls = []
        self.download_calls = []

    def get_info(self, url, client):
        from engine.providers import StreamFormat, VideoInfo

        self.info_calls.append((url, client.value))
        if client.value in self.failing_clients:
            raise self.error
        return VideoInfo(
            video_id="dQw4w9WgXcQ",
            title=self.title,
            duration_seconds=self.duration,
            author="Author",
            formats=[
                StreamFormat("18", "mp4", "360p", 360, 640, 30.0, True, True, url="https://cdn/18"),
                StreamFormat("22", "mp4", "720p", 720, 1280, 30.0, True, True, url="https://cdn/22"),
                StreamFormat("140", "m4a", None, None, None, None, False, True, url="https://cdn/140"),
            ],
            client=client.value,
        )

    def lookup_oembed(self, url, video_id=None):
        return self.oembed

    def download(self, stream_url, dest):
        self.download_calls.append(stream_url)
        Path(dest).write_bytes(b"video-bytes")
        return len(b"video-bytes")


@pytest.fixture()
def make_provider():
    return FakeProvider


@pytest.fixture()
def make_orchestrator(tmp_path):
    from config.settings import Settings
    from engine.cache import DiskCache
    from engine.orchestrator import ExtractionOrchestrator
    from engine.retry import RetryPolicy

    def _make(provider, **settings_overrides):
        return ExtractionOrchestrator(
            Settings(**settings_overrides),
            DiskCache(tmp_path / "cache"),
            provider,
            public_dir=str(tmp_path / "public"),
            temp_dir=str(tmp_path / "tmp"),
            retry_policy=RetryPolicy(max_retries=2, initial_delay=0.0),
        )

    return _make
