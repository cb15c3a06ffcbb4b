from __future__ import annotations

import errno
import socket

import pytest
import requests

from engine import errors
from engine.errors import (
    InputError,
    NotFoundError,
    UpstreamUnavailableError,
    classify_error,
    is_network_error,
    is_retryable_error,
)


class _StatusError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def test_explicit_403_field_wins_over_message_content() -> None:
    error = _StatusError("connection reset while reading Video unavailable", status_code=403)
    assert classify_error(error) == errors.MSG_FORBIDDEN


def test_status_code_410_in_message_means_gone() -> None:
    assert classify_error(RuntimeError("Request failed. Status code: 410")) == errors.MSG_GONE


def test_ytdlp_http_error_404_means_not_found() -> None:
    message = "ERROR: [youtube] abc: Unable to download webpage: HTTP Error 404: Not Found"
    assert classify_error(RuntimeError(message)) == errors.MSG_NOT_FOUND


def test_status_from_response_object() -> None:
    response = requests.Response()
    response.status_code = 410
    error = requests.HTTPError("gone", response=response)
    assert classify_error(error) == errors.MSG_GONE


@pytest.mark.parametrize(
    "error",
    [
        requests.ConnectionError("Max retries exceeded"),
        requests.Timeout("read timed out"),
        socket.gaierror("Name or service not known"),
        ConnectionResetError("peer reset"),
        OSError(errno.ECONNREFUSED, "refused"),
        RuntimeError("<urlopen error [Errno -3] Temporary failure in name resolution>"),
    ],
)
def test_network_shaped_errors(error) -> None:
    assert is_network_error(error)
    assert classify_error(error) == errors.MSG_NETWORK


def test_code_attribute_marks_network_error() -> None:
    assert classify_error({"message": "fetch failed", "code": "ENOTFOUND"}) == errors.MSG_NETWORK


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("ERROR: [youtube] abc: Video unavailable", errors.MSG_UNAVAILABLE),
        ("ERROR: [youtube] abc: Private video. Sign in if you've been granted access", errors.MSG_PRIVATE),
        ("ERROR: [youtube] abc: This private video is unavailable", errors.MSG_UNAVAILABLE),
        ("Sign in to confirm your age. This video may be inappropriate", errors.MSG_AGE_RESTRICTED),
        ("This video is age restricted", errors.MSG_AGE_RESTRICTED),
        ("Sign in to confirm you're not a bot", errors.MSG_BOT_CHECK),
        ("No formats found for this video", errors.MSG_NO_FORMATS),
        ("Not a YouTube URL", errors.MSG_INVALID_URL),
        ("something odd happened", errors.MSG_GENERIC),
    ],
)
def test_content_state_messages(message, expected) -> None:
    assert classify_error(RuntimeError(message)) == expected


@pytest.mark.parametrize("value", [None, "", 42, object(), {"unexpected": True}, ["list"]])
def test_classifier_is_total_on_unknown_inputs(value) -> None:
    assert classify_error(value) == errors.MSG_GENERIC


def test_classifier_is_deterministic() -> None:
    error = RuntimeError("HTTP Error 403: Forbidden")
    assert classify_error(error) == classify_error(error) == errors.MSG_FORBIDDEN


def test_domain_errors_keep_their_message() -> None:
    assert classify_error(InputError("URL is required")) == "URL is required"


def test_domain_error_payloads() -> None:
    not_found = NotFoundError("Video not found in cache", suggestion="cache first")
    assert not_found.status_code == 404
    assert not_found.to_payload() == {"error": "Video not found in cache", "suggestion": "cache first"}

    upstream = UpstreamUnavailableError("down", details="raw", video_info={"title": "T"})
    assert upstream.status_code == 503
    assert upstream.to_payload() == {"error": "down", "details": "raw", "videoInfo": {"title": "T"}}


def test_retryable_only_for_transient_errors() -> None:
    assert is_retryable_error(requests.Timeout("timed out"))
    assert is_retryable_error(RuntimeError("unexpected extractor hiccup"))
    assert not is_retryable_error(RuntimeError("HTTP Error 403: Forbidden"))
    assert not is_retryable_error(RuntimeError("Private video"))
    assert not is_retryable_error(InputError("bad"))
