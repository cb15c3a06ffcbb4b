"""Error taxonomy and user-facing classification of extraction failures."""

from __future__ import annotations

import errno
import logging
import re
import socket
from typing import Any

import requests

logger = logging.getLogger(__name__)

MSG_GONE = (
    "This video is no longer available. It may have been deleted, made private, "
    "or removed by the uploader."
)
MSG_FORBIDDEN = "Access to this video is forbidden. It may be private, region-blocked, or require authentication."
MSG_NOT_FOUND = "Video not found. Please check the URL and try again."
MSG_NETWORK = (
    "Network error: Unable to connect to YouTube. This could be due to network issues or "
    "YouTube being temporarily unavailable. Please try again later."
)
MSG_BOT_CHECK = "YouTube bot detection triggered. Please try again later."
MSG_UNAVAILABLE = "This video is unavailable or private."
MSG_PRIVATE = "This is a private video and cannot be processed."
MSG_AGE_RESTRICTED = "This video is age restricted and cannot be processed."
MSG_NO_FORMATS = "No suitable video formats found for processing."
MSG_INVALID_URL = "Please provide a valid YouTube URL."
MSG_GENERIC = "Failed to process the video. Please check the URL and try again."

_STATUS_MESSAGES = (
    (410, MSG_GONE),
    (403, MSG_FORBIDDEN),
    (404, MSG_NOT_FOUND),
)
_STATUS_IN_MESSAGE_RE = re.compile(r"(?:status code:?|http error)\s*(\d{3})", re.IGNORECASE)

_NETWORK_ERRNOS = {
    errno.ETIMEDOUT,
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ENETUNREACH,
}
_NETWORK_CODES = {"ETIMEDOUT", "ECONNRESET", "ECONNREFUSED", "ENOTFOUND", "ENETUNREACH"}
_NETWORK_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "connection aborted",
    "network",
    "name or service not known",
    "temporary failure in name resolution",
    "getaddrinfo",
    "nodename nor servname",
)
_BOT_MARKERS = ("confirm you're not a bot", "confirm you’re not a bot")
_AGE_MARKERS = ("age restricted", "age-restricted", "confirm your age")
_NO_FORMAT_MARKERS = ("no formats found", "no streaming data", "requested format is not available")


class ExtractionError(Exception):
    """Base error carrying the HTTP status the API layer should answer with."""

    status_code = 500

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InputError(ExtractionError):
    status_code = 400


class NotFoundError(ExtractionError):
    status_code = 404

    def __init__(self, message: str, *, details: str | None = None, suggestion: str | None = None) -> None:
        super().__init__(message, details=details)
        self.suggestion = suggestion

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload


class UpstreamUnavailableError(ExtractionError):
    """Every client identity and retry failed against the extraction library."""

    status_code = 503

    def __init__(
        self,
        message: str,
        *,
        details: str | None = None,
        suggestion: str | None = None,
        video_info: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.suggestion = suggestion
        self.video_info = video_info

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.video_info:
            payload["videoInfo"] = self.video_info
        return payload


class TranscodeError(ExtractionError):
    status_code = 500


def _message_of(error: Any) -> str:
    if error is None:
        return ""
    if isinstance(error, BaseException):
        return str(error)
    if isinstance(error, dict):
        return str(error.get("message") or "")
    return str(getattr(error, "message", None) or error)


def _field(error: Any, name: str) -> Any:
    if isinstance(error, dict):
        return error.get(name)
    return getattr(error, name, None)


def _status_of(error: Any) -> int | None:
    candidates = [_field(error, "status_code"), _field(error, "statusCode"), _field(error, "status")]
    response = _field(error, "response")
    if response is not None:
        candidates.append(getattr(response, "status_code", None))
    for value in candidates:
        if isinstance(value, bool):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def is_network_error(error: Any) -> bool:
    if error is None:
        return False
    if isinstance(error, (requests.ConnectionError, requests.Timeout, TimeoutError, socket.gaierror)):
        return True
    if isinstance(error, ConnectionError):
        return True
    if isinstance(error, OSError) and error.errno in _NETWORK_ERRNOS:
        return True
    code = _field(error, "code")
    if isinstance(code, str) and code.upper() in _NETWORK_CODES:
        return True
    message = _message_of(error).lower()
    return any(marker in message for marker in _NETWORK_MARKERS)


def classify_error(error: Any) -> str:
    """Map any caught error to a stable, user-safe message. Never raises."""
    try:
        return _classify(error)
    except Exception:
        logger.exception("error classification failed")
        return MSG_GENERIC


def _classify(error: Any) -> str:
    if isinstance(error, ExtractionError):
        return error.message
    message = _message_of(error)
    lowered = message.lower()

    status = _status_of(error)
    if status is None:
        match = _STATUS_IN_MESSAGE_RE.search(message)
        if match:
            status = int(match.group(1))
    for code, text in _STATUS_MESSAGES:
        if status == code:
            return text

    if is_network_error(error):
        return MSG_NETWORK

    if any(marker in lowered for marker in _BOT_MARKERS):
        return MSG_BOT_CHECK
    if "unavailable" in lowered:
        return MSG_UNAVAILABLE
    if "private" in lowered:
        return MSG_PRIVATE
    if any(marker in lowered for marker in _AGE_MARKERS):
        return MSG_AGE_RESTRICTED
    if any(marker in lowered for marker in _NO_FORMAT_MARKERS):
        return MSG_NO_FORMATS
    if "not a youtube url" in lowered or "unsupported url" in lowered:
        return MSG_INVALID_URL
    return MSG_GENERIC


def is_retryable_error(error: Any) -> bool:
    """Whether another attempt with the same client identity could succeed."""
    if isinstance(error, ExtractionError):
        return False
    if is_network_error(error):
        return True
    return classify_error(error) == MSG_GENERIC
