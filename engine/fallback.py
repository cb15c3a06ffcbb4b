from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ClientIdentity(str, Enum):
    """Player clients yt-dlp can impersonate, in default fallback order."""

    WEB_EMBEDDED = "web_embedded"
    IOS = "ios"
    ANDROID = "android"
    TV = "tv"


DEFAULT_CLIENTS: tuple[ClientIdentity, ...] = (
    ClientIdentity.WEB_EMBEDDED,
    ClientIdentity.IOS,
    ClientIdentity.ANDROID,
    ClientIdentity.TV,
)


def parse_client_order(names: Iterable[str]) -> tuple[ClientIdentity, ...]:
    """Resolve configured client names, dropping unknown ones."""
    resolved: list[ClientIdentity] = []
    for name in names:
        try:
            identity = ClientIdentity(str(name).strip().lower())
        except ValueError:
            logger.warning("[FALLBACK] ignoring unknown player client=%s", name)
            continue
        if identity not in resolved:
            resolved.append(identity)
    return tuple(resolved) or DEFAULT_CLIENTS


async def with_fallback(
    operation: Callable[[ClientIdentity], Awaitable[T]],
    identities: Sequence[ClientIdentity] = DEFAULT_CLIENTS,
    *,
    on_failure: Optional[Callable[[ClientIdentity, BaseException], None]] = None,
) -> T:
    """Try ``operation`` once per identity in order; first success wins.

    When every identity fails the error from the last one is re-raised.
    """
    remaining = len(identities)
    for identity in identities:
        remaining -= 1
        try:
            logger.info("[FALLBACK] trying client=%s", identity.value)
            result = await operation(identity)
        except Exception as exc:
            logger.warning("[FALLBACK] client=%s failed error=%s", identity.value, exc)
            if on_failure is not None:
                try:
                    on_failure(identity, exc)
                except Exception:
                    logger.exception("[FALLBACK] observer failed client=%s", identity.value)
            if not remaining:
                raise
            continue
        logger.info("[FALLBACK] success client=%s", identity.value)
        return result

    raise ValueError("at least one client identity is required")
