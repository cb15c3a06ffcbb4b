from __future__ import annotations

import asyncio

import pytest

from engine.fallback import DEFAULT_CLIENTS, ClientIdentity, parse_client_order, with_fallback


def test_first_successful_identity_wins_after_earlier_failures() -> None:
    attempted = []

    async def _operation(identity):
        attempted.append(identity)
        if identity is not ClientIdentity.ANDROID:
            raise RuntimeError(f"{identity.value} rejected")
        return {"client": identity.value}

    identities = [ClientIdentity.IOS, ClientIdentity.TV, ClientIdentity.ANDROID]
    result = asyncio.run(with_fallback(_operation, identities))

    assert result == {"client": "android"}
    assert attempted == identities


def test_all_identities_failing_raises_last_error() -> None:
    failures = []

    async def _operation(identity):
        raise RuntimeError(identity.value)

    with pytest.raises(RuntimeError) as excinfo:
        asyncio.run(
            with_fallback(
                _operation,
                DEFAULT_CLIENTS,
                on_failure=lambda identity, exc: failures.append(identity),
            )
        )

    assert str(excinfo.value) == "tv"
    assert failures == list(DEFAULT_CLIENTS)


def test_stops_at_first_success_without_trying_later_clients() -> None:
    attempted = []

    async def _operation(identity):
        attempted.append(identity)
        return "ok"

    assert asyncio.run(with_fallback(_operation)) == "ok"
    assert attempted == [ClientIdentity.WEB_EMBEDDED]


def test_every_call_restarts_from_first_identity() -> None:
    attempted = []

    async def _operation(identity):
        attempted.append(identity)
        if identity is ClientIdentity.WEB_EMBEDDED:
            raise RuntimeError("embedded blocked")
        return identity

    asyncio.run(with_fallback(_operation))
    asyncio.run(with_fallback(_operation))

    assert attempted == [
        ClientIdentity.WEB_EMBEDDED,
        ClientIdentity.IOS,
        ClientIdentity.WEB_EMBEDDED,
        ClientIdentity.IOS,
    ]


def test_empty_identity_list_is_rejected() -> None:
    async def _operation(identity):
        return identity

    with pytest.raises(ValueError):
        asyncio.run(with_fallback(_operation, []))


def test_parse_client_order_keeps_known_names_in_order() -> None:
    assert parse_client_order(["tv", "IOS", "bogus", "tv"]) == (ClientIdentity.TV, ClientIdentity.IOS)
    assert parse_client_order(["bogus"]) == DEFAULT_CLIENTS
