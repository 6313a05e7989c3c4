"""Tests for the single-flight backend session."""

import asyncio

import pytest

from conftest import FakeBackend
from gateway.services.formats import StreamFormat
from gateway.services.session import BackendSession
from gateway.utils.exceptions import (
    BackendUnavailableError,
    MetadataFetchError,
    UrlUnresolvableError,
)


def test_concurrent_first_callers_share_one_initialization():
    backend = FakeBackend(init_delay=0.01)
    session = BackendSession(backend)

    async def _run():
        return await asyncio.gather(*(session.ensure_initialized() for _ in range(10)))

    clients = asyncio.run(_run())
    assert backend.create_calls == 1
    assert set(clients) == {"client-1"}
    assert session.is_initialized


def test_initialized_session_is_reused():
    backend = FakeBackend()
    session = BackendSession(backend)

    async def _run():
        first = await session.ensure_initialized()
        second = await session.ensure_initialized()
        return first, second

    assert asyncio.run(_run()) == ("client-1", "client-1")
    assert backend.create_calls == 1


def test_failed_initialization_is_retried_on_next_call():
    backend = FakeBackend(init_error=RuntimeError("player js fetch failed"))
    session = BackendSession(backend)

    with pytest.raises(BackendUnavailableError, match="player js fetch failed"):
        asyncio.run(session.ensure_initialized())
    assert not session.is_initialized

    assert asyncio.run(session.ensure_initialized()) == "client-2"
    assert backend.create_calls == 2


def test_shared_failure_reaches_all_waiters():
    backend = FakeBackend(init_error=RuntimeError("boom"), init_delay=0.01)
    session = BackendSession(backend)

    async def _run():
        return await asyncio.gather(
            *(session.ensure_initialized() for _ in range(5)),
            return_exceptions=True,
        )

    results = asyncio.run(_run())
    assert backend.create_calls == 1
    assert all(isinstance(r, BackendUnavailableError) for r in results)


def test_cancelled_waiter_does_not_cancel_initialization():
    backend = FakeBackend(init_delay=0.02)
    session = BackendSession(backend)

    async def _run():
        waiter = asyncio.ensure_future(session.ensure_initialized())
        await asyncio.sleep(0)
        waiter.cancel()
        client = await session.ensure_initialized()
        return waiter, client

    waiter, client = asyncio.run(_run())
    assert waiter.cancelled()
    assert client == "client-1"
    assert backend.create_calls == 1


def test_failure_after_sole_waiter_cancelled_is_retried():
    backend = FakeBackend(init_error=RuntimeError("boom"), init_delay=0.02)
    session = BackendSession(backend)

    async def _run():
        waiter = asyncio.ensure_future(session.ensure_initialized())
        await asyncio.sleep(0)
        waiter.cancel()
        # Let the abandoned attempt finish and fail
        await asyncio.sleep(0.05)
        return await session.ensure_initialized()

    client = asyncio.run(_run())
    assert client == "client-2"
    assert backend.create_calls == 2
    assert session.is_initialized


def test_init_timeout_is_backend_unavailable():
    backend = FakeBackend(init_delay=1.0)
    session = BackendSession(backend, init_timeout=0.01)

    with pytest.raises(BackendUnavailableError, match="timed out"):
        asyncio.run(session.ensure_initialized())


def test_fetch_requires_session():
    backend = FakeBackend(init_error=RuntimeError("no network"))
    session = BackendSession(backend)

    with pytest.raises(BackendUnavailableError):
        asyncio.run(session.fetch_streaming_metadata("dQw4w9WgXcQ"))
    assert backend.fetch_calls == []


def test_fetch_with_no_streaming_data_fails():
    session = BackendSession(FakeBackend(formats={}))

    with pytest.raises(MetadataFetchError, match="No streaming data"):
        asyncio.run(session.fetch_streaming_metadata("dQw4w9WgXcQ"))


def test_fetch_wraps_backend_errors():
    session = BackendSession(FakeBackend(fetch_error=KeyError("streamingData")))

    with pytest.raises(MetadataFetchError):
        asyncio.run(session.fetch_streaming_metadata("dQw4w9WgXcQ"))


def test_fetch_passes_session_client_to_backend():
    fmt = StreamFormat(mime_type="audio/webm", bitrate=1, url="u")
    backend = FakeBackend(formats={"dQw4w9WgXcQ": [fmt]})
    session = BackendSession(backend)

    assert asyncio.run(session.fetch_streaming_metadata("dQw4w9WgXcQ")) == [fmt]
    assert backend.fetch_calls == [("client-1", "dQw4w9WgXcQ")]


def test_decipher_receives_session_client():
    session = BackendSession(FakeBackend())
    fmt = StreamFormat(mime_type="audio/webm", decipher=lambda client: f"https://cdn/{client}")

    assert asyncio.run(session.decipher(fmt)) == "https://cdn/client-1"


def test_async_decipher_is_awaited():
    session = BackendSession(FakeBackend())

    async def _decipher(client):
        return "async-url"

    fmt = StreamFormat(mime_type="audio/webm", decipher=_decipher)
    assert asyncio.run(session.decipher(fmt)) == "async-url"


def test_decipher_failure_is_unresolvable():
    session = BackendSession(FakeBackend())

    def _broken(client):
        raise ValueError("signature function not found")

    with pytest.raises(UrlUnresolvableError, match="signature function not found"):
        asyncio.run(session.decipher(StreamFormat(mime_type="audio/webm", decipher=_broken)))


def test_decipher_returning_nothing_is_unresolvable():
    session = BackendSession(FakeBackend())

    with pytest.raises(UrlUnresolvableError):
        asyncio.run(session.decipher(StreamFormat(mime_type="audio/webm", decipher=lambda c: "")))


def test_decipher_without_capability_uses_direct_url():
    session = BackendSession(FakeBackend())
    assert asyncio.run(session.decipher(StreamFormat(mime_type="audio/webm", url="direct"))) == "direct"
