"""Tests for the httpx-backed handshake provider."""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import pytest

from pairlink.adapters.handshake_bridge import HttpxHandshakeProvider
from pairlink.domain.errors import HandshakeInitError
from pairlink.domain.handshake import CloseReason, HandshakeHandle

BROWSER = ("Knight Bot", "Chrome", "10.0")


@dataclass
class RecordingListener:
    events: list[tuple[str, object]] = field(default_factory=list)

    async def on_scannable_code(self, payload: str) -> None:
        self.events.append(("qr", payload))

    async def on_opened(self) -> None:
        self.events.append(("open", None))

    async def on_closed(self, reason: CloseReason) -> None:
        self.events.append(("close", reason))


def _ndjson(*events: dict[str, object]) -> bytes:
    return b"".join(json.dumps(event).encode() + b"\n" for event in events)


def _provider(
    handler: Callable[[httpx.Request], httpx.Response],
) -> HttpxHandshakeProvider:
    return HttpxHandshakeProvider(
        base_url="http://bridge.test",
        browser=BROWSER,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        reconnect_delay_seconds=0,
    )


async def _wait_for(predicate: Callable[[], bool]) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met in time")


def test_start_returns_pairing_code_and_pumps_events(tmp_path: Path) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, json={"id": "hs-1", "pairing_code": "ABCD-1234"})
        return httpx.Response(
            200,
            content=_ndjson(
                {"type": "qr", "qr": "2@abc"},
                {"type": "close", "status_code": 515, "message": "restart required"},
                {"type": "open"},
                {"type": "close", "status_code": 401, "message": "logged out"},
            ),
        )

    listener = RecordingListener()

    async def scenario() -> None:
        provider = _provider(handler)
        started = await provider.start("15551234567", tmp_path / "abc", listener)
        assert started.pairing_code == "ABCD-1234"
        assert started.handle == HandshakeHandle(handshake_id="hs-1")
        await _wait_for(lambda: len(listener.events) == 4)
        await provider.http_client.aclose()

    asyncio.run(scenario())

    body = json.loads(requests[0].content)
    assert requests[0].url.path == "/handshakes"
    assert body == {
        "phone_number": "15551234567",
        "auth_dir": str(tmp_path / "abc"),
        "browser": list(BROWSER),
    }
    assert requests[1].url.path == "/handshakes/hs-1/events"
    kinds = [kind for kind, _ in listener.events]
    assert kinds == ["qr", "close", "open", "close"]
    assert listener.events[0] == ("qr", "2@abc")
    assert listener.events[1][1] == CloseReason(515, "restart required")
    final_reason = listener.events[3][1]
    assert isinstance(final_reason, CloseReason)
    assert final_reason.is_logged_out
    # The logged-out close ends the stream, so no reconnect happens.
    assert len(requests) == 2


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "negotiation failed"}),
        httpx.Response(400, json={"error": "invalid phone number"}),
        httpx.Response(200, json={"id": "hs-1"}),
        httpx.Response(200, text="not json"),
    ],
)
def test_start_failures_raise_handshake_init_error(
    tmp_path: Path, response: httpx.Response
) -> None:
    provider = _provider(lambda request: response)

    with pytest.raises(HandshakeInitError):
        asyncio.run(provider.start("15551234567", tmp_path, RecordingListener()))

    assert provider._pumps == {}


def test_start_transport_error_raises_handshake_init_error(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = _provider(handler)

    with pytest.raises(HandshakeInitError):
        asyncio.run(provider.start("15551234567", tmp_path, RecordingListener()))


def test_event_stream_reconnects_after_interruption(tmp_path: Path) -> None:
    event_requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "hs-1", "pairing_code": "CODE"})
        event_requests.append(request)
        if len(event_requests) == 1:
            return httpx.Response(503)
        if len(event_requests) == 2:  # noqa: PLR2004
            return httpx.Response(200, content=b"{broken json\n")
        return httpx.Response(
            200,
            content=_ndjson({"type": "open"}, {"type": "close", "status_code": 401}),
        )

    listener = RecordingListener()

    async def scenario() -> None:
        provider = _provider(handler)
        await provider.start("15551234567", tmp_path, listener)
        await _wait_for(lambda: len(listener.events) == 2)
        await provider.http_client.aclose()

    asyncio.run(scenario())

    assert len(event_requests) == 3
    assert [kind for kind, _ in listener.events] == ["open", "close"]


def test_event_pump_survives_listener_errors(tmp_path: Path) -> None:
    event_requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "hs-1", "pairing_code": "CODE"})
        event_requests.append(request)
        return httpx.Response(
            200,
            content=_ndjson(
                {"type": "qr", "qr": "2@qr"},
                {"type": "open"},
                {"type": "close", "status_code": 401},
            ),
        )

    @dataclass
    class FlakyListener(RecordingListener):
        failures: int = 1

        async def on_scannable_code(self, payload: str) -> None:
            if self.failures:
                self.failures -= 1
                raise RuntimeError("listener blew up")
            await super().on_scannable_code(payload)

    listener = FlakyListener()

    async def scenario() -> None:
        provider = _provider(handler)
        await provider.start("15551234567", tmp_path, listener)
        await _wait_for(lambda: len(listener.events) == 3)
        await provider.http_client.aclose()

    asyncio.run(scenario())

    assert len(event_requests) == 2
    assert [kind for kind, _ in listener.events] == ["qr", "open", "close"]


def test_missing_handshake_on_bridge_ends_stream(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "hs-1", "pairing_code": "CODE"})
        return httpx.Response(404)

    listener = RecordingListener()

    async def scenario() -> None:
        provider = _provider(handler)
        await provider.start("15551234567", tmp_path, listener)
        await _wait_for(lambda: provider._pumps["hs-1"].done())
        await provider.http_client.aclose()

    asyncio.run(scenario())

    assert len(listener.events) == 1
    kind, reason = listener.events[0]
    assert kind == "close"
    assert isinstance(reason, CloseReason)
    assert not reason.is_logged_out


def test_stop_cancels_pump_and_is_idempotent(tmp_path: Path) -> None:
    deletes: list[str] = []

    async def endless_stream() -> AsyncIterator[bytes]:
        yield _ndjson({"type": "qr", "qr": "2@first"})
        await asyncio.Event().wait()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "hs-1", "pairing_code": "CODE"})
        if request.method == "DELETE":
            deletes.append(request.url.path)
            return httpx.Response(204 if len(deletes) == 1 else 404)
        return httpx.Response(200, content=endless_stream())

    listener = RecordingListener()

    async def scenario() -> None:
        provider = _provider(handler)
        started = await provider.start("15551234567", tmp_path, listener)
        await _wait_for(lambda: len(listener.events) == 1)

        await provider.stop(started.handle)
        await provider.stop(started.handle)

        assert provider._pumps == {}
        await provider.http_client.aclose()

    asyncio.run(scenario())

    assert deletes == ["/handshakes/hs-1", "/handshakes/hs-1"]
    assert listener.events == [("qr", "2@first")]


def test_stop_swallows_transport_errors(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("bridge down", request=request)

    provider = _provider(handler)

    asyncio.run(provider.stop(HandshakeHandle(handshake_id="hs-9")))


def test_close_stops_all_pumps(tmp_path: Path) -> None:
    async def endless_stream() -> AsyncIterator[bytes]:
        await asyncio.Event().wait()
        yield b""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            handshake_id = f"hs-{json.loads(request.content)['phone_number']}"
            return httpx.Response(200, json={"id": handshake_id, "pairing_code": "C"})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, content=endless_stream())

    async def scenario() -> HttpxHandshakeProvider:
        provider = _provider(handler)
        await provider.start("1", tmp_path, RecordingListener())
        await provider.start("2", tmp_path, RecordingListener())
        await provider.close()
        return provider

    provider = asyncio.run(scenario())

    assert provider._pumps == {}
    assert provider.http_client.is_closed
