"""Handshake provider adapter backed by an external linking bridge."""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import httpx

from pairlink.domain.errors import HandshakeInitError
from pairlink.domain.handshake import CloseReason, HandshakeHandle, HandshakeStart

logger = logging.getLogger(__name__)


class HandshakeListener(Protocol):
    """Receives the event stream of one handshake."""

    async def on_scannable_code(self, payload: str) -> None:
        """A new scannable code was issued."""

    async def on_opened(self) -> None:
        """The device link completed."""

    async def on_closed(self, reason: CloseReason) -> None:
        """The provider's connection closed."""


class HandshakeProvider(Protocol):
    """Interface for the external device-linking protocol."""

    async def start(
        self, phone_number: str, auth_dir: Path, listener: HandshakeListener
    ) -> HandshakeStart:
        """Start a handshake persisting into ``auth_dir`` and return its code."""

    async def stop(self, handle: HandshakeHandle) -> None:
        """Terminate a handshake and stop delivering its events."""


@dataclass
class HttpxHandshakeProvider(HandshakeProvider):
    """Handshake provider implemented with httpx against the bridge API."""

    base_url: str
    browser: tuple[str, str, str]
    http_client: httpx.AsyncClient
    reconnect_delay_seconds: float = 2.0
    _pumps: dict[str, asyncio.Task[None]] = field(default_factory=dict, init=False)

    @classmethod
    def create(
        cls, base_url: str, browser: tuple[str, str, str]
    ) -> "HttpxHandshakeProvider":
        """Create a provider with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            browser=browser,
            http_client=httpx.AsyncClient(),
        )

    async def start(
        self, phone_number: str, auth_dir: Path, listener: HandshakeListener
    ) -> HandshakeStart:
        """Ask the bridge for a new handshake and begin pumping its events."""
        url = f"{self.base_url}/handshakes"
        payload = {
            "phone_number": phone_number,
            "auth_dir": str(auth_dir),
            "browser": list(self.browser),
        }
        try:
            response = await self.http_client.post(url, json=payload, timeout=30)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise HandshakeInitError("Failed to generate pair code") from exc

        handshake_id = data.get("id") if isinstance(data, dict) else None
        pairing_code = data.get("pairing_code") if isinstance(data, dict) else None
        if not handshake_id or not pairing_code:
            raise HandshakeInitError("Failed to generate pair code")

        handle = HandshakeHandle(handshake_id=str(handshake_id))
        self._pumps[handle.handshake_id] = asyncio.create_task(
            self._pump_events(handle, listener)
        )
        return HandshakeStart(handle=handle, pairing_code=str(pairing_code))

    async def stop(self, handle: HandshakeHandle) -> None:
        """Cancel the event pump, then end the handshake on the bridge."""
        pump = self._pumps.pop(handle.handshake_id, None)
        if pump is not None and not pump.done():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

        url = f"{self.base_url}/handshakes/{handle.handshake_id}"
        try:
            response = await self.http_client.delete(url, timeout=10)
            if response.status_code != httpx.codes.NOT_FOUND:
                response.raise_for_status()
        except httpx.HTTPError:
            logger.warning(
                "Failed to stop handshake on bridge",
                extra={"handshake_id": handle.handshake_id},
            )

    async def close(self) -> None:
        """Stop every event pump and close the HTTP session."""
        for handshake_id in list(self._pumps):
            await self.stop(HandshakeHandle(handshake_id=handshake_id))
        await self.http_client.aclose()

    async def _pump_events(
        self, handle: HandshakeHandle, listener: HandshakeListener
    ) -> None:
        url = f"{self.base_url}/handshakes/{handle.handshake_id}/events"
        while True:
            try:
                async with self.http_client.stream("GET", url, timeout=None) as response:
                    if response.status_code == httpx.codes.NOT_FOUND:
                        await listener.on_closed(
                            CloseReason(message="handshake not found on bridge")
                        )
                        return
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        finished = await _dispatch(json.loads(line), listener)
                        if finished:
                            return
            except (httpx.HTTPError, ValueError):
                logger.warning(
                    "Handshake event stream interrupted, reconnecting",
                    extra={"handshake_id": handle.handshake_id},
                )
            except Exception:
                logger.exception(
                    "Handshake event handling failed, reconnecting",
                    extra={"handshake_id": handle.handshake_id},
                )
            await asyncio.sleep(self.reconnect_delay_seconds)


async def _dispatch(event: object, listener: HandshakeListener) -> bool:
    """Deliver one bridge event; return true when the stream should end."""
    if not isinstance(event, dict):
        return False
    kind = event.get("type")
    if kind == "qr":
        payload = event.get("qr")
        if isinstance(payload, str) and payload:
            await listener.on_scannable_code(payload)
        return False
    if kind == "open":
        await listener.on_opened()
        return False
    if kind == "close":
        status_code = event.get("status_code")
        reason = CloseReason(
            status_code=status_code if isinstance(status_code, int) else None,
            message=str(event.get("message") or ""),
        )
        await listener.on_closed(reason)
        return reason.is_logged_out
    logger.debug("Ignoring unknown handshake event", extra={"event_type": kind})
    return False
