"""Lifecycle of pairing sessions: creation, state tracking and teardown."""

import asyncio
import contextlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from pairlink.adapters.credential_store import CredentialStore
from pairlink.adapters.handshake_bridge import HandshakeProvider
from pairlink.domain.errors import (
    HandshakeInitError,
    NotAvailableError,
    NotReadyError,
    StorageError,
    ValidationError,
)
from pairlink.domain.handshake import CloseReason
from pairlink.domain.sessions import (
    CONNECTED,
    FAILED,
    CreatedSession,
    PairingSession,
    SessionSnapshot,
)
from pairlink.services.registry import SessionRegistry

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"[^\d]")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _new_session_id() -> str:
    return str(uuid4())


@dataclass
class SessionEventListener:
    """Applies one handshake's events to its session record."""

    session: PairingSession

    async def on_scannable_code(self, payload: str) -> None:
        async with self.session.lock:
            if self.session.torn_down or self.session.is_terminal:
                return
            self.session.scannable_code = payload
        logger.info("QR generated for session %s", self.session.id)

    async def on_opened(self) -> None:
        async with self.session.lock:
            if self.session.torn_down or self.session.is_terminal:
                return
            self.session.status = CONNECTED
        logger.info("Connection opened for session %s", self.session.id)

    async def on_closed(self, reason: CloseReason) -> None:
        retrying = not reason.is_logged_out
        logger.info(
            "Connection closed for session %s due to %s, reconnecting: %s",
            self.session.id,
            reason,
            retrying,
        )
        if retrying:
            return
        async with self.session.lock:
            if self.session.torn_down or self.session.is_terminal:
                return
            self.session.status = FAILED


@dataclass
class SessionLifecycleController:
    """Creates sessions, exposes their progress and guarantees cleanup."""

    registry: SessionRegistry
    credential_store: CredentialStore
    handshake_provider: HandshakeProvider
    max_session_age: timedelta = timedelta(hours=2)
    sweep_interval_seconds: float = 3600
    download_grace_seconds: float = 5
    clock: Callable[[], datetime] = _utcnow
    id_factory: Callable[[], str] = _new_session_id
    _pending_teardowns: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )
    _sweeper: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    async def create_session(self, phone_number: str | None) -> CreatedSession:
        """Start a handshake for the phone number and register the session."""
        if phone_number is None or not phone_number.strip():
            raise ValidationError("Phone number is required")
        digits = _NON_DIGITS.sub("", phone_number)
        if not digits:
            raise ValidationError("Phone number must contain digits")

        session_id = self.id_factory()
        auth_dir = self.credential_store.allocate(session_id)
        session = PairingSession(
            id=session_id,
            phone_number=phone_number,
            created_at=self.clock(),
        )
        listener = SessionEventListener(session)
        try:
            started = await self.handshake_provider.start(digits, auth_dir, listener)
        except HandshakeInitError:
            self._destroy_storage(session_id)
            raise
        except Exception as exc:
            self._destroy_storage(session_id)
            raise HandshakeInitError("Failed to generate pair code") from exc

        async with session.lock:
            session.handshake_handle = started.handle
            session.pairing_code = started.pairing_code
        try:
            await self.registry.add(session)
        except Exception:
            session.torn_down = True
            await self._release(session)
            raise
        logger.info(
            "Pairing session %s created for %s", session_id, session.masked_phone_number
        )
        return CreatedSession(id=session_id, pairing_code=started.pairing_code)

    def get_status(self, session_id: str) -> SessionSnapshot:
        """Return the current status and scannable code of a session."""
        return self.registry.require(session_id).snapshot()

    def get_scannable_code(self, session_id: str) -> str:
        """Return the latest scannable code for a session."""
        session = self.registry.require(session_id)
        code = session.scannable_code
        if code is None:
            raise NotAvailableError("QR code not available yet")
        return code

    async def download_credentials(self, session_id: str) -> bytes:
        """Return the credential artifact and schedule the session's teardown."""
        session = self.registry.require(session_id)
        if session.status != CONNECTED:
            raise NotReadyError("WhatsApp not connected yet")
        content = self.credential_store.read_credentials(session_id)
        self._schedule_teardown(session_id)
        return content

    async def teardown(self, session_id: str) -> bool:
        """Release every resource of a session; return false if already gone."""
        session = self.registry.get(session_id)
        if session is None:
            return False
        async with session.lock:
            if session.torn_down:
                return False
            session.torn_down = True
        try:
            await self._release(session)
        finally:
            await self.registry.remove(session_id)
        logger.info("Session %s cleaned up", session_id)
        return True

    async def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Tear down every session older than the maximum age."""
        current = now or self.clock()
        expired = [
            session.id
            for session in self.registry.sessions()
            if current - session.created_at > self.max_session_age
        ]
        removed = [sid for sid in expired if await self.teardown(sid)]
        if removed:
            logger.info("Expired %d session(s)", len(removed))
        return removed

    def purge_orphaned_storage(self) -> list[str]:
        """Remove storage directories that no live session owns."""
        orphans = [
            sid
            for sid in self.credential_store.list_session_ids()
            if sid not in self.registry
        ]
        for session_id in orphans:
            self._destroy_storage(session_id)
        if orphans:
            logger.info("Purged %d orphaned session directories", len(orphans))
        return orphans

    def start_sweeper(self) -> None:
        """Run the expiry sweep periodically on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def shutdown(self) -> None:
        """Stop background work and tear down every remaining session."""
        if self._sweeper is not None:
            await _cancel(self._sweeper)
            self._sweeper = None
        for session in self.registry.sessions():
            await self.teardown(session.id)
        # Every session is gone, so pending grace timers have nothing left to do.
        for task in list(self._pending_teardowns):
            await _cancel(task)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("Expiry sweep failed")

    def _schedule_teardown(self, session_id: str) -> None:
        task = asyncio.create_task(self._teardown_later(session_id))
        self._pending_teardowns.add(task)
        task.add_done_callback(self._pending_teardowns.discard)

    async def _teardown_later(self, session_id: str) -> None:
        await asyncio.sleep(self.download_grace_seconds)
        await self.teardown(session_id)

    async def _release(self, session: PairingSession) -> None:
        async with session.lock:
            handle = session.handshake_handle
            session.handshake_handle = None
        if handle is not None:
            try:
                await self.handshake_provider.stop(handle)
            except Exception:
                logger.exception(
                    "Failed to stop handshake", extra={"session_id": session.id}
                )
        self._destroy_storage(session.id)

    def _destroy_storage(self, session_id: str) -> None:
        try:
            self.credential_store.destroy(session_id)
        except StorageError:
            logger.exception(
                "Failed to remove session storage", extra={"session_id": session_id}
            )


async def _cancel(task: asyncio.Task[None]) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
