"""Domain models for pairing sessions."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from pairlink.domain.handshake import HandshakeHandle

CONNECTING = "connecting"
CONNECTED = "connected"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({CONNECTED, FAILED})


@dataclass
class PairingSession:
    """Mutable state of one device-linking attempt.

    Every mutation happens while holding ``lock``.
    """

    id: str
    phone_number: str
    created_at: datetime
    status: str = CONNECTING
    pairing_code: str | None = None
    scannable_code: str | None = None
    handshake_handle: HandshakeHandle | None = None
    torn_down: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def masked_phone_number(self) -> str:
        """Phone number with all but the last four digits hidden."""
        digits = "".join(char for char in self.phone_number if char.isdigit())
        return "*" * max(0, len(digits) - 4) + digits[-4:]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> "SessionSnapshot":
        """Return an immutable view for pollers."""
        return SessionSnapshot(
            id=self.id,
            status=self.status,
            scannable_code=self.scannable_code,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of a session."""

    id: str
    status: str
    scannable_code: str | None
    created_at: datetime

    @property
    def scannable_code_available(self) -> bool:
        return self.scannable_code is not None


@dataclass(frozen=True)
class CreatedSession:
    """Handle returned to the requester after a session is created."""

    id: str
    pairing_code: str
