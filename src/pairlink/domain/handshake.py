"""Domain models for external handshakes."""

from dataclasses import dataclass

# Status code the messaging network uses for an authoritative logout.
LOGGED_OUT_STATUS_CODE = 401


@dataclass(frozen=True)
class HandshakeHandle:
    """Opaque reference to a live handshake owned by the provider."""

    handshake_id: str


@dataclass(frozen=True)
class HandshakeStart:
    """Result of starting a handshake."""

    handle: HandshakeHandle
    pairing_code: str


@dataclass(frozen=True)
class CloseReason:
    """Why the provider's connection closed."""

    status_code: int | None = None
    message: str = ""

    @property
    def is_logged_out(self) -> bool:
        """Return true when the closure is an authoritative logout or rejection."""
        return self.status_code == LOGGED_OUT_STATUS_CODE

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message or "unknown"
        return f"{self.message or 'closed'} ({self.status_code})"
