"""Error taxonomy for pairing sessions."""


class PairingError(Exception):
    """Base exception for all pairing errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PairingError):
    """Request input is missing or malformed."""


class HandshakeInitError(PairingError):
    """The handshake provider rejected or failed to start a handshake."""


class NotFoundError(PairingError):
    """Unknown session, or a session artifact that does not exist yet."""


class NotReadyError(PairingError):
    """The session has not reached the state the operation requires."""


class NotAvailableError(PairingError):
    """The session exists but the requested value has not been issued yet."""


class StorageError(PairingError):
    """Filesystem operation on session storage failed."""


class DuplicateSessionError(PairingError):
    """A session with the same id is already registered."""
