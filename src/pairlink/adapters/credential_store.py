"""Filesystem-backed storage for per-session credentials."""

import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pairlink.domain.errors import NotFoundError, StorageError

# Session ids double as directory names, so keep them path-safe.
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

CREDENTIALS_FILENAME = "creds.json"


class CredentialStore(Protocol):
    """Persistence interface for session credential material."""

    def allocate(self, session_id: str) -> Path:
        """Create an empty storage location for the session and return it."""

    def read_credentials(self, session_id: str) -> bytes:
        """Return the persisted credential artifact for the session."""

    def destroy(self, session_id: str) -> None:
        """Remove the session's storage location, if present."""

    def list_session_ids(self) -> list[str]:
        """Return ids of every storage location under the root."""


@dataclass
class FilesystemCredentialStore(CredentialStore):
    """One directory per session under a shared root."""

    root: Path
    credentials_filename: str = CREDENTIALS_FILENAME

    @classmethod
    def create(cls, root: Path | str) -> "FilesystemCredentialStore":
        """Create a store, making sure the root directory exists."""
        resolved = Path(root)
        try:
            resolved.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create storage root {resolved}") from exc
        return cls(root=resolved)

    def location(self, session_id: str) -> Path:
        """Return the directory that belongs to a session."""
        if not SESSION_ID_PATTERN.match(session_id):
            raise StorageError(f"Invalid session id: {session_id!r}")
        return self.root / session_id

    def allocate(self, session_id: str) -> Path:
        """Create the session directory; it must not exist yet."""
        path = self.location(session_id)
        try:
            path.mkdir()
        except FileExistsError as exc:
            raise StorageError(f"Storage for session {session_id} already exists") from exc
        except OSError as exc:
            raise StorageError(f"Cannot create storage for session {session_id}") from exc
        return path

    def read_credentials(self, session_id: str) -> bytes:
        """Read the credential artifact written by the handshake provider."""
        path = self.location(session_id) / self.credentials_filename
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("Credentials file not found") from exc
        except OSError as exc:
            raise StorageError(f"Cannot read credentials for session {session_id}") from exc

    def destroy(self, session_id: str) -> None:
        """Recursively remove the session directory. Missing is fine."""
        path = self.location(session_id)
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Cannot remove storage for session {session_id}") from exc

    def list_session_ids(self) -> list[str]:
        """Return the names of session directories under the root."""
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return []
        return sorted(
            entry.name
            for entry in entries
            if entry.is_dir() and SESSION_ID_PATTERN.match(entry.name)
        )
