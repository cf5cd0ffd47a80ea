"""Shared test fixtures."""

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from pairlink.adapters.credential_store import FilesystemCredentialStore
from pairlink.adapters.handshake_bridge import HandshakeListener, HandshakeProvider
from pairlink.config import Settings
from pairlink.containers import AppContainer, build_controller
from pairlink.domain.handshake import CloseReason, HandshakeHandle, HandshakeStart
from pairlink.services.rate_limit import InMemoryRateLimiter
from pairlink.services.registry import SessionRegistry
from pairlink.services.sessions import SessionLifecycleController

FAKE_CREDENTIALS = b'{"me": {"id": "15551234567:1@s.whatsapp.net"}}'


@dataclass
class FakeHandshakeProvider(HandshakeProvider):
    """Fake provider that records calls and lets tests push events."""

    pairing_code: str = "XXXX-XXXX"
    fail_with: Exception | None = None
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    listeners: dict[str, HandshakeListener] = field(default_factory=dict)
    auth_dirs: dict[str, Path] = field(default_factory=dict)

    async def start(
        self, phone_number: str, auth_dir: Path, listener: HandshakeListener
    ) -> HandshakeStart:
        if self.fail_with is not None:
            raise self.fail_with
        self.started.append(phone_number)
        session_id = auth_dir.name
        self.listeners[session_id] = listener
        self.auth_dirs[session_id] = auth_dir
        return HandshakeStart(
            handle=HandshakeHandle(handshake_id=f"hs-{session_id}"),
            pairing_code=self.pairing_code,
        )

    async def stop(self, handle: HandshakeHandle) -> None:
        self.stopped.append(handle.handshake_id)

    async def emit_scannable_code(self, session_id: str, payload: str) -> None:
        await self.listeners[session_id].on_scannable_code(payload)

    async def emit_opened(
        self, session_id: str, credentials: bytes | None = FAKE_CREDENTIALS
    ) -> None:
        if credentials is not None:
            (self.auth_dirs[session_id] / "creds.json").write_bytes(credentials)
        await self.listeners[session_id].on_opened()

    async def emit_closed(self, session_id: str, status_code: int | None) -> None:
        await self.listeners[session_id].on_closed(
            CloseReason(status_code=status_code, message="Connection Failure")
        )


@dataclass
class SequentialIds:
    """Deterministic session id factory."""

    prefix: str = "session"
    issued: int = 0

    def __call__(self) -> str:
        self.issued += 1
        return f"{self.prefix}-{self.issued}"


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "sessions"


@pytest.fixture
def settings(storage_root: Path) -> Settings:
    return Settings(
        handshake_bridge_url="http://bridge.test",
        storage_root=storage_root,
        download_grace_seconds=0.05,
        sweep_interval_seconds=3600,
        max_session_age_seconds=7200,
        rate_limit_window_seconds=900,
        rate_limit_max_requests=5,
    )


@pytest.fixture
def credential_store(storage_root: Path) -> FilesystemCredentialStore:
    return FilesystemCredentialStore.create(storage_root)


@pytest.fixture
def handshake_provider() -> FakeHandshakeProvider:
    return FakeHandshakeProvider()


@pytest.fixture
def controller(
    settings: Settings,
    credential_store: FilesystemCredentialStore,
    handshake_provider: FakeHandshakeProvider,
) -> SessionLifecycleController:
    return build_controller(
        settings, SessionRegistry(), credential_store, handshake_provider
    )


@pytest.fixture
def container(
    settings: Settings,
    credential_store: FilesystemCredentialStore,
    handshake_provider: FakeHandshakeProvider,
    controller: SessionLifecycleController,
) -> AppContainer:
    rate_limiter = InMemoryRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        credential_store=credential_store,
        handshake_provider=handshake_provider,
        registry=controller.registry,
        session_controller=controller,
        rate_limiter=rate_limiter,
        close_resources=close_resources,
    )
