"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from pairlink.adapters.credential_store import (
    CredentialStore,
    FilesystemCredentialStore,
)
from pairlink.adapters.handshake_bridge import HandshakeProvider, HttpxHandshakeProvider
from pairlink.config import Settings, parse_browser
from pairlink.services.rate_limit import InMemoryRateLimiter
from pairlink.services.registry import SessionRegistry
from pairlink.services.sessions import SessionLifecycleController


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    credential_store: CredentialStore
    handshake_provider: HandshakeProvider
    registry: SessionRegistry
    session_controller: SessionLifecycleController
    rate_limiter: InMemoryRateLimiter
    close_resources: Callable[[], Awaitable[None]]


def build_controller(
    settings: Settings,
    registry: SessionRegistry,
    credential_store: CredentialStore,
    handshake_provider: HandshakeProvider,
) -> SessionLifecycleController:
    """Create the lifecycle controller from settings."""
    return SessionLifecycleController(
        registry=registry,
        credential_store=credential_store,
        handshake_provider=handshake_provider,
        max_session_age=timedelta(seconds=settings.max_session_age_seconds),
        sweep_interval_seconds=settings.sweep_interval_seconds,
        download_grace_seconds=settings.download_grace_seconds,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    credential_store = FilesystemCredentialStore.create(resolved_settings.storage_root)
    handshake_provider = HttpxHandshakeProvider.create(
        base_url=resolved_settings.handshake_bridge_url,
        browser=parse_browser(resolved_settings.handshake_browser),
    )
    registry = SessionRegistry()
    session_controller = build_controller(
        resolved_settings, registry, credential_store, handshake_provider
    )
    rate_limiter = InMemoryRateLimiter(
        max_requests=resolved_settings.rate_limit_max_requests,
        window_seconds=resolved_settings.rate_limit_window_seconds,
    )

    async def close_resources() -> None:
        await handshake_provider.close()

    return AppContainer(
        settings=resolved_settings,
        credential_store=credential_store,
        handshake_provider=handshake_provider,
        registry=registry,
        session_controller=session_controller,
        rate_limiter=rate_limiter,
        close_resources=close_resources,
    )
