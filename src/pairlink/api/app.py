"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pairlink.api.models import (
    PairCodeRequest,
    PairCodeResponse,
    QrResponse,
    StatusResponse,
)
from pairlink.app_logging import configure_logging
from pairlink.config import parse_cors_origins
from pairlink.containers import AppContainer
from pairlink.domain.errors import (
    DuplicateSessionError,
    HandshakeInitError,
    NotAvailableError,
    NotFoundError,
    NotReadyError,
    PairingError,
    StorageError,
    ValidationError,
)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."

_ERROR_STATUS: dict[type[PairingError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotReadyError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    NotAvailableError: status.HTTP_409_CONFLICT,
    DuplicateSessionError: status.HTTP_409_CONFLICT,
    HandshakeInitError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    StorageError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _get_container(request: Request) -> AppContainer:
    return request.app.state.container


async def enforce_rate_limit(
    request: Request,
    response: Response,
    container: AppContainer = Depends(_get_container),
) -> None:
    """Reject clients that exceed the pair-code request budget."""
    client_key = request.client.host if request.client else "unknown"
    decision = container.rate_limiter.hit(client_key)
    headers = {
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(decision.reset_after_seconds),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.reset_after_seconds)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=RATE_LIMIT_MESSAGE,
            headers=headers,
        )
    response.headers.update(headers)


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        controller = state_container.session_controller
        if state_container.settings.purge_orphans_on_startup:
            try:
                controller.purge_orphaned_storage()
            except Exception:
                logger.exception("Failed to purge orphaned session storage")
        controller.start_sweeper()
        yield
        await controller.shutdown()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(container.settings.cors_allow_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PairingError)
    async def pairing_error_handler(
        request: Request, exc: PairingError
    ) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(
                "Request failed: %s",
                exc.message,
                exc_info=exc,
                extra={"path": request.url.path},
            )
        return JSONResponse(
            status_code=status_code,
            content={"error": _format_error(container, exc)},
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": _format_validation_errors(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post(
        "/api/generate-pair-code",
        dependencies=[Depends(enforce_rate_limit)],
    )
    async def generate_pair_code(
        request: Request, body: PairCodeRequest | None = Body(default=None)
    ) -> PairCodeResponse:
        """Start a pairing session and return its pairing code."""
        state_container: AppContainer = request.app.state.container
        created = await state_container.session_controller.create_session(
            body.phone_number if body else None
        )
        return PairCodeResponse(code=created.pairing_code, session_id=created.id)

    @app.get("/api/check-status/{session_id}")
    async def check_status(session_id: str, request: Request) -> StatusResponse:
        """Return the progress of a pairing session."""
        state_container: AppContainer = request.app.state.container
        snapshot = state_container.session_controller.get_status(session_id)
        return StatusResponse(
            status=snapshot.status,
            qr=snapshot.scannable_code,
            qr_available=snapshot.scannable_code_available,
        )

    @app.get("/api/get-qr/{session_id}")
    async def get_qr(session_id: str, request: Request) -> QrResponse:
        """Return the latest scannable code of a pairing session."""
        state_container: AppContainer = request.app.state.container
        return QrResponse(
            qr=state_container.session_controller.get_scannable_code(session_id)
        )

    @app.get("/api/download-creds/{session_id}")
    async def download_creds(session_id: str, request: Request) -> Response:
        """Send the credential file; the session is removed shortly after."""
        state_container: AppContainer = request.app.state.container
        content = await state_container.session_controller.download_credentials(
            session_id
        )
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": 'attachment; filename="creds.json"'},
        )

    return app


def _status_for(exc: PairingError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in _ERROR_STATUS:
            return _ERROR_STATUS[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _format_error(container: AppContainer, exc: PairingError) -> str:
    """Return a user-facing error message with local debug info for 5xx."""
    if (
        container.settings.environment == "local"
        and _status_for(exc) >= status.HTTP_500_INTERNAL_SERVER_ERROR
        and exc.__cause__ is not None
    ):
        cause = exc.__cause__
        return f"{exc.message} (debug: {type(cause).__name__}: {cause})"
    return exc.message


def _format_validation_errors(exc: RequestValidationError) -> str:
    """Flatten request validation errors into one message."""
    parts = []
    for error in exc.errors():
        field = next(
            (str(part) for part in reversed(error.get("loc", ())) if part != "body"),
            None,
        )
        message = str(error.get("msg", "Invalid value"))
        parts.append(f"{field}: {message}" if field else message)
    return "; ".join(parts) or "Invalid request"
