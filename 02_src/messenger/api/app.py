"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..app import Application
from ..errors import Forbidden, MessengerError, NotAuthorized, NotFound, ValidationError
from ..logging_config import get_logger
from .routes import control, groups, messaging, observability, realtime, users

logger = get_logger(__name__)

# Most specific class first: NotMember and Expired are Forbidden subclasses
ERROR_STATUS: list[tuple[type[MessengerError], int]] = [
    (ValidationError, 400),
    (NotAuthorized, 403),
    (Forbidden, 403),
    (NotFound, 404),
]


def status_for(error: MessengerError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        await application.start()
        yield
        await application.stop()

    fastapi_app = FastAPI(
        title="Messenger Core API",
        description="Real-time message delivery and status tracking",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Enable CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fastapi_app.exception_handler(MessengerError)
    async def messenger_error_handler(request: Request, exc: MessengerError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.code, "detail": exc.message},
        )

    @fastapi_app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    # Include routers
    fastapi_app.include_router(messaging.create_messaging_router(application))
    fastapi_app.include_router(groups.create_groups_router(application))
    fastapi_app.include_router(users.create_users_router(application))
    fastapi_app.include_router(realtime.create_realtime_router(application))
    fastapi_app.include_router(observability.create_observability_router(application))
    fastapi_app.include_router(control.create_control_router(application))

    return fastapi_app
