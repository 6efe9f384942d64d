"""
Signylite - Local FastAPI Application
Loopback-only HTTP adapter for the document marking engine.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from signylite import __version__
from signylite.config import get_cors_origins, get_settings
from signylite.exceptions import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from signylite.routers import health, marking
from signylite.utils.logging import RequestIdMiddleware, setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else settings.log_level,
    )
    logger.info(f"Starting Signylite v{__version__} ({settings.environment}) on {settings.host}")
    yield
    logger.info("Shutting down Signylite")


app = FastAPI(
    title="Signylite",
    description="""Local document marking engine.

Overlays a typed, drawn or uploaded signature, or a tiled watermark, onto a
PDF or image and returns the new file. Documents never leave this machine:
the service binds to the loopback interface and makes no outbound calls.
""",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "documents", "description": "Inspect and mark documents"},
        {"name": "health", "description": "Health check endpoints"},
    ],
)

# Middleware
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=[
        "Content-Disposition",
        "X-Content-Fingerprint",
        "X-Signylite-Status",
        "X-Request-ID",
    ],
)

# Exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(health.router)
app.include_router(marking.router)


# Run with uvicorn
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "signylite.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
