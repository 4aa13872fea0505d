"""ASGI application: the filter and bootstrap routes behind the host's session cookie."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from allyfilter.config import Settings, get_settings
from allyfilter.models.db import close_db, init_db
from allyfilter.routers import bootstrap, rewrite
from allyfilter.services.wrapper import get_wrapper_renderer, reset_wrapper_renderer

logger = logging.getLogger("allyfilter")

SESSION_COOKIE = "allyfilter_session"
SESSION_MAX_AGE = 86400 * 7  # 7 days


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Prepare the database and wrapper templates; release them on shutdown."""
    settings = get_settings()
    logger.info("Starting allyfilter (marker %r, %s scope)", settings.file_marker, settings.replace_scope)

    await init_db()
    renderer = get_wrapper_renderer()
    logger.debug("Wrapper templates loaded from %s", renderer.loader.custom_path or "the package")

    yield

    logger.info("Shutting down allyfilter")
    reset_wrapper_renderer()
    await close_db()


async def on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure; only debug builds reveal what went wrong."""
    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
    content = {"detail": "Internal server error"}
    if get_settings().debug:
        content = {"detail": str(exc), "type": type(exc).__name__}
    return JSONResponse(status_code=500, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="allyfilter",
        description="Wraps links and images of stored files for accessibility tooling",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.add_exception_handler(HTTPException, on_http_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, on_unexpected_error)

    # The host application signs the user into this cookie
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie=SESSION_COOKIE,
        max_age=SESSION_MAX_AGE,
        same_site="lax",
        https_only=not settings.debug,
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    app.include_router(rewrite.router)
    app.include_router(bootstrap.router)
    return app


app = create_app()
