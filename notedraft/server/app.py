"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from notedraft import __version__
from notedraft.publisher.errors import PublishError, SafetyError
from notedraft.server.routes import router
from notedraft.store.settings import SettingsError


async def safety_exception_handler(request: Request, exc: SafetyError) -> JSONResponse:
    logger.warning("Refused {} {}: {}", request.method, request.url.path, exc)
    return JSONResponse(status_code=403, content={"error": str(exc), "code": exc.code})


async def settings_exception_handler(request: Request, exc: SettingsError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def publish_exception_handler(request: Request, exc: PublishError) -> JSONResponse:
    logger.error("Unhandled publish error on {}: {}", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc), "code": exc.code})


def create_app() -> FastAPI:
    app = FastAPI(title="notedraft", version=__version__, docs_url=None, redoc_url=None)
    app.add_exception_handler(SafetyError, safety_exception_handler)
    app.add_exception_handler(SettingsError, settings_exception_handler)
    app.add_exception_handler(PublishError, publish_exception_handler)

    @app.get("/health", include_in_schema=False)
    async def health_check() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    app.include_router(router, prefix="/api/dev", tags=["dev"])
    return app


app = create_app()
