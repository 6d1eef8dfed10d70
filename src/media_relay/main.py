"""FastAPI application entrypoint for the media relay service."""
from __future__ import annotations

import logging
from typing import Final

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from media_relay.api.http import router as api_router
from media_relay.core.config import Settings, get_settings
from media_relay.core.logging_cfg import setup_logging
from media_relay.domain.errors import RelayError, ValidationError
from media_relay.infra.extractor import Extractor, get_extractor

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Notes
    -----
    - Logging is configured up front based on settings; settings are loaded once.
    - The extractor executable is resolved here, once, and reused by every request.
    - ``RelayError`` subclasses are rendered as ``{"error": <public message>}`` with
      the error's status code; extractor diagnostics never reach the response.
    - Malformed bodies and query values rejected by FastAPI are answered the same way,
      as a 400 ``ValidationError``.

    Returns
    -------
    FastAPI
        The configured FastAPI application.
    """

    settings: Settings = get_settings()
    setup_logging(settings.debug)
    extractor: Extractor = get_extractor()
    logger.info("extractor resolved", extra={"argv": extractor.command})

    app: FastAPI = FastAPI(title=settings.app_name)
    app.include_router(api_router)

    @app.exception_handler(RelayError)
    async def relay_error_handler(_: Request, exc: RelayError) -> JSONResponse:
        if exc.diagnostics:
            logger.info(
                "request failed: %s",
                type(exc).__name__,
                extra={"stderr": exc.diagnostics[-2000:]},
            )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return await relay_error_handler(request, ValidationError(diagnostics=str(exc.errors())))

    @app.get("/health", tags=["system"])
    def health() -> dict[str, object]:
        """Health check endpoint.

        Notes
        -----
        - Lightweight liveness probe; reports the resolved extractor argv but does
          not spawn it.
        """

        return {"status": "ok", "extractor": extractor.command}

    return app


app: Final[FastAPI] = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings: Settings = get_settings()
    uvicorn.run("media_relay.main:app", host=_settings.host, port=_settings.port, reload=_settings.debug)
