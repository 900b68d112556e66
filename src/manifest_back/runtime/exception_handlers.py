"""
Exception handlers for manifest-back applications.

Translates the ManifestBackError hierarchy into JSON responses:
- NotFoundError: 404
- BadRequestError: 400
- ForbiddenError: 403
- ValidationFailedError: 400 with the list of field errors
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from manifest_back.errors import (
    BadRequestError,
    ForbiddenError,
    ManifestBackError,
    NotFoundError,
    ValidationFailedError,
)

logger = logging.getLogger("manifest_back.http")


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register standard exception handlers on a FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(ValidationFailedError)
    async def validation_failed_handler(
        request: Request, exc: ValidationFailedError
    ) -> Response:
        """Return the field errors as the response body."""
        logger.warning(
            "Validation failed on %s %s: %s",
            request.method,
            request.url.path,
            [e.property for e in exc.errors],
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=[e.model_dump(mode="json") for e in exc.errors],
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> Response:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": "not_found"},
        )

    @app.exception_handler(BadRequestError)
    async def bad_request_handler(request: Request, exc: BadRequestError) -> Response:
        logger.warning("Bad request on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": "bad_request"},
        )

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError) -> Response:
        logger.warning("Forbidden %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": "forbidden"},
        )

    @app.exception_handler(ManifestBackError)
    async def manifest_back_error_handler(
        request: Request, exc: ManifestBackError
    ) -> Response:
        logger.error("Unhandled %s: %s", type(exc).__name__, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": "error"},
        )
