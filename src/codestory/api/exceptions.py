"""Exception handlers for Code Story API."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from codestory.core.errors import (
    ArtifactInvalidError,
    CodeStoryError,
    InvalidIdentifierError,
    StoryNotFoundError,
)

logger = logging.getLogger(__name__)


def status_for(exc: CodeStoryError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, StoryNotFoundError):
        return 404
    if isinstance(exc, (ArtifactInvalidError, InvalidIdentifierError)):
        return 422
    return 500


async def codestory_error_handler(request: Request, exc: CodeStoryError) -> JSONResponse:
    """Handle domain errors raised by the catalog and pipeline."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "Validation error",
            "details": exc.errors(include_url=False, include_context=False),
        },
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unexpected error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers."""
    app.add_exception_handler(CodeStoryError, codestory_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
