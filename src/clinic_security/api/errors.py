"""Exception handlers mapping the domain taxonomy to JSON error envelopes.

Every error body is ``{"success": false, "message": ..., "error"?: ...}``.
Raw exception text is only exposed outside production.
"""

from collections.abc import Sequence
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinic_security.core.config import Settings
from clinic_security.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from clinic_security.schemas.common import ErrorResponse


def error_response(
    settings: Settings,
    status_code: int,
    message: str,
    exc: Exception | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build an error envelope, adding the raw error text when not in production."""
    body = ErrorResponse(message=message, error=str(exc) if exc is not None and not settings.is_production else None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


def _describe_validation_errors(errors: Sequence[Any]) -> str:
    parts = []
    for err in errors:
        # drop the "query"/"body"/"path" location prefix
        field = ".".join(str(p) for p in err.get("loc", ())[1:])
        parts.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return "Invalid request: " + "; ".join(parts)


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Register handlers for request validation, HTTP, domain, storage and unexpected errors.

    Args:
        app: The FastAPI application.
        settings: Application settings.
    """

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(settings, 400, _describe_validation_errors(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(settings, exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
        return error_response(settings, 400, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return error_response(settings, 404, str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return error_response(settings, 409, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return error_response(settings, 400, str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
        return error_response(settings, 500, "Internal server error", exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(settings, 500, "Internal server error", exc)
