"""HTTP-facing error taxonomy and the plain-text handlers that render it.

Handlers raise these; backend exceptions never cross this boundary.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ObjectServiceError(Exception):
    """Base error: caller-safe message plus HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(ObjectServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class Forbidden(ObjectServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Invalid or expired link"


class NotFound(ObjectServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "File not found"


class MethodNotAllowed(ObjectServiceError):
    status_code = status.HTTP_405_METHOD_NOT_ALLOWED
    default_message = "Method not allowed"


class PayloadTooLarge(ObjectServiceError):
    status_code = status.HTTP_413_CONTENT_TOO_LARGE
    default_message = "Payload too large"


class InternalError(ObjectServiceError):
    pass


async def _object_service_error_handler(request: Request, exc: ObjectServiceError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=exc.status_code)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
    # Routing errors (unknown path, wrong verb) use the same plain-text shape
    headers = getattr(exc, "headers", None)
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        err = MethodNotAllowed()
        return PlainTextResponse(err.message, status_code=err.status_code, headers=headers)
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ObjectServiceError, _object_service_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
