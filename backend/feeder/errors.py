"""Exception hierarchy and the FastAPI handlers that render it.

Every error the API raises on purpose derives from FeederError and carries its
HTTP status. Handlers answer with ``{"error": message}``; unexpected errors and
database failures are logged here and reach the client only as a generic
message.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FeederError(Exception):
    default_message = "An unexpected error occurred"
    status_code = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class Unauthorized(FeederError):
    default_message = "Unauthorized"
    status_code = 401


class InvalidArgument(FeederError):
    default_message = "Invalid request"
    status_code = 400


class NoRecipients(InvalidArgument):
    default_message = "No notification recipients configured"


class NotFound(FeederError):
    default_message = "Not found"
    status_code = 404


class Conflict(FeederError):
    default_message = "Conflict"
    status_code = 409


class StorageError(FeederError):
    default_message = "Database error"
    status_code = 500


class RelayError(FeederError):
    """Publishing a command to the device relay failed.

    ``command`` is set once the command row exists, so strict mode can hand the
    persisted record back to the caller.
    """

    default_message = "Failed to publish command to device"
    status_code = 502

    def __init__(self, message: str | None = None, command: Any = None):
        super().__init__(message)
        self.command = command

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.command is not None:
            body["command"] = self.command.to_dict()
        return body


class MailerError(FeederError):
    default_message = "Failed to send email"
    status_code = 502


async def feeder_error_handler(request: Request, exc: FeederError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=400, content={"error": message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": StorageError.default_message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FeederError, feeder_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
