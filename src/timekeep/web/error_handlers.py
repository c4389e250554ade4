from typing import cast

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from timekeep.errors import UserError
from timekeep.utils import isoformat, now

logger = structlog.get_logger(__name__)


def create_json_error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Create the standard error envelope: ``{success, error: {code, message}, timestamp}``."""
    content = {
        "success": False,
        "error": {"code": code, "message": message},
        "timestamp": isoformat(now()),
    }
    return JSONResponse(status_code=status_code, content=content)


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses with their own status code and error code."""
    error = cast(UserError, exc)
    return create_json_error_response(status_code=error.status_code, code=error.code, message=str(error))


async def request_validation_handler(_: Request, exc: Exception) -> Response:
    """Malformed request bodies and parameters (400)."""
    message = "Invalid request"
    if isinstance(exc, RequestValidationError) and exc.errors():
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else str(first.get("msg", message))
    return create_json_error_response(status_code=400, code="INVALID_REQUEST", message=message)


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("unexpected_error", error=str(exc))
    return create_json_error_response(
        status_code=500, code="INTERNAL_ERROR", message="An unexpected error occurred."
    )
