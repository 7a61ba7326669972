import structlog
from fastapi import Request
from fastapi.responses import JSONResponse, Response

from sequencer.errors import (
    ConfigurationError,
    NotFoundError,
    SequenceDisabledError,
    SequenceExhaustedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def create_json_error_response(status_code: int, message: str, error_type: str | None = None) -> JSONResponse:
    """Create JSON error response with optional type for machine parsing."""
    content = {"message": message}
    if error_type:
        content["type"] = error_type
    return JSONResponse(status_code=status_code, content=content)


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses with appropriate status codes."""
    if isinstance(exc, NotFoundError):
        status_code = 404
        error_type = "not_found"
    elif isinstance(exc, ConfigurationError):
        status_code = 400
        error_type = "configuration_error"
    elif isinstance(exc, ValidationError):
        status_code = 400
        error_type = "validation_error"
    elif isinstance(exc, SequenceDisabledError):
        status_code = 409
        error_type = "sequence_disabled"
    elif isinstance(exc, SequenceExhaustedError):
        status_code = 409
        error_type = "sequence_exhausted"
    else:
        # Default for any other UserError subclass
        status_code = 400
        error_type = "bad_request"

    return create_json_error_response(status_code=status_code, message=str(exc), error_type=error_type)


async def persistence_error_handler(_: Request, exc: Exception) -> Response:
    """Storage failures: the caller may retry, no number was issued."""
    logger.error("persistence_error", error=str(exc))
    return create_json_error_response(
        status_code=503, message="Sequence storage is unavailable.", error_type="persistence_error"
    )


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("unexpected_error", error=str(exc))
    return create_json_error_response(
        status_code=500, message="An unexpected error occurred.", error_type="internal_server_error"
    )
