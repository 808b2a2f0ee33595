"""Global exception handlers — map SDK exceptions to HTTP status codes.

The SDK raises typed exceptions from ``recordeval.errors``.  Rather than
catching these in every route, we install global handlers that pick the
status code from the exception type.  This keeps route handlers clean and
focused on the happy path.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from recordeval.errors import (
    DuplicateSessionIdError,
    EvaluatorError,
    RecordEvalError,
    SessionExpiredError,
    SessionNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# --- SDK exception types and their HTTP status codes ---
# Checked in order; first isinstance match wins.
_STATUS_BY_ERROR: list[tuple[type[RecordEvalError], int]] = [
    (ValidationError, 400),
    (SessionNotFoundError, 404),
    (DuplicateSessionIdError, 409),
    (SessionExpiredError, 410),
    # Only chat lets these escape; evaluations absorb them
    (EvaluatorError, 502),
]


# --- Client-safe messages keyed by HTTP status code ---
# Session ids and evaluator details stay in the server log; the client
# receives only a generic description.  400 is the exception: validation
# messages describe the caller's own input and are returned verbatim.
_SAFE_MESSAGES: dict[int, str] = {
    404: "Session not found",
    409: "Session already exists",
    410: "Session has expired",
    502: "Evaluator unavailable",
}


async def sdk_error_handler(request: Request, exc: RecordEvalError) -> JSONResponse:
    """Map a ``RecordEvalError`` to its HTTP error response.

    Unrecognised SDK errors are treated as internal failures.
    """
    status = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break

    if status == 500:
        return await generic_error_handler(request, exc)

    logger.warning("%s [%d] at %s: %s", type(exc).__name__, status, request.url, exc)
    detail = str(exc) if status == 400 else _SAFE_MESSAGES[status]
    return JSONResponse(status_code=status, content={"detail": detail})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
