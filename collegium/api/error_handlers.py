"""
Global exception handlers mapping the Collegium error taxonomy onto HTTP.

    CollegiumException       -> status by class, body {"error": to_dict()}
    RequestValidationError   -> 400 with field-level details
    Exception (catch-all)    -> 500, never leaks internals
"""

import logging
from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    BusinessRuleError, CollegiumException, NoGradedWorkError, NotFoundError,
    StoreUnavailableError, ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific class first; the first isinstance match wins.
HTTP_STATUS_BY_ERROR: Dict[Type[CollegiumException], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NoGradedWorkError: 422,
    BusinessRuleError: status.HTTP_409_CONFLICT,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_status_for(exc: CollegiumException) -> int:
    for error_type, http_status in HTTP_STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return http_status
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(CollegiumException)
    async def collegium_error_handler(request: Request, exc: CollegiumException):
        http_status = http_status_for(exc)
        if http_status >= 500:
            logger.error(
                "%s on %s: %s", type(exc).__name__, request.url.path, exc.message,
                extra={'error_code': exc.error_code, 'path': request.url.path},
            )
        else:
            logger.info(
                "Request rejected: %s", exc.message,
                extra={'error_code': exc.error_code, 'path': request.url.path},
            )
        return JSONResponse(status_code=http_status, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": {
                    "code": "VALIDATION",
                    "message": "Invalid request data",
                    "details": {
                        "fields": [
                            {
                                "field": ".".join(str(loc) for loc in e["loc"]),
                                "message": e["msg"],
                                "type": e["type"],
                            }
                            for e in exc.errors()
                        ],
                    },
                },
            },
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "details": {},
                },
            },
        )
