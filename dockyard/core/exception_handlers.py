"""
Maps domain exceptions to HTTP responses.

Every DomainException raised by a route is answered with its category's
status code and a body of the form
{"detail": message, "error_type": class name, **details}.
"""
import logging
from typing import Tuple, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from dockyard.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainException,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# First matching category wins; anything else is a server-side failure
STATUS_BY_CATEGORY: Tuple[Tuple[Type[DomainException], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
)


def status_code_for(exc: DomainException) -> int:
    """HTTP status code for a domain exception."""
    for category, code in STATUS_BY_CATEGORY:
        if isinstance(exc, category):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(
            f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}",
            extra={"details": exc.details},
        )
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": exc.__class__.__name__,
            **exc.details,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain exception handler; covers every subclass."""
    app.add_exception_handler(DomainException, domain_exception_handler)
