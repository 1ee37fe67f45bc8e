"""HTTP translation of service errors.

Every error response carries ``detail`` and ``presentation`` so the client
knows whether to show a banner, a blocking screen or simply keep courses
locked.
"""

import logging
import math
from typing import Dict, List, Tuple, Type

from fastapi import Request, status
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

from core.exceptions import (
    AccountDisabledError,
    ClassExpiredError,
    ClassFullError,
    ClassInactiveError,
    ClassNotFoundError,
    ConfigurationError,
    DuplicateClassCodeError,
    EmailNotVerifiedError,
    EnrollmentStoreError,
    ForensicAccessError,
    IdentityServiceError,
    InvalidCredentialsError,
    NetworkError,
    NoUserError,
    Presentation,
    RateLimitedError,
    RegistrationError,
    ResolveStoreError,
    ServiceUnavailableError,
    StaleSessionError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong, please try again"

# Checked in order; subclasses come before their bases
_STATUS_CODES: List[Tuple[Type[ForensicAccessError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (RegistrationError, status.HTTP_400_BAD_REQUEST),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (StaleSessionError, status.HTTP_401_UNAUTHORIZED),
    (EmailNotVerifiedError, status.HTTP_403_FORBIDDEN),
    (AccountDisabledError, status.HTTP_403_FORBIDDEN),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ClassNotFoundError, status.HTTP_404_NOT_FOUND),
    (NoUserError, status.HTTP_404_NOT_FOUND),
    (ClassExpiredError, status.HTTP_410_GONE),
    (ClassFullError, status.HTTP_409_CONFLICT),
    (ClassInactiveError, status.HTTP_409_CONFLICT),
    (DuplicateClassCodeError, status.HTTP_409_CONFLICT),
    (NetworkError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (EnrollmentStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ResolveStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (IdentityServiceError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_code_for(exc: ForensicAccessError) -> int:
    for exc_type, code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(detail: str, presentation: Presentation) -> Dict[str, str]:
    return {"detail": detail, "presentation": presentation.value}


async def service_error_handler(request: Request, exc: ForensicAccessError) -> JSONResponse:
    code = status_code_for(exc)
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(max(math.ceil(exc.retry_after), 1))
    detail = str(exc)
    if code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        # Store messages may carry SQL; only the auth taxonomy is user-facing
        if not isinstance(exc, (NetworkError, ServiceUnavailableError)):
            detail = GENERIC_ERROR_MESSAGE
    return JSONResponse(
        status_code=code,
        content=error_body(detail, exc.presentation),
        headers=headers or None,
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), Presentation.BANNER),
        headers=getattr(exc, "headers", None),
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(GENERIC_ERROR_MESSAGE, Presentation.BANNER),
    )
