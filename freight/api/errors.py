"""Map domain failures onto HTTP errors."""

from fastapi import HTTPException

from freight.domain.result import ErrorKind, Failure

STATUS_FOR_ERROR: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.CURRENCY_MISMATCH: 422,
    ErrorKind.CONCURRENCY_CONFLICT: 409,
    ErrorKind.EXTERNAL_SERVICE_FAILURE: 503,
    ErrorKind.PERSISTENCE_FAILURE: 500,
    ErrorKind.INVALID_CONFIGURATION: 500,
}


def http_error(failure: Failure) -> HTTPException:
    headers = {"Retry-After": "1"} if failure.retryable else None
    return HTTPException(
        status_code=STATUS_FOR_ERROR.get(failure.kind, 500),
        detail={"error": failure.kind.value, "detail": failure.message},
        headers=headers,
    )
