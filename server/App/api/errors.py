from fastapi import HTTPException, status

from App.exceptions import (
    EmbeddingTimeoutError,
    FilterValidationError,
    RateLimitExceededError,
    SearchTimeoutError,
    VectorEngineError,
    VectorStoreNotReadyError,
)

# Checked in order: subclasses before their parents
_STATUS_BY_ERROR = (
    (FilterValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (SearchTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (EmbeddingTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (VectorStoreNotReadyError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(error: VectorEngineError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=code, detail=error.to_dict())
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.to_dict())
