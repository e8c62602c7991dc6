# opportunity_api/routers/http_errors.py
"""Translate service errors into HTTP responses."""

from fastapi import HTTPException

from opportunity_api.errors import (
    ConcurrentOperationError,
    ConfigurationError,
    FavoritesLimitError,
    LifecycleError,
    PartialExecutionError,
    StoreUnavailableError,
    ValidationError,
)

_STATUS_CODES: list[tuple[type[LifecycleError], int]] = [
    # Subclasses before their bases
    (FavoritesLimitError, 403),
    (ConfigurationError, 400),
    (ValidationError, 400),
    (ConcurrentOperationError, 409),
    (PartialExecutionError, 500),
    (StoreUnavailableError, 503),
]


def to_http_exception(exc: LifecycleError) -> HTTPException:
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    return HTTPException(status_code=status_code, detail=exc.to_dict())
