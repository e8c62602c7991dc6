# opportunity_api/errors.py
"""
Error taxonomy for the lifecycle and access services.

- ConfigurationError: invalid or unmapped policy values (raised at save time)
- ValidationError: a guarded transition was refused; nothing was changed
- PartialExecutionError: a destructive operation stopped part-way
- StoreUnavailableError: the record store could not be reached
- ConcurrentOperationError: the same destructive operation is already running

Routers translate these into HTTP status codes; services never catch them
on behalf of the caller.
"""

from typing import Any


class LifecycleError(Exception):
    """Base class for all service-level errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message}


class ConfigurationError(LifecycleError):
    """A policy document (or a record's category) cannot be mapped to a valid rule."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class ValidationError(LifecycleError):
    """A request was refused before anything was changed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class FavoritesLimitError(ValidationError):
    """A free viewer already holds the maximum number of favorites."""

    def __init__(self, limit: int):
        super().__init__(f"Favorites limit of {limit} reached for free membership", field="opportunity_id")
        self.limit = limit


class PartialExecutionError(LifecycleError):
    """
    A destructive operation stopped before its primary step completed.

    `result` holds whatever the operation managed to do so an operator can
    decide whether to re-run.
    """

    def __init__(self, message: str, result: Any):
        super().__init__(message)
        self.result = result

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if hasattr(self.result, "to_dict"):
            data["partial_result"] = self.result.to_dict()
        return data


class StoreUnavailableError(LifecycleError):
    """The record store cannot be reached. Never retried inside this service."""


class ConcurrentOperationError(LifecycleError):
    """Another execution of the same destructive operation is in flight."""
