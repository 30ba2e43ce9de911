"""Custom exception hierarchy for the drivegate access layer.

Every error carries the HTTP status a request handler should map it to.
"""

from __future__ import annotations


class DrivegateError(Exception):
    """Base exception for all drivegate errors."""

    status_code: int = 500


class ForbiddenError(DrivegateError):
    """Raised when the principal can see the resource but lacks the permission."""

    status_code = 403


class NotFoundError(DrivegateError):
    """Raised when a resource is absent, trashed, or outside a guest token's scope."""

    status_code = 404


class GoneError(DrivegateError):
    """Raised when a guest token matched a share that has expired."""

    status_code = 410


class ValidationError(DrivegateError):
    """Raised on structural move/rename/share problems, reported per field."""

    status_code = 422

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))

    @classmethod
    def single(cls, field: str, message: str) -> ValidationError:
        return cls({field: message})


class BulkOperationError(DrivegateError):
    """Raised when one member of a bulk operation fails; nothing is applied.

    Wraps the member's own error and reports its status code.
    """

    def __init__(self, resource_id: str, cause: DrivegateError) -> None:
        self.resource_id = resource_id
        self.cause = cause
        self.status_code = cause.status_code
        super().__init__(f"Bulk operation aborted at {resource_id}: {cause}")


class ConflictError(DrivegateError):
    """Raised when an insert loses a uniqueness race with a concurrent request."""

    status_code = 409
