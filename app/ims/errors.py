from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """Base class for errors rendered as JSON by the app-level error handler."""

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"


class ValidationError(ApiError):
    code = "validation_error"

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationError":
        return cls(errors[0] if len(errors) == 1 else "Validation failed.", details=errors)


class WorkflowError(ApiError):
    """Illegal state transition."""

    code = "invalid_transition"


class PermissionDenied(ApiError):
    status_code = 403
    code = "forbidden"


class ConflictError(ApiError):
    status_code = 409
    code = "conflict"


def raise_if_errors(errors: list[str]) -> None:
    if errors:
        raise ValidationError.from_errors(errors)
