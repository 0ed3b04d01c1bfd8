"""
Error taxonomy. Each error carries the HTTP status it maps to; handlers in main.py
turn them into {"error": ...} bodies.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Violation:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class OrderServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class UnauthorizedError(OrderServiceError):
    """Missing, unknown or expired bearer token."""
    status_code = 401


class ForbiddenError(OrderServiceError):
    """Authenticated principal lacks the role or does not own the entity."""
    status_code = 403


class NotFoundError(OrderServiceError):
    status_code = 404


class InvalidStateError(OrderServiceError):
    """Lifecycle guard or pending-only edit guard violated."""
    status_code = 409

    def __init__(self, message: str, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(message)


class ValidationFailedError(OrderServiceError):
    status_code = 422

    def __init__(self, violations: list[Violation]):
        self.violations = violations
        super().__init__("Validation failed")

    def to_dict(self) -> dict:
        return {"error": self.message, "errors": [v.to_dict() for v in self.violations]}
