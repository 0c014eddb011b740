from typing import Any


class DomainError(Exception):
    """Base for errors raised by the service layer.

    Each subclass maps to one HTTP status and a stable machine-readable code;
    the message is the human-readable text returned to clients as-is.
    """

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DomainError):
    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None):
        details = [{"field": field, "message": message, "type": "value_error"}] if field else None
        super().__init__(message, details=details)
        self.field = field


class NotFoundError(DomainError):
    # Also raised for rows owned by another company, so existence never leaks across tenants.
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    status_code = 409
    code = "conflict"
