from typing import Any

from erpledger.core.errors import ConflictError, NotFoundError, ValidationError
from erpledger.schemas.common import ErrorOut

# Service-layer failures document the code their error class renders.
_DOMAIN_ERRORS: dict[int, tuple[str, str]] = {
    cls.status_code: (cls.code, description)
    for cls, description in (
        (ValidationError, "Invalid value in the request"),
        (NotFoundError, "Not found in the current company"),
        (ConflictError, "Conflicts with current stock, status or existing data"),
    )
}
_TRANSPORT_ERRORS: dict[int, tuple[str, str]] = {
    401: ("unauthorized", "Missing or invalid access token"),
    403: ("forbidden", "Insufficient permission for this action"),
    422: ("validation_error", "Validation failed"),
    500: ("internal_error", "Internal server error"),
}


def _error_example(status_code: int) -> tuple[str, dict[str, Any]]:
    code, description = _DOMAIN_ERRORS.get(status_code) or _TRANSPORT_ERRORS.get(
        status_code, ("http_error", "HTTP error")
    )
    example = {
        "error": {
            "code": code,
            "message": description,
            "request_id": "request-id",
            "path": "/stock-movements",
            "details": None,
        }
    }
    return description, example


def error_responses(*status_codes: int) -> dict[int | str, dict[str, Any]]:
    """OpenAPI `responses` entries sharing the error envelope schema."""
    responses: dict[int | str, dict[str, Any]] = {}
    for status_code in status_codes:
        description, example = _error_example(status_code)
        responses[status_code] = {
            "model": ErrorOut,
            "description": description,
            "content": {"application/json": {"example": example}},
        }
    return responses
