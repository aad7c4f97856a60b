"""
Shared error response schemas for OpenAPI documentation.

Import these in endpoint files to add consistent error responses.

Note: These definitions use inline examples rather than model references
to avoid circular imports with the exceptions module.
"""

from typing import Dict, Any


def _problem_example(code: str, title: str, status: int, detail: str, **extra: Any) -> Dict[str, Any]:
    example = {
        "type": f"https://garage.local/problems/{code.lower().replace('_', '-')}",
        "title": title,
        "status": status,
        "detail": detail,
        "code": code,
        "timestamp": "2026-03-02T09:15:00Z",
        "trace_id": "7f3c2a9e41b0",
    }
    example.update(extra)
    return {"application/problem+json": {"example": example}}


# Reusable response definitions for OpenAPI
ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {
        "description": "Bad Request - Invalid input or business rule violated",
        "content": _problem_example(
            "BIZ_001", "Insufficient Stock", 400,
            "Insufficient stock for part 12: requested 4, available 1",
        ),
    },
    401: {
        "description": "Unauthorized - Authentication required",
        "content": _problem_example("AUTH_001", "Unauthorized", 401, "Authentication required"),
    },
    403: {
        "description": "Forbidden - Insufficient permissions",
        "content": _problem_example(
            "AUTH_002", "Forbidden", 403,
            "Access denied. You can only update job cards assigned to you.",
        ),
    },
    404: {
        "description": "Not Found - Resource does not exist",
        "content": _problem_example("RES_001", "Not Found", 404, "Job card with ID 42 was not found"),
    },
    422: {
        "description": "Validation Error - Invalid field values",
        "content": _problem_example(
            "VAL_001", "Validation Error", 422, "Request validation failed",
            errors=[{"field": "body.quantity", "message": "Input should be greater than or equal to 1", "type": "greater_than_equal"}],
        ),
    },
    500: {
        "description": "Internal Server Error",
        "content": _problem_example("SRV_001", "Internal Server Error", 500, "An unexpected error occurred"),
    },
}


def get_error_responses(*status_codes: int) -> Dict[int, Dict[str, Any]]:
    """
    Get error response definitions for specified status codes.

    Usage in endpoint:
        @router.get(
            "/{id}",
            responses=get_error_responses(401, 404, 500)
        )
    """
    return {
        code: ERROR_RESPONSES[code]
        for code in status_codes
        if code in ERROR_RESPONSES
    }


LIST_ERROR_RESPONSES = get_error_responses(401, 403, 500)
