from backoffice.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("validation_error", "Rejected before any write"),
    401: ("unauthorized", "Unauthorized"),
    403: ("forbidden", "Forbidden"),
    404: ("not_found", "Resource not found"),
    409: ("conflict", "Order is locked by another command or was modified"),
    422: ("validation_error", "Validation error"),
    500: ("inconsistent_state", "State changed; ledger/stock may be out of sync"),
    503: ("store_unavailable", "Data store unavailable; safe to retry"),
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": code,
                            "message": message,
                            "request_id": "request-id",
                            "path": "/example",
                            "details": None,
                        }
                    }
                }
            },
        }
    return responses
