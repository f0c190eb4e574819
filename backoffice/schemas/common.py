from typing import Any

from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 42,
                "limit": 10,
                "offset": 0,
                "count": 10,
                "has_next": True,
            }
        }
    )


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: list[dict[str, Any]] | None = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "inconsistent_state",
                    "message": "Order completed but ledger entry failed",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/orders/4f1c2d8e-0c7a-4a0e-9f55-2f8f3d2b9a11/complete",
                    "details": [
                        {"state_changed": True, "needs_reconciliation": True},
                        {"failed_step": "ledger", "completed_steps": ["inventory", "order"]},
                    ],
                }
            }
        }
    )
