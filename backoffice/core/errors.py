"""
Fulfillment error taxonomy.

Every error says whether any state was written before it was raised, so the
caller can tell "nothing happened" apart from "stock or ledger may be out of
sync and needs a human".
"""

from dataclasses import dataclass, field
from typing import Any


class FulfillmentError(Exception):
    code = "fulfillment_error"
    status_code = 400
    state_changed = False
    retryable = False

    def __init__(self, message: str, *, order_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.order_id = order_id

    def details(self) -> list[dict[str, Any]] | None:
        return None


class ValidationError(FulfillmentError):
    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, field: str, order_id: str | None = None):
        super().__init__(message, order_id=order_id)
        self.field = field

    def details(self) -> list[dict[str, Any]]:
        return [{"field": self.field, "message": self.message, "type": "value_error"}]


class NotFoundError(FulfillmentError):
    code = "not_found"
    status_code = 404


class ConcurrencyError(FulfillmentError):
    code = "conflict"
    status_code = 409


class StoreUnavailableError(FulfillmentError):
    code = "store_unavailable"
    status_code = 503
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        order_id: str | None = None,
        state_changed: bool = False,
        retryable: bool = True,
    ):
        super().__init__(message, order_id=order_id)
        self.state_changed = state_changed
        self.retryable = retryable


@dataclass
class LineFailure:
    product_id: str
    quantity_delta: int
    line_id: str | None = None
    error: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "line_id": self.line_id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "error": self.error,
        }


class PartialWriteError(FulfillmentError):
    """Some per-line stock writes failed; every other step was applied."""

    code = "partial_write"
    status_code = 500
    state_changed = True

    def __init__(
        self,
        message: str,
        *,
        order_id: str,
        failures: list[LineFailure],
        result: Any = None,
    ):
        super().__init__(message, order_id=order_id)
        self.failures = failures
        self.result = result

    def details(self) -> list[dict[str, Any]]:
        items = [failure.as_dict() for failure in self.failures]
        if isinstance(self.result, dict):
            items.append({"result": self.result})
        return items


@dataclass
class StepReport:
    completed_steps: list[str] = field(default_factory=list)
    failed_step: str | None = None


class InconsistencyError(FulfillmentError):
    """A later step failed after stock or the order row had already been written."""

    code = "inconsistent_state"
    status_code = 500
    state_changed = True

    def __init__(
        self,
        message: str,
        *,
        order_id: str,
        report: StepReport,
        failures: list[LineFailure] | None = None,
    ):
        super().__init__(message, order_id=order_id)
        self.report = report
        self.failures = failures or []

    def details(self) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = [
            {
                "failed_step": self.report.failed_step,
                "completed_steps": list(self.report.completed_steps),
            }
        ]
        items.extend(failure.as_dict() for failure in self.failures)
        return items
