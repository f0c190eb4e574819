"""
Fulfillment coordinator.

Each command runs under the per-order lease and writes its steps in a fixed
order: inventory, then the order row, then the ledger. Every step is its own
commit. When a step fails after an earlier one was committed, the order is
flagged ``needs_reconciliation`` and the caller gets an InconsistencyError
naming the failed step. Per-line stock failures are skipped, reported through
PartialWriteError and flag the order the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, NoReturn, Protocol

from sqlalchemy import delete, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as SATimeoutError
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.errors import (
    InconsistencyError,
    LineFailure,
    NotFoundError,
    PartialWriteError,
    StepReport,
    StoreUnavailableError,
    ValidationError,
)
from backoffice.core.money import ZERO_MONEY, line_amount, money_out, to_money
from backoffice.core.observability import fulfillment_logger, log_event
from backoffice.models.finance import FinanceEntry
from backoffice.models.inventory import InventoryTransaction
from backoffice.models.order import Order, OrderLine
from backoffice.services.audit_service import log_audit_event
from backoffice.services.finance_service import post_entry
from backoffice.services.inventory_service import apply_stock_change, get_stock_levels
from backoffice.services.order_lock_service import order_command_lock
from backoffice.services.order_service import (
    PaymentState,
    apply_payment_state,
    get_order,
    get_order_lines,
    recompute_order_totals,
)
from backoffice.services.order_state import (
    ensure_can_complete,
    ensure_can_register_payment,
    ensure_can_return,
    plan_cancel,
)

STEP_INVENTORY = "inventory"
STEP_ORDER = "order"
STEP_LEDGER = "ledger"

_RETRYABLE_STORE_ERRORS = (OperationalError, SATimeoutError)


class ReturnLine(Protocol):
    line_id: str
    quantity: int


@dataclass
class StockChange:
    product_id: str
    quantity_delta: int
    transaction_id: str
    line_id: str | None = None


@dataclass
class FulfillmentResult:
    order: Order
    lines: list[OrderLine]
    payment: PaymentState
    stock_changes: list[StockChange] = field(default_factory=list)
    finance_entry: FinanceEntry | None = None
    return_total: Decimal | None = None


@dataclass
class DeleteResult:
    order_id: str
    deleted_lines: int
    deleted_finance_entries: int
    deleted_inventory_transactions: int


@dataclass
class _Command:
    action: str
    order_id: str
    actor_id: str | None
    report: StepReport = field(default_factory=StepReport)
    applied: list[StockChange] = field(default_factory=list)
    failures: list[LineFailure] = field(default_factory=list)
    store_failure: bool = False
    store_error: bool = False

    def step_done(self, step: str) -> None:
        self.report.completed_steps.append(step)
        log_event(
            fulfillment_logger,
            logging.INFO,
            "fulfillment_step_done",
            action=self.action,
            order_id=self.order_id,
            step=step,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_payment_decision(
    received: bool,
    payment_amount: Decimal | None,
    payment_method: str | None,
) -> Decimal | None:
    if not received:
        return None
    if payment_amount is None:
        raise ValidationError("Payment amount is required when payment is received", field="payment_amount")
    amount = to_money(payment_amount)
    if amount <= ZERO_MONEY:
        raise ValidationError("Payment amount must be greater than zero", field="payment_amount")
    if not payment_method or not payment_method.strip():
        raise ValidationError("Payment method is required when payment is received", field="payment_method")
    return amount


def _ensure_stock_available(db: Session, order_id: str, lines: list[OrderLine]) -> None:
    needed: dict[str, int] = {}
    for line in lines:
        needed[line.product_id] = needed.get(line.product_id, 0) + line.quantity
    levels = get_stock_levels(db, list(needed.keys()))
    for product_id, quantity in needed.items():
        available = levels.get(product_id)
        if available is None:
            raise NotFoundError(f"Product not found: {product_id}", order_id=order_id)
        if available < quantity:
            raise ValidationError(
                f"Insufficient stock for product {product_id}: {available} available, {quantity} needed",
                field="lines",
                order_id=order_id,
            )


def _mark_needs_reconciliation(db: Session, order_id: str, note: str) -> bool:
    try:
        db.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(needs_reconciliation=True, reconciliation_note=note[:1000])
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(
            fulfillment_logger,
            logging.CRITICAL,
            "reconciliation_marker_failed",
            order_id=order_id,
            note=note,
            error=str(exc),
        )
        return False
    return True


def _audit_failure(db: Session, cmd: _Command, outcome: str, metadata: dict[str, Any]) -> None:
    try:
        log_audit_event(
            db,
            actor_id=cmd.actor_id,
            action=cmd.action,
            target_type="order",
            target_id=cmd.order_id,
            outcome=outcome,
            metadata_json=metadata,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(
            fulfillment_logger,
            logging.ERROR,
            "audit_write_failed",
            action=cmd.action,
            order_id=cmd.order_id,
            outcome=outcome,
            error=str(exc),
        )


def _raise_step_failure(db: Session, cmd: _Command, step: str, exc: Exception, message: str) -> NoReturn:
    """
    Raise the error the caller should see for a failed step.

    Before anything was committed the original error is re-raised as a clean
    failure. Afterwards the order is flagged and an InconsistencyError
    describes what already happened.
    """
    db.rollback()
    if not cmd.report.completed_steps and not cmd.applied:
        raise exc

    cmd.report.failed_step = step
    done = ", ".join(cmd.report.completed_steps) or f"{len(cmd.applied)} stock line(s)"
    note = f"{message} ({cmd.action}: {done} applied, {step} failed)"
    marked = _mark_needs_reconciliation(db, cmd.order_id, note)
    log_event(
        fulfillment_logger,
        logging.ERROR,
        "fulfillment_inconsistent",
        action=cmd.action,
        order_id=cmd.order_id,
        failed_step=step,
        completed_steps=cmd.report.completed_steps,
        marked=marked,
        error=str(exc),
    )
    _audit_failure(
        db,
        cmd,
        "inconsistent",
        {
            "failed_step": step,
            "completed_steps": list(cmd.report.completed_steps),
            "error": str(exc),
            "failed_lines": [failure.as_dict() for failure in cmd.failures],
        },
    )
    raise InconsistencyError(message, order_id=cmd.order_id, report=cmd.report, failures=cmd.failures) from exc


def _apply_line_deltas(
    db: Session,
    cmd: _Command,
    deltas: list[tuple[str | None, str, int]],
    *,
    reason: str,
    comment: str,
) -> None:
    """
    Apply one stock delta per line, committing each on its own.

    A missing product or any store error skips the line and the loop moves on.
    """
    for line_id, product_id, quantity_delta in deltas:
        try:
            txn = apply_stock_change(
                db,
                product_id=product_id,
                change_quantity=quantity_delta,
                reason=reason,
                related_order_id=cmd.order_id,
                comment=comment,
                created_by=cmd.actor_id,
            )
            db.commit()
        except (NotFoundError, SQLAlchemyError) as exc:
            db.rollback()
            if isinstance(exc, SQLAlchemyError):
                cmd.store_error = True
            if isinstance(exc, _RETRYABLE_STORE_ERRORS):
                cmd.store_failure = True
            cmd.failures.append(
                LineFailure(product_id=product_id, quantity_delta=quantity_delta, line_id=line_id, error=str(exc))
            )
            log_event(
                fulfillment_logger,
                logging.WARNING,
                "stock_line_failed",
                action=cmd.action,
                order_id=cmd.order_id,
                line_id=line_id,
                product_id=product_id,
                quantity_delta=quantity_delta,
                error=str(exc),
            )
            continue

        cmd.applied.append(
            StockChange(
                product_id=product_id,
                quantity_delta=quantity_delta,
                transaction_id=txn.id,
                line_id=line_id,
            )
        )

    if deltas and not cmd.applied:
        # Nothing was written, so this is still a clean failure.
        if cmd.store_error:
            raise StoreUnavailableError(
                "Stock could not be updated; nothing was changed",
                order_id=cmd.order_id,
                retryable=cmd.store_failure,
            )
        raise NotFoundError(
            "None of the order's products could be found; nothing was changed",
            order_id=cmd.order_id,
        )
    if deltas:
        cmd.step_done(STEP_INVENTORY)


def _flag_partial(order: Order, cmd: _Command) -> None:
    if not cmd.failures:
        return
    failed = ", ".join(failure.product_id for failure in cmd.failures)
    order.needs_reconciliation = True
    order.reconciliation_note = f"{cmd.action}: stock not updated for products {failed}"[:1000]


def _result_summary(result: FulfillmentResult) -> dict[str, Any]:
    return {
        "order_id": result.order.id,
        "status": result.order.status,
        "total_amount": money_out(result.order.total_amount),
        "payment_status": result.payment.payment_status,
        "debt_flag": result.payment.debt_flag,
        "applied_lines": len(result.stock_changes),
        "finance_entry_id": result.finance_entry.id if result.finance_entry else None,
    }


def _finish(cmd: _Command, result: FulfillmentResult) -> FulfillmentResult:
    if cmd.failures:
        log_event(
            fulfillment_logger,
            logging.ERROR,
            "fulfillment_partial",
            action=cmd.action,
            order_id=cmd.order_id,
            failed_lines=[failure.as_dict() for failure in cmd.failures],
        )
        raise PartialWriteError(
            f"{len(cmd.failures)} stock line(s) could not be updated; the rest of the command was applied",
            order_id=cmd.order_id,
            failures=cmd.failures,
            result=_result_summary(result),
        )
    log_event(
        fulfillment_logger,
        logging.INFO,
        "fulfillment_done",
        action=cmd.action,
        order_id=cmd.order_id,
        steps=cmd.report.completed_steps,
    )
    return result


def complete_order(
    db: Session,
    order_id: str,
    *,
    received: bool,
    payment_amount: Decimal | None = None,
    payment_method: str | None = None,
    actor_id: str | None = None,
    expected_version: int | None = None,
) -> FulfillmentResult:
    amount = _validate_payment_decision(received, payment_amount, payment_method)
    cmd = _Command(action="order.complete", order_id=order_id, actor_id=actor_id)

    with order_command_lock(db, order_id, expected_version=expected_version):
        order = get_order(db, order_id)
        lines = get_order_lines(db, order_id)
        ensure_can_complete(order, line_count=len(lines))
        if not settings.allow_negative_stock:
            _ensure_stock_available(db, order_id, lines)

        _apply_line_deltas(
            db,
            cmd,
            [(line.id, line.product_id, -line.quantity) for line in lines],
            reason="order",
            comment="Order completed",
        )

        try:
            order = get_order(db, order_id)
            order.status = "completed"
            order.completed_at = _utcnow()
            order.payment_received_amount = amount if amount is not None else ZERO_MONEY
            payment = apply_payment_state(order)
            _flag_partial(order, cmd)
            db.commit()
        except (SQLAlchemyError, NotFoundError) as exc:
            _raise_step_failure(db, cmd, STEP_ORDER, exc, "Stock deducted but order could not be completed")
        cmd.step_done(STEP_ORDER)

        try:
            if received:
                entry = post_entry(
                    db,
                    entry_type="income",
                    amount=amount,
                    company_id=order.company_id,
                    related_order_id=order_id,
                    comment=f"Payment for order {order_id} ({payment_method.strip()})",
                    created_by=actor_id,
                )
            else:
                entry = post_entry(
                    db,
                    entry_type="expense",
                    amount=order.total_amount,
                    company_id=order.company_id,
                    related_order_id=order_id,
                    comment=f"Debt for order {order_id}",
                    created_by=actor_id,
                )
            log_audit_event(
                db,
                actor_id=actor_id,
                action=cmd.action,
                target_type="order",
                target_id=order_id,
                outcome="partial" if cmd.failures else "ok",
                metadata_json={
                    "received": received,
                    "payment_amount": money_out(amount) if amount is not None else None,
                    "payment_method": payment_method,
                    "total_amount": money_out(order.total_amount),
                    "debt_flag": payment.debt_flag,
                    "failed_lines": [failure.as_dict() for failure in cmd.failures],
                },
            )
            db.commit()
        except SQLAlchemyError as exc:
            _raise_step_failure(db, cmd, STEP_LEDGER, exc, "Order completed but ledger entry failed")
        cmd.step_done(STEP_LEDGER)

        result = FulfillmentResult(
            order=order,
            lines=get_order_lines(db, order_id),
            payment=payment,
            stock_changes=cmd.applied,
            finance_entry=entry,
        )
        return _finish(cmd, result)


def cancel_order(
    db: Session,
    order_id: str,
    *,
    actor_id: str | None = None,
    expected_version: int | None = None,
) -> FulfillmentResult:
    cmd = _Command(action="order.cancel", order_id=order_id, actor_id=actor_id)

    with order_command_lock(db, order_id, expected_version=expected_version):
        order = get_order(db, order_id)
        plan = plan_cancel(order)

        if plan.restore_stock:
            lines = get_order_lines(db, order_id)
            _apply_line_deltas(
                db,
                cmd,
                [(line.id, line.product_id, line.quantity) for line in lines],
                reason="correction",
                comment="Order canceled",
            )

        try:
            order = get_order(db, order_id)
            order.status = "canceled"
            order.completed_at = None
            payment = apply_payment_state(order)
            _flag_partial(order, cmd)
            log_audit_event(
                db,
                actor_id=actor_id,
                action=cmd.action,
                target_type="order",
                target_id=order_id,
                outcome="partial" if cmd.failures else "ok",
                metadata_json={
                    "from_status": plan.from_status,
                    "restored_lines": len(cmd.applied),
                    "failed_lines": [failure.as_dict() for failure in cmd.failures],
                },
            )
            db.commit()
        except (SQLAlchemyError, NotFoundError) as exc:
            _raise_step_failure(db, cmd, STEP_ORDER, exc, "Stock restored but order could not be canceled")
        cmd.step_done(STEP_ORDER)

        result = FulfillmentResult(
            order=order,
            lines=get_order_lines(db, order_id),
            payment=payment,
            stock_changes=cmd.applied,
        )
        return _finish(cmd, result)


def _plan_return(order: Order, lines: list[OrderLine], requested: list[ReturnLine]) -> list[tuple[OrderLine, int]]:
    by_id = {line.id: line for line in lines}
    seen: set[str] = set()
    planned: list[tuple[OrderLine, int]] = []
    for index, item in enumerate(requested):
        if item.line_id in seen:
            raise ValidationError("Line listed more than once", field=f"lines.{index}.line_id", order_id=order.id)
        seen.add(item.line_id)
        line = by_id.get(item.line_id)
        if line is None:
            raise ValidationError("Line does not belong to this order", field=f"lines.{index}.line_id", order_id=order.id)
        if item.quantity < 0:
            raise ValidationError("Return quantity cannot be negative", field=f"lines.{index}.quantity", order_id=order.id)
        if item.quantity > line.quantity:
            raise ValidationError(
                f"Cannot return {item.quantity}; only {line.quantity} left on the line",
                field=f"lines.{index}.quantity",
                order_id=order.id,
            )
        if item.quantity > 0:
            planned.append((line, item.quantity))
    if not planned:
        raise ValidationError("Nothing to return", field="lines", order_id=order.id)
    return planned


def return_items(
    db: Session,
    order_id: str,
    *,
    lines: list[ReturnLine],
    actor_id: str | None = None,
    expected_version: int | None = None,
) -> FulfillmentResult:
    cmd = _Command(action="order.return", order_id=order_id, actor_id=actor_id)

    with order_command_lock(db, order_id, expected_version=expected_version):
        order = get_order(db, order_id)
        ensure_can_return(order)
        planned = _plan_return(order, get_order_lines(db, order_id), lines)
        quantities = {line.id: qty for line, qty in planned}
        unit_prices = {line.id: to_money(line.unit_price) for line, _ in planned}

        _apply_line_deltas(
            db,
            cmd,
            [(line.id, line.product_id, qty) for line, qty in planned],
            reason="correction",
            comment="Returned items",
        )
        # Lines whose stock could not be restored stay on the order.
        restored = {change.line_id for change in cmd.applied}
        return_total = to_money(
            sum((line_amount(quantities[line_id], unit_prices[line_id]) for line_id in restored), ZERO_MONEY)
        )

        try:
            order = get_order(db, order_id)
            surviving: list[OrderLine] = []
            for line in get_order_lines(db, order_id):
                if line.id in restored:
                    line.quantity -= quantities[line.id]
                    if line.quantity <= 0:
                        db.delete(line)
                        continue
                    line.line_total = line_amount(line.quantity, line.unit_price)
                surviving.append(line)
            recompute_order_totals(order, surviving)
            payment = apply_payment_state(order)
            _flag_partial(order, cmd)
            db.commit()
        except (SQLAlchemyError, NotFoundError) as exc:
            _raise_step_failure(db, cmd, STEP_ORDER, exc, "Stock restored but order lines could not be updated")
        cmd.step_done(STEP_ORDER)

        try:
            entry = post_entry(
                db,
                entry_type="expense",
                amount=-return_total,
                company_id=order.company_id,
                related_order_id=order_id,
                comment=f"Return on order {order_id}",
                created_by=actor_id,
            )
            metadata: dict[str, Any] = {
                "return_total": money_out(return_total),
                "returned_lines": {line_id: quantities[line_id] for line_id in restored},
                "total_amount": money_out(order.total_amount),
                "remaining_debt": money_out(payment.remaining_debt),
                "failed_lines": [failure.as_dict() for failure in cmd.failures],
            }
            if payment.overpaid_amount > ZERO_MONEY:
                metadata["overpaid_amount"] = money_out(payment.overpaid_amount)
            log_audit_event(
                db,
                actor_id=actor_id,
                action=cmd.action,
                target_type="order",
                target_id=order_id,
                outcome="partial" if cmd.failures else "ok",
                metadata_json=metadata,
            )
            db.commit()
        except SQLAlchemyError as exc:
            _raise_step_failure(db, cmd, STEP_LEDGER, exc, "Return applied but ledger entry failed")
        cmd.step_done(STEP_LEDGER)

        if payment.overpaid_amount > ZERO_MONEY:
            log_event(
                fulfillment_logger,
                logging.WARNING,
                "order_overpaid_after_return",
                order_id=order_id,
                overpaid_amount=money_out(payment.overpaid_amount),
            )

        result = FulfillmentResult(
            order=order,
            lines=get_order_lines(db, order_id),
            payment=payment,
            stock_changes=cmd.applied,
            finance_entry=entry,
            return_total=return_total,
        )
        return _finish(cmd, result)


def register_later_payment(
    db: Session,
    order_id: str,
    *,
    amount: Decimal,
    method: str,
    actor_id: str | None = None,
    expected_version: int | None = None,
) -> FulfillmentResult:
    normalized = to_money(amount)
    if normalized <= ZERO_MONEY:
        raise ValidationError("Payment amount must be greater than zero", field="amount", order_id=order_id)
    if not method or not method.strip():
        raise ValidationError("Payment method is required", field="method", order_id=order_id)
    cmd = _Command(action="order.payment", order_id=order_id, actor_id=actor_id)

    with order_command_lock(db, order_id, expected_version=expected_version):
        order = get_order(db, order_id)
        ensure_can_register_payment(order)
        outstanding = apply_payment_state(order).remaining_debt
        if normalized > outstanding:
            raise ValidationError(
                f"Payment of {normalized} exceeds the outstanding debt of {outstanding}",
                field="amount",
                order_id=order_id,
            )

        try:
            order.payment_received_amount = to_money(order.payment_received_amount) + normalized
            payment = apply_payment_state(order)
            db.commit()
        except SQLAlchemyError as exc:
            _raise_step_failure(db, cmd, STEP_ORDER, exc, "Payment could not be recorded")
        cmd.step_done(STEP_ORDER)

        try:
            entry = post_entry(
                db,
                entry_type="income",
                amount=normalized,
                company_id=order.company_id,
                related_order_id=order_id,
                comment=f"Debt payment for order {order_id} ({method.strip()})",
                created_by=actor_id,
            )
            log_audit_event(
                db,
                actor_id=actor_id,
                action=cmd.action,
                target_type="order",
                target_id=order_id,
                metadata_json={
                    "amount": money_out(normalized),
                    "method": method.strip(),
                    "remaining_debt": money_out(payment.remaining_debt),
                },
            )
            db.commit()
        except SQLAlchemyError as exc:
            _raise_step_failure(db, cmd, STEP_LEDGER, exc, "Payment recorded on order but ledger entry failed")
        cmd.step_done(STEP_LEDGER)

        result = FulfillmentResult(
            order=order,
            lines=get_order_lines(db, order_id),
            payment=payment,
            finance_entry=entry,
        )
        return _finish(cmd, result)


def delete_order(
    db: Session,
    order_id: str,
    *,
    actor_id: str | None = None,
    expected_version: int | None = None,
) -> DeleteResult:
    with order_command_lock(db, order_id, expected_version=expected_version):
        order = get_order(db, order_id)
        status = order.status
        try:
            deleted_lines = db.execute(delete(OrderLine).where(OrderLine.order_id == order_id)).rowcount
            deleted_entries = db.execute(
                delete(FinanceEntry).where(FinanceEntry.related_order_id == order_id)
            ).rowcount
            deleted_transactions = db.execute(
                delete(InventoryTransaction).where(InventoryTransaction.related_order_id == order_id)
            ).rowcount
            db.delete(order)
            log_audit_event(
                db,
                actor_id=actor_id,
                action="order.delete",
                target_type="order",
                target_id=order_id,
                metadata_json={
                    "status": status,
                    "deleted_lines": deleted_lines,
                    "deleted_finance_entries": deleted_entries,
                    "deleted_inventory_transactions": deleted_transactions,
                },
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

    log_event(fulfillment_logger, logging.INFO, "order_deleted", order_id=order_id, status=status)
    return DeleteResult(
        order_id=order_id,
        deleted_lines=deleted_lines,
        deleted_finance_entries=deleted_entries,
        deleted_inventory_transactions=deleted_transactions,
    )


def resolve_reconciliation(
    db: Session,
    order_id: str,
    *,
    note: str | None = None,
    actor_id: str | None = None,
    expected_version: int | None = None,
) -> FulfillmentResult:
    """Clear the reconciliation flag once someone has fixed stock or ledger by hand."""
    with order_command_lock(db, order_id, expected_version=expected_version):
        order = get_order(db, order_id)
        if not order.needs_reconciliation:
            raise ValidationError("Order is not pending reconciliation", field="needs_reconciliation", order_id=order_id)
        previous_note = order.reconciliation_note
        lines = get_order_lines(db, order_id)
        recompute_order_totals(order, lines)
        payment = apply_payment_state(order)
        order.needs_reconciliation = False
        order.reconciliation_note = note
        log_audit_event(
            db,
            actor_id=actor_id,
            action="order.reconciliation.resolve",
            target_type="order",
            target_id=order_id,
            metadata_json={"previous_note": previous_note, "note": note},
        )
        db.commit()
        return FulfillmentResult(order=order, lines=lines, payment=payment)

