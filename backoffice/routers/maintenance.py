import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backoffice.core.api_docs import error_responses
from backoffice.core.deps import get_db
from backoffice.core.observability import logger, log_event
from backoffice.core.permissions import ADMIN_ONLY, require_roles
from backoffice.core.security import CallerIdentity
from backoffice.schemas.maintenance import ClearAutomatedFinanceOut, ClearOrdersOut, ResetAllDataOut
from backoffice.services.audit_service import log_audit_event
from backoffice.services.maintenance_service import (
    clear_automated_finance_entries,
    clear_company_orders,
    reset_all_data,
)

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post(
    "/companies/{company_id}/clear-orders",
    response_model=ClearOrdersOut,
    summary="Delete every order of a company",
    responses=error_responses(401, 403, 404, 422, 500, 503),
)
def clear_orders(
    company_id: str,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    deleted_count = clear_company_orders(db, company_id)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="maintenance.clear_orders",
        target_type="company",
        target_id=company_id,
        metadata_json={"deleted_count": deleted_count},
    )
    db.commit()
    log_event(logger, logging.INFO, "maintenance_clear_orders", company_id=company_id, deleted_count=deleted_count)
    return ClearOrdersOut(company_id=company_id, deleted_count=deleted_count)


@router.post(
    "/finance/clear-automated",
    response_model=ClearAutomatedFinanceOut,
    summary="Delete ledger entries generated by order commands",
    responses=error_responses(401, 403, 422, 500, 503),
)
def clear_automated_finance(
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    deleted_count = clear_automated_finance_entries(db)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="maintenance.clear_automated_finance",
        target_type="finance_entry",
        metadata_json={"deleted_count": deleted_count},
    )
    db.commit()
    log_event(logger, logging.INFO, "maintenance_clear_automated_finance", deleted_count=deleted_count)
    return ClearAutomatedFinanceOut(deleted_count=deleted_count)


@router.post(
    "/reset-all-data",
    response_model=ResetAllDataOut,
    summary="Delete all orders, ledger entries and stock movements",
    responses=error_responses(401, 403, 422, 500, 503),
)
def reset_data(
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    deleted_orders, deleted_entries = reset_all_data(db)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="maintenance.reset_all_data",
        target_type="system",
        metadata_json={"deleted_orders": deleted_orders, "deleted_finance_entries": deleted_entries},
    )
    db.commit()
    log_event(
        logger,
        logging.WARNING,
        "maintenance_reset_all_data",
        deleted_orders=deleted_orders,
        deleted_finance_entries=deleted_entries,
    )
    return ResetAllDataOut(deleted_orders=deleted_orders, deleted_finance_entries=deleted_entries)
