import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from collections.abc import Iterator

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.errors import ConcurrencyError, NotFoundError
from backoffice.core.observability import fulfillment_logger, log_event
from backoffice.models.order import Order


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def acquire_order_lock(
    db: Session,
    order_id: str,
    *,
    expected_version: int | None = None,
    ttl_seconds: int | None = None,
) -> str:
    """
    Claim the per-order command lease with one conditional UPDATE.

    Succeeds only when nobody holds a live lease (an expired lease is taken
    over) and, when given, the row is still at expected_version. The lease
    itself leaves version_id alone; only order data writes advance it.
    """
    now = _utcnow()
    token = str(uuid.uuid4())
    ttl = ttl_seconds if ttl_seconds is not None else settings.order_lock_ttl_seconds
    stmt = (
        update(Order)
        .where(
            Order.id == order_id,
            or_(Order.lock_token.is_(None), Order.locked_until.is_(None), Order.locked_until < now),
        )
        .values(
            lock_token=token,
            locked_until=now + timedelta(seconds=ttl),
        )
        .execution_options(synchronize_session=False)
    )
    if expected_version is not None:
        stmt = stmt.where(Order.version_id == expected_version)

    result = db.execute(stmt)
    db.commit()
    if result.rowcount == 1:
        return token

    current = db.execute(
        select(Order.version_id, Order.lock_token).where(Order.id == order_id)
    ).first()
    if current is None:
        raise NotFoundError("Order not found", order_id=order_id)
    if expected_version is not None and current.version_id != expected_version:
        raise ConcurrencyError(
            f"Order version is {current.version_id}, expected {expected_version}",
            order_id=order_id,
        )
    raise ConcurrencyError("Another command is already running for this order", order_id=order_id)


def release_order_lock(db: Session, order_id: str, token: str) -> None:
    db.execute(
        update(Order)
        .where(Order.id == order_id, Order.lock_token == token)
        .values(lock_token=None, locked_until=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


@contextmanager
def order_command_lock(
    db: Session,
    order_id: str,
    *,
    expected_version: int | None = None,
) -> Iterator[str]:
    token = acquire_order_lock(db, order_id, expected_version=expected_version)
    db.expire_all()
    try:
        yield token
    finally:
        try:
            db.rollback()
            release_order_lock(db, order_id, token)
        except SQLAlchemyError as exc:
            # The lease expires on its own after the TTL.
            db.rollback()
            log_event(
                fulfillment_logger,
                logging.WARNING,
                "order_lock_release_failed",
                order_id=order_id,
                error=str(exc),
            )
