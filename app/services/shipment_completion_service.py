from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy.orm import Session

from app.exceptions import ConflictError, NotAuthorized, NotFoundError, ValidationError
from app.models import ChangelogAction, Order, OrderStatus
from app.services import unshipped_item_service
from app.services.audit_service import log_order_change
from app.services.ledger_store import fill_shipped_quantity, savepoint
from app.services.order_status_service import apply_derived_status

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    order_id: int
    success: bool
    order_number: str | None = None
    status: str | None = None
    consumed_unshipped_item_ids: tuple[int, ...] = ()
    error_code: str | None = None
    error: str | None = None


def _complete_one(db: Session, *, order_id: int, actor_id: int) -> CompletionResult:
    order = db.get(Order, order_id, populate_existing=True)
    if not order:
        raise NotFoundError(f'Order {order_id} not found')
    if order.status != OrderStatus.PARTIALLY_SHIPPED:
        raise ValidationError(
            f'Order {order.order_number} is {order.status.value}; only partially shipped orders can be completed'
        )

    open_items = unshipped_item_service.open_items_for_order(db, order_id=order.id)
    unauthorized = [item.id for item in open_items if not item.authorized]
    if unauthorized:
        raise NotAuthorized(
            f'Order {order.order_number} has unauthorized unshipped items: '
            f'{", ".join(str(item_id) for item_id in unauthorized)}'
        )

    with savepoint(db):
        for item in order.items:
            fill_shipped_quantity(db, item.id)
        apply_derived_status(db, order=order, actor_id=actor_id, notes='Outstanding items shipped')
        consumed_ids = [item.id for item in open_items]
        if consumed_ids:
            unshipped_item_service.consume(db, unshipped_item_ids=consumed_ids, new_order_id=order.id)
        log_order_change(
            db,
            order_id=order.id,
            user_id=actor_id,
            action=ChangelogAction.SHIPMENT_COMPLETED,
            changes={'consumed_unshipped_item_ids': consumed_ids},
        )
        db.flush()

    return CompletionResult(
        order_id=order.id,
        success=True,
        order_number=order.order_number,
        status=order.status.value,
        consumed_unshipped_item_ids=tuple(consumed_ids),
    )


def complete_shipment(db: Session, *, order_ids: list[int], actor_id: int) -> list[CompletionResult]:
    if not order_ids:
        raise ValidationError('Select at least one order to complete')

    results: list[CompletionResult] = []
    for order_id in dict.fromkeys(order_ids):
        try:
            result = _complete_one(db, order_id=order_id, actor_id=actor_id)
        except (NotFoundError, ValidationError, ConflictError) as exc:
            logger.warning('Shipment completion failed', order_id=order_id, error_code=exc.code, error=str(exc))
            results.append(CompletionResult(order_id=order_id, success=False, error_code=exc.code, error=str(exc)))
            continue
        logger.info('Shipment completed', order_id=order_id, consumed=len(result.consumed_unshipped_item_ids))
        results.append(result)
    return results
