"""Order lifecycle: the status table and the one place status is derived.

    pending -> picked -> shipped | partially_shipped | cancelled
    partially_shipped -> shipped (completion only) | cancelled
    pending | picked -> cancelled

Status follows the shipped/ordered ratio of the order's items; cancellation is
the only manual override.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from fractions import Fraction
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.exceptions import ValidationError
from app.models import ChangelogAction, Order, OrderItem, OrderStatus
from app.services.audit_service import log_order_change
from app.services.notification_service import order_status_change, queue_event

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PICKED, OrderStatus.CANCELLED},
    OrderStatus.PICKED: {OrderStatus.SHIPPED, OrderStatus.PARTIALLY_SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.PARTIALLY_SHIPPED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: set(),
    OrderStatus.CANCELLED: set(),
}

OPEN_STATUSES = {OrderStatus.PENDING, OrderStatus.PICKED}
LABEL_PRINTABLE_STATUSES = {OrderStatus.PICKED, OrderStatus.PARTIALLY_SHIPPED, OrderStatus.SHIPPED}

HUNDRED = Decimal('100.00')
ZERO = Decimal('0.00')
SMALLEST_PARTIAL = Decimal('0.01')
LARGEST_PARTIAL = Decimal('99.99')


class ShippedLine(Protocol):
    quantity: int
    shipped_quantity: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _percentage(shipped: int, ordered: int) -> Decimal:
    if ordered <= 0 or shipped <= 0:
        return ZERO
    if shipped >= ordered:
        return HUNDRED
    exact = Fraction(shipped * 100, ordered)
    value = (Decimal(exact.numerator) / Decimal(exact.denominator)).quantize(SMALLEST_PARTIAL, rounding=ROUND_DOWN)
    # A partial order must never display as 0% or 100%.
    return min(max(value, SMALLEST_PARTIAL), LARGEST_PARTIAL)


def derive_status(
    items: Iterable[ShippedLine],
    *,
    fallback: OrderStatus = OrderStatus.PENDING,
) -> tuple[OrderStatus, Decimal]:
    ordered = 0
    shipped = 0
    for item in items:
        ordered += item.quantity
        shipped += item.shipped_quantity

    percentage = _percentage(shipped, ordered)
    if ordered > 0 and shipped >= ordered:
        return OrderStatus.SHIPPED, percentage
    if shipped > 0:
        return OrderStatus.PARTIALLY_SHIPPED, percentage
    return fallback, percentage


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


def assert_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise ValidationError(f'Order cannot move from {current.value} to {target.value}')


def _set_status(db: Session, *, order: Order, new_status: OrderStatus, actor_id: int | None, notes: str | None) -> None:
    previous = order.status
    if previous == new_status:
        return
    order.status = new_status
    log_order_change(
        db,
        order_id=order.id,
        user_id=actor_id,
        action=ChangelogAction.STATUS_CHANGE,
        changes={'status': new_status.value},
        previous_values={'status': previous.value},
        notes=notes,
    )
    queue_event(
        db,
        order_status_change(
            order_id=order.id,
            order_number=order.order_number,
            previous_status=previous.value,
            new_status=new_status.value,
        ),
    )


def apply_derived_status(
    db: Session,
    *,
    order: Order,
    actor_id: int | None,
    notes: str | None = None,
) -> OrderStatus:
    if order.status == OrderStatus.CANCELLED:
        raise ValidationError(f'Order {order.order_number} is cancelled')

    items = db.execute(
        select(OrderItem).where(OrderItem.order_id == order.id).execution_options(populate_existing=True)
    ).scalars().all()
    fallback = order.status if order.status in OPEN_STATUSES else OrderStatus.PICKED
    new_status, percentage = derive_status(items, fallback=fallback)
    assert_transition(order.status, new_status)

    order.percentage_shipped = percentage
    order.updated_by_id = actor_id
    order.last_updated = _now()
    _set_status(db, order=order, new_status=new_status, actor_id=actor_id, notes=notes)
    db.flush()
    return new_status


def set_manual_status(
    db: Session,
    *,
    order: Order,
    new_status: OrderStatus,
    actor_id: int | None,
    notes: str | None = None,
) -> None:
    if new_status in {OrderStatus.SHIPPED, OrderStatus.PARTIALLY_SHIPPED}:
        raise ValidationError('Shipped states are derived from shipped quantities and cannot be set directly')
    assert_transition(order.status, new_status)
    order.updated_by_id = actor_id
    order.last_updated = _now()
    _set_status(db, order=order, new_status=new_status, actor_id=actor_id, notes=notes)
    db.flush()
