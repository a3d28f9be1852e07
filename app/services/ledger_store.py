"""Atomic shipped-quantity primitive on top of the SQLAlchemy session.

Writers never hold a row lock across a round trip. Each attempt reads the
current quantity and version, computes the new value and writes it only if
the version is unchanged; a lost race re-reads and tries again, up to the
configured number of attempts.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import ItemShippingStatus, OrderItem
from app.services.notification_service import discard_events_since, event_mark

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ItemSnapshot:
    id: int
    order_id: int
    quantity: int
    shipped_quantity: int
    version: int

    @property
    def remaining(self) -> int:
        return self.quantity - self.shipped_quantity


@contextmanager
def savepoint(db: Session) -> Iterator[None]:
    mark = event_mark(db)
    try:
        with db.begin_nested():
            yield
    except Exception:
        # Events queued inside the savepoint describe changes that never happened.
        discard_events_since(db, mark)
        raise


def item_shipping_status(quantity: int, shipped_quantity: int) -> ItemShippingStatus:
    if shipped_quantity >= quantity:
        return ItemShippingStatus.SHIPPED
    if shipped_quantity > 0:
        return ItemShippingStatus.PARTIAL
    return ItemShippingStatus.PENDING


def read_item(db: Session, item_id: int) -> ItemSnapshot:
    row = db.execute(
        select(
            OrderItem.id,
            OrderItem.order_id,
            OrderItem.quantity,
            OrderItem.shipped_quantity,
            OrderItem.version,
        ).where(OrderItem.id == item_id)
    ).one_or_none()
    if not row:
        raise NotFoundError(f'Order item {item_id} not found')
    return ItemSnapshot(
        id=row.id,
        order_id=row.order_id,
        quantity=row.quantity,
        shipped_quantity=row.shipped_quantity,
        version=row.version,
    )


def _write_shipped_quantity(db: Session, *, snapshot: ItemSnapshot, shipped_quantity: int) -> bool:
    result = db.execute(
        update(OrderItem)
        .where(OrderItem.id == snapshot.id, OrderItem.version == snapshot.version)
        .values(
            shipped_quantity=shipped_quantity,
            shipping_status=item_shipping_status(snapshot.quantity, shipped_quantity),
            version=snapshot.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _validate_target(snapshot: ItemSnapshot, target: int) -> None:
    if target > snapshot.quantity:
        raise ValidationError(
            f'Shipped quantity {target} exceeds ordered quantity {snapshot.quantity} for item {snapshot.id}'
        )
    if target < snapshot.shipped_quantity:
        raise ValidationError(
            f'Shipped quantity for item {snapshot.id} cannot decrease from {snapshot.shipped_quantity} to {target}'
        )


def _adjust(
    db: Session,
    item_id: int,
    compute_target: Callable[[ItemSnapshot], int],
    *,
    max_attempts: int | None = None,
) -> ItemSnapshot:
    attempts = max_attempts or settings.shipped_quantity_max_attempts
    for attempt in range(1, attempts + 1):
        snapshot = read_item(db, item_id)
        target = compute_target(snapshot)
        _validate_target(snapshot, target)
        if target == snapshot.shipped_quantity:
            return snapshot
        if _write_shipped_quantity(db, snapshot=snapshot, shipped_quantity=target):
            return ItemSnapshot(
                id=snapshot.id,
                order_id=snapshot.order_id,
                quantity=snapshot.quantity,
                shipped_quantity=target,
                version=snapshot.version + 1,
            )
        logger.warning(
            'Shipped quantity write lost a version race',
            order_item_id=item_id,
            attempt=attempt,
            max_attempts=attempts,
        )
    raise ConflictError(f'Order item {item_id} was modified concurrently; gave up after {attempts} attempts')


def adjust_shipped_quantity(db: Session, item_id: int, delta: int, *, max_attempts: int | None = None) -> ItemSnapshot:
    if delta < 0:
        raise ValidationError('Shipped quantity adjustments cannot be negative')
    return _adjust(db, item_id, lambda snapshot: snapshot.shipped_quantity + delta, max_attempts=max_attempts)


def fill_shipped_quantity(db: Session, item_id: int, *, max_attempts: int | None = None) -> ItemSnapshot:
    return _adjust(db, item_id, lambda snapshot: snapshot.quantity, max_attempts=max_attempts)
