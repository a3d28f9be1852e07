"""Ledger of quantities left behind by partial shipments.

A record is opened by the shipment event that left the quantity behind, must
be authorized by a supervisor before it can be shipped, and is closed either
by being consumed into a later shipment or by the cancellation of its order.
Closed records are never reopened.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from app.auth import Role, can_authorize_unshipped
from app.exceptions import (
    AlreadyAuthorized,
    AlreadyShipped,
    ConflictError,
    FulfillmentError,
    ItemVoided,
    NotAuthorized,
    NotFoundError,
    ValidationError,
)
from app.models import ChangelogAction, Order, OrderItem, OrderStatus, Product, UnshippedItem
from app.services.audit_service import log_order_change
from app.services.ledger_store import savepoint
from app.services.notification_service import (
    CUSTOMER_HAS_UNSHIPPED_ITEMS,
    UNSHIPPED_ITEMS_AUTHORIZED,
    FulfillmentEvent,
    queue_event,
)

logger = structlog.get_logger(__name__)

FILTER_OPEN = 'open'
FILTER_PENDING_AUTHORIZATION = 'pending_authorization'
FILTER_AUTHORIZED = 'authorized'
OUTSTANDING_FILTERS = (FILTER_OPEN, FILTER_PENDING_AUTHORIZATION, FILTER_AUTHORIZED)


@dataclass(frozen=True)
class AuthorizationOutcome:
    unshipped_item_id: int
    success: bool
    error_code: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CustomerOutstandingSummary:
    customer_name: str
    unshipped_items_count: int
    authorized_count: int
    pending_orders: int

    @property
    def has_unshipped_items(self) -> bool:
        return self.unshipped_items_count > 0

    @property
    def has_authorized_unshipped_items(self) -> bool:
        return self.authorized_count > 0

    @property
    def has_unauthorized_unshipped_items(self) -> bool:
        return self.unshipped_items_count > self.authorized_count


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _open_condition():
    return and_(UnshippedItem.shipped.is_(False), UnshippedItem.voided.is_(False))


def record_outstanding(
    db: Session,
    *,
    order: Order,
    shipment_event_id: str,
    items: list[OrderItem] | None = None,
) -> list[UnshippedItem]:
    if not shipment_event_id:
        raise ValidationError('Shipment event id is required')
    if items is None:
        items = db.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order.id)
            .order_by(OrderItem.id.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()

    item_ids = [item.id for item in items]
    already_recorded = set()
    if item_ids:
        already_recorded = set(
            db.execute(
                select(UnshippedItem.order_item_id).where(
                    UnshippedItem.shipment_event_id == shipment_event_id,
                    UnshippedItem.order_item_id.in_(item_ids),
                )
            ).scalars().all()
        )

    created: list[UnshippedItem] = []
    for item in items:
        if item.order_id != order.id:
            raise ValidationError(f'Order item {item.id} does not belong to order {order.order_number}')
        outstanding = item.quantity - item.shipped_quantity
        if outstanding <= 0 or item.id in already_recorded:
            continue
        record = UnshippedItem(
            order_id=order.id,
            order_item_id=item.id,
            product_id=item.product_id,
            quantity=outstanding,
            customer_name=order.customer_name,
            original_order_number=order.order_number,
            shipment_event_id=shipment_event_id,
            created_at=_now(),
            authorized=False,
            shipped=False,
            voided=False,
            notes=f'Partially fulfilled order. {item.shipped_quantity} out of {item.quantity} shipped.',
        )
        db.add(record)
        created.append(record)

    db.flush()
    if created:
        logger.info(
            'Recorded outstanding quantities',
            order_id=order.id,
            shipment_event_id=shipment_event_id,
            records=len(created),
        )
    return created


def _load(db: Session, unshipped_item_id: int) -> UnshippedItem | None:
    return db.execute(
        select(UnshippedItem)
        .where(UnshippedItem.id == unshipped_item_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _authorization_failure(db: Session, unshipped_item_id: int) -> FulfillmentError:
    item = _load(db, unshipped_item_id)
    if not item:
        return NotFoundError(f'Unshipped item {unshipped_item_id} not found')
    if item.shipped:
        return AlreadyShipped(f'Unshipped item {unshipped_item_id} was already shipped in order {item.shipped_in_order_id}')
    if item.voided:
        return ItemVoided(f'Unshipped item {unshipped_item_id} belongs to a cancelled order and cannot be authorized')
    if item.authorized:
        return AlreadyAuthorized(f'Unshipped item {unshipped_item_id} is already authorized')
    return ConflictError(f'Unshipped item {unshipped_item_id} changed while it was being authorized')


def authorize(db: Session, *, unshipped_item_id: int, authorizing_user_id: int) -> UnshippedItem:
    authorized_at = _now()
    result = db.execute(
        update(UnshippedItem)
        .where(
            UnshippedItem.id == unshipped_item_id,
            UnshippedItem.authorized.is_(False),
            _open_condition(),
        )
        .values(authorized=True, authorized_by_id=authorizing_user_id, authorized_at=authorized_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise _authorization_failure(db, unshipped_item_id)

    item = _load(db, unshipped_item_id)
    log_order_change(
        db,
        order_id=item.order_id,
        user_id=authorizing_user_id,
        action=ChangelogAction.UNSHIPPED_AUTHORIZATION,
        changes={'unshipped_item_id': item.id, 'product_id': item.product_id, 'quantity': item.quantity},
        notes='Authorized unshipped item for future fulfillment',
    )
    db.flush()
    logger.info('Unshipped item authorized', unshipped_item_id=item.id, order_id=item.order_id, actor_id=authorizing_user_id)
    return item


def authorize_many(db: Session, *, unshipped_item_ids: list[int], authorizing_user_id: int) -> list[AuthorizationOutcome]:
    if not unshipped_item_ids:
        raise ValidationError('Select at least one unshipped item')

    outcomes: list[AuthorizationOutcome] = []
    for unshipped_item_id in dict.fromkeys(unshipped_item_ids):
        try:
            authorize(db, unshipped_item_id=unshipped_item_id, authorizing_user_id=authorizing_user_id)
        except (NotFoundError, ConflictError) as exc:
            outcomes.append(
                AuthorizationOutcome(unshipped_item_id=unshipped_item_id, success=False, error_code=exc.code, error=str(exc))
            )
            continue
        outcomes.append(AuthorizationOutcome(unshipped_item_id=unshipped_item_id, success=True))

    authorized_ids = [outcome.unshipped_item_id for outcome in outcomes if outcome.success]
    if authorized_ids:
        queue_event(
            db,
            FulfillmentEvent(
                type=UNSHIPPED_ITEMS_AUTHORIZED,
                payload={'itemIds': authorized_ids, 'authorizedBy': authorizing_user_id},
            ),
        )
    return outcomes


def list_outstanding(
    db: Session,
    *,
    filter_name: str = FILTER_OPEN,
    role: Role | None = None,
    customer_name: str | None = None,
    order_id: int | None = None,
) -> list[dict]:
    if filter_name not in OUTSTANDING_FILTERS:
        raise ValidationError(f'Unknown filter {filter_name!r}; expected one of {", ".join(OUTSTANDING_FILTERS)}')
    if filter_name == FILTER_PENDING_AUTHORIZATION and (role is None or not can_authorize_unshipped(role)):
        raise PermissionError('Only authorizing roles can list items pending authorization')

    conditions = [_open_condition()]
    if filter_name == FILTER_PENDING_AUTHORIZATION:
        conditions.append(UnshippedItem.authorized.is_(False))
    elif filter_name == FILTER_AUTHORIZED:
        conditions.append(UnshippedItem.authorized.is_(True))
    if customer_name and customer_name.strip():
        conditions.append(func.lower(UnshippedItem.customer_name).contains(customer_name.strip().lower()))
    if order_id is not None:
        conditions.append(UnshippedItem.order_id == order_id)

    rows = db.execute(
        select(UnshippedItem, Product.sku, Product.name)
        .join(Product, Product.id == UnshippedItem.product_id)
        .where(and_(*conditions))
        .order_by(UnshippedItem.created_at.asc(), UnshippedItem.id.asc())
    ).all()
    return [
        {
            'id': item.id,
            'order_id': item.order_id,
            'order_item_id': item.order_item_id,
            'original_order_number': item.original_order_number,
            'customer_name': item.customer_name,
            'product_id': item.product_id,
            'sku': sku,
            'product_name': product_name,
            'quantity': item.quantity,
            'created_at': item.created_at,
            'authorized': item.authorized,
            'authorized_by_id': item.authorized_by_id,
            'authorized_at': item.authorized_at,
            'shipped': item.shipped,
            'notes': item.notes,
        }
        for item, sku, product_name in rows
    ]


def _consume_failure(items: dict[int, UnshippedItem], unshipped_item_ids: list[int]) -> FulfillmentError | None:
    missing = [item_id for item_id in unshipped_item_ids if item_id not in items]
    if missing:
        return NotFoundError(f'Unshipped items not found: {", ".join(str(item_id) for item_id in missing)}')
    shipped = [item_id for item_id in unshipped_item_ids if items[item_id].shipped]
    if shipped:
        return AlreadyShipped(f'Unshipped items already shipped: {", ".join(str(item_id) for item_id in shipped)}')
    voided = [item_id for item_id in unshipped_item_ids if items[item_id].voided]
    if voided:
        return ItemVoided(f'Unshipped items belong to cancelled orders: {", ".join(str(item_id) for item_id in voided)}')
    unauthorized = [item_id for item_id in unshipped_item_ids if not items[item_id].authorized]
    if unauthorized:
        return NotAuthorized(f'Unshipped items not authorized: {", ".join(str(item_id) for item_id in unauthorized)}')
    return None


def consume(db: Session, *, unshipped_item_ids: list[int], new_order_id: int) -> list[UnshippedItem]:
    target_ids = list(dict.fromkeys(unshipped_item_ids))
    if not target_ids:
        raise ValidationError('Select at least one unshipped item')
    if db.get(Order, new_order_id) is None:
        raise NotFoundError(f'Order {new_order_id} not found')

    items = {
        item.id: item
        for item in db.execute(
            select(UnshippedItem)
            .where(UnshippedItem.id.in_(target_ids))
            .execution_options(populate_existing=True)
        ).scalars().all()
    }
    failure = _consume_failure(items, target_ids)
    if failure:
        raise failure

    shipped_at = _now()
    with savepoint(db):
        result = db.execute(
            update(UnshippedItem)
            .where(
                UnshippedItem.id.in_(target_ids),
                UnshippedItem.authorized.is_(True),
                _open_condition(),
            )
            .values(shipped=True, shipped_in_order_id=new_order_id, shipped_at=shipped_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(target_ids):
            raise ConflictError('Unshipped items changed while they were being consumed; nothing was shipped')

    logger.info('Consumed unshipped items', new_order_id=new_order_id, unshipped_item_ids=target_ids)
    return [_load(db, item_id) for item_id in target_ids]


def void_open_items(db: Session, *, order_id: int) -> int:
    result = db.execute(
        update(UnshippedItem)
        .where(UnshippedItem.order_id == order_id, _open_condition())
        .values(voided=True, voided_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def open_items_for_order(db: Session, *, order_id: int) -> list[UnshippedItem]:
    return db.execute(
        select(UnshippedItem)
        .where(UnshippedItem.order_id == order_id, _open_condition())
        .order_by(UnshippedItem.id.asc())
        .execution_options(populate_existing=True)
    ).scalars().all()


def count_open_for_customer(db: Session, *, customer_name: str) -> int:
    return db.execute(
        select(func.count(UnshippedItem.id)).where(
            func.lower(UnshippedItem.customer_name) == customer_name.strip().lower(),
            _open_condition(),
        )
    ).scalar_one()


def customer_outstanding_summary(db: Session, *, customer_name: str) -> CustomerOutstandingSummary:
    """Open records for a customer plus their orders not yet shipped at all."""
    name = customer_name.strip()
    if not name:
        raise ValidationError('Customer name is required')
    same_customer = func.lower(UnshippedItem.customer_name) == name.lower()
    total, authorized = db.execute(
        select(
            func.count(UnshippedItem.id),
            func.count(UnshippedItem.id).filter(UnshippedItem.authorized.is_(True)),
        ).where(same_customer, _open_condition())
    ).one()
    pending_orders = db.execute(
        select(func.count(Order.id)).where(
            func.lower(Order.customer_name) == name.lower(),
            Order.status.in_((OrderStatus.PENDING, OrderStatus.PICKED)),
        )
    ).scalar_one()
    return CustomerOutstandingSummary(
        customer_name=name,
        unshipped_items_count=total,
        authorized_count=authorized,
        pending_orders=pending_orders,
    )


def notify_customer_outstanding(db: Session, *, order: Order, open_count: int) -> None:
    if open_count <= 0:
        return
    queue_event(
        db,
        FulfillmentEvent(
            type=CUSTOMER_HAS_UNSHIPPED_ITEMS,
            payload={
                'orderId': order.id,
                'orderNumber': order.order_number,
                'customerName': order.customer_name,
                'unshippedItemsCount': open_count,
            },
        ),
    )
