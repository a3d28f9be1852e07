from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.auth import Role, can_approve_partial_shipment
from app.exceptions import NotFoundError, PartialApprovalRequired, ValidationError
from app.models import (
    ChangelogAction,
    Customer,
    ItemShippingStatus,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    UnshippedItem,
)
from app.services import unshipped_item_service
from app.services.audit_service import log_order_change
from app.services.ledger_store import adjust_shipped_quantity, savepoint
from app.services.notification_service import PARTIAL_SHIPMENT_RECORDED, FulfillmentEvent, queue_event
from app.services.order_status_service import apply_derived_status, assert_transition, set_manual_status

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int


@dataclass
class ShipmentResult:
    order: Order
    shipment_event_id: str
    replayed: bool = False
    unshipped_items: list[UnshippedItem] | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_order_number(order_id: int) -> str:
    return f'ORD-{order_id:06d}'


def get_order(db: Session, order_id: int) -> Order:
    order = db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        raise NotFoundError(f'Order {order_id} not found')
    return order


def _load_items(db: Session, order_id: int) -> list[OrderItem]:
    return db.execute(
        select(OrderItem)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.id.asc())
        .execution_options(populate_existing=True)
    ).scalars().all()


def create_order(
    db: Session,
    *,
    customer_id: int,
    lines: list[OrderLine],
    actor_id: int,
    area: str | None = None,
    notes: str | None = None,
    estimated_shipping_date: datetime | None = None,
) -> tuple[Order, int]:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f'Customer {customer_id} not found')
    if not lines:
        raise ValidationError('An order needs at least one item')
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(f'Quantity for product {line.product_id} must be greater than zero')

    product_ids = {line.product_id for line in lines}
    known = set(db.execute(select(Product.id).where(Product.id.in_(product_ids))).scalars().all())
    missing = sorted(product_ids - known)
    if missing:
        raise NotFoundError(f'Products not found: {", ".join(str(product_id) for product_id in missing)}')

    now = _now()
    order = Order(
        customer_id=customer.id,
        customer_name=customer.name,
        order_date=now,
        estimated_shipping_date=estimated_shipping_date,
        status=OrderStatus.PENDING,
        area=(area or '').strip() or None,
        notes=notes,
        created_by_id=actor_id,
        updated_by_id=actor_id,
        last_updated=now,
    )
    db.add(order)
    db.flush()
    order.order_number = format_order_number(order.id)
    db.add_all(
        [
            OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                shipped_quantity=0,
                shipping_status=ItemShippingStatus.PENDING,
                version=1,
            )
            for line in lines
        ]
    )
    log_order_change(
        db,
        order_id=order.id,
        user_id=actor_id,
        action=ChangelogAction.CREATE,
        changes={'order_number': order.order_number, 'items': len(lines)},
    )
    db.flush()

    open_count = unshipped_item_service.count_open_for_customer(db, customer_name=customer.name)
    unshipped_item_service.notify_customer_outstanding(db, order=order, open_count=open_count)
    logger.info('Order created', order_id=order.id, order_number=order.order_number, outstanding_items=open_count)
    return order, open_count


def mark_picked(db: Session, *, order_id: int, actor_id: int) -> Order:
    order = get_order(db, order_id)
    set_manual_status(db, order=order, new_status=OrderStatus.PICKED, actor_id=actor_id)
    return order


def _validate_shipped_quantities(items: list[OrderItem], shipped_quantities: dict[int, int], order: Order) -> None:
    by_id = {item.id: item for item in items}
    for item_id, quantity in shipped_quantities.items():
        item = by_id.get(item_id)
        if not item:
            raise ValidationError(f'Item {item_id} does not belong to order {order.order_number}')
        if quantity < 0:
            raise ValidationError(f'Shipped quantity for item {item_id} cannot be negative')
        if quantity > item.quantity - item.shipped_quantity:
            raise ValidationError(
                f'Shipped quantity {quantity} exceeds the {item.quantity - item.shipped_quantity} '
                f'remaining for item {item_id}'
            )
    if sum(shipped_quantities.values()) <= 0:
        raise ValidationError('A shipment must ship at least one unit')


def record_shipment(
    db: Session,
    *,
    order_id: int,
    shipped_quantities: dict[int, int],
    actor_id: int,
    actor_role: Role,
    approve_partial: bool = False,
    shipment_event_id: str | None = None,
    tracking_number: str | None = None,
) -> ShipmentResult:
    order = get_order(db, order_id)
    if shipment_event_id and shipment_event_id == order.last_shipment_event_id:
        logger.info('Shipment already recorded', order_id=order.id, shipment_event_id=shipment_event_id)
        return ShipmentResult(order=order, shipment_event_id=shipment_event_id, replayed=True)
    if order.status != OrderStatus.PICKED:
        raise ValidationError(
            f'Order {order.order_number} is {order.status.value}; only picked orders can ship'
        )

    items = _load_items(db, order.id)
    _validate_shipped_quantities(items, shipped_quantities, order)
    is_partial = any(
        item.shipped_quantity + shipped_quantities.get(item.id, 0) < item.quantity for item in items
    )
    if is_partial and not approve_partial:
        raise PartialApprovalRequired(f'Order {order.order_number} would ship partially; approval is required')
    if is_partial and not can_approve_partial_shipment(actor_role):
        raise PartialApprovalRequired('Only an admin or manager can approve a partial shipment')

    event_id = shipment_event_id or uuid.uuid4().hex
    now = _now()
    with savepoint(db):
        for item_id, quantity in shipped_quantities.items():
            if quantity:
                adjust_shipped_quantity(db, item_id, quantity)
        apply_derived_status(db, order=order, actor_id=actor_id, notes=f'Shipment {event_id}')
        order.tracking_number = tracking_number or order.tracking_number
        order.actual_shipping_date = now
        order.last_shipment_event_id = event_id

        unshipped: list[UnshippedItem] = []
        if is_partial:
            order.is_partial_fulfillment = True
            order.partial_fulfillment_approved_by_id = actor_id
            order.partial_fulfillment_approved_at = now
            log_order_change(
                db,
                order_id=order.id,
                user_id=actor_id,
                action=ChangelogAction.PARTIAL_APPROVAL,
                changes={'is_partial_fulfillment': True, 'shipment_event_id': event_id},
                previous_values={'is_partial_fulfillment': False},
            )
            unshipped = unshipped_item_service.record_outstanding(
                db, order=order, shipment_event_id=event_id, items=_load_items(db, order.id)
            )
            queue_event(
                db,
                FulfillmentEvent(
                    type=PARTIAL_SHIPMENT_RECORDED,
                    payload={
                        'orderId': order.id,
                        'orderNumber': order.order_number,
                        'shipmentEventId': event_id,
                        'unshippedItemIds': [record.id for record in unshipped],
                    },
                ),
            )
        db.flush()

    logger.info(
        'Shipment recorded',
        order_id=order.id,
        shipment_event_id=event_id,
        status=order.status.value,
        percentage_shipped=str(order.percentage_shipped),
    )
    return ShipmentResult(order=order, shipment_event_id=event_id, unshipped_items=unshipped)


def cancel_order(db: Session, *, order_id: int, actor_id: int, notes: str | None = None) -> Order:
    order = get_order(db, order_id)
    assert_transition(order.status, OrderStatus.CANCELLED)
    with savepoint(db):
        voided = unshipped_item_service.void_open_items(db, order_id=order.id)
        db.execute(
            update(OrderItem)
            .where(OrderItem.order_id == order.id, OrderItem.shipped_quantity < OrderItem.quantity)
            .values(shipping_status=ItemShippingStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        set_manual_status(db, order=order, new_status=OrderStatus.CANCELLED, actor_id=actor_id, notes=notes)
    logger.info('Order cancelled', order_id=order.id, voided_unshipped_items=voided)
    return order


def list_partially_shipped(db: Session) -> list[Order]:
    return db.execute(
        select(Order)
        .where(
            Order.status == OrderStatus.PARTIALLY_SHIPPED,
            Order.percentage_shipped > 0,
            Order.percentage_shipped < 100,
        )
        .order_by(Order.order_date.asc(), Order.id.asc())
    ).scalars().all()


def list_order_items(db: Session, *, order_id: int) -> list[dict]:
    get_order(db, order_id)
    rows = db.execute(
        select(OrderItem, Product.sku, Product.name)
        .join(Product, Product.id == OrderItem.product_id)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.id.asc())
        .execution_options(populate_existing=True)
    ).all()
    return [
        {
            'id': item.id,
            'product_id': item.product_id,
            'sku': sku,
            'product_name': product_name,
            'quantity': item.quantity,
            'shipped_quantity': item.shipped_quantity,
            'remaining': item.quantity - item.shipped_quantity,
            'shipping_status': item.shipping_status.value,
        }
        for item, sku, product_name in rows
    ]
