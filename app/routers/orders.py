from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role
from app.db import get_db
from app.dependencies import http_error
from app.exceptions import FulfillmentError
from app.models import Order
from app.schemas import CancelOrderIn, CompleteShipmentIn, CreateOrderIn, OrderItemOut, OrderOut, ShipOrderIn
from app.services.audit_service import list_order_changelog
from app.services.label_service import list_print_log
from app.services.order_service import (
    OrderLine,
    cancel_order,
    create_order,
    get_order,
    list_order_items,
    list_partially_shipped,
    mark_picked,
    record_shipment,
)
from app.services.shipment_completion_service import complete_shipment

router = APIRouter(prefix='/orders', tags=['orders'])

shipping_access = require_role(Role.ADMIN, Role.MANAGER, Role.FRONT_OFFICE, Role.WAREHOUSE)
office_access = require_role(Role.ADMIN, Role.MANAGER, Role.FRONT_OFFICE)


def _order_payload(order: Order) -> dict:
    return OrderOut.model_validate(order).model_dump(by_alias=True, mode='json')


@router.get('/partially-shipped')
def partially_shipped_orders(
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return [_order_payload(order) for order in list_partially_shipped(db)]


@router.post('', status_code=201)
def create_order_endpoint(
    body: CreateOrderIn,
    principal: Principal = Depends(office_access),
    db: Session = Depends(get_db),
):
    try:
        order, open_count = create_order(
            db,
            customer_id=body.customer_id,
            lines=[OrderLine(product_id=line.product_id, quantity=line.quantity) for line in body.items],
            actor_id=principal.id,
            area=body.area,
            notes=body.notes,
            estimated_shipping_date=body.estimated_shipping_date,
        )
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {'order': _order_payload(order), 'customerUnshippedItemsCount': open_count}


@router.post('/complete-shipment')
def complete_shipment_endpoint(
    body: CompleteShipmentIn,
    principal: Principal = Depends(shipping_access),
    db: Session = Depends(get_db),
):
    try:
        results = complete_shipment(db, order_ids=body.order_ids, actor_id=principal.id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {
        'success': all(result.success for result in results),
        'results': [
            {
                'orderId': result.order_id,
                'success': result.success,
                'orderNumber': result.order_number,
                'status': result.status,
                'consumedUnshippedItemIds': list(result.consumed_unshipped_item_ids),
                'errorCode': result.error_code,
                'error': result.error,
            }
            for result in results
        ],
    }


@router.get('/{order_id}')
def order_detail(
    order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        order = get_order(db, order_id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    return _order_payload(order)


@router.get('/{order_id}/items')
def order_items(
    order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        rows = list_order_items(db, order_id=order_id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    return [OrderItemOut.model_validate(row).model_dump(by_alias=True, mode='json') for row in rows]


@router.post('/{order_id}/pick')
def pick_order(
    order_id: int,
    principal: Principal = Depends(shipping_access),
    db: Session = Depends(get_db),
):
    try:
        order = mark_picked(db, order_id=order_id, actor_id=principal.id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _order_payload(order)


@router.post('/{order_id}/ship')
def ship_order(
    order_id: int,
    body: ShipOrderIn,
    principal: Principal = Depends(shipping_access),
    db: Session = Depends(get_db),
):
    shipped_quantities: dict[int, int] = {}
    for line in body.items:
        shipped_quantities[line.item_id] = shipped_quantities.get(line.item_id, 0) + line.quantity
    try:
        result = record_shipment(
            db,
            order_id=order_id,
            shipped_quantities=shipped_quantities,
            actor_id=principal.id,
            actor_role=principal.role,
            approve_partial=body.approve_partial,
            shipment_event_id=body.shipment_event_id,
            tracking_number=body.tracking_number,
        )
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {
        'order': _order_payload(result.order),
        'shipmentEventId': result.shipment_event_id,
        'replayed': result.replayed,
        'unshippedItemIds': [record.id for record in result.unshipped_items or []],
    }


@router.post('/{order_id}/cancel')
def cancel_order_endpoint(
    order_id: int,
    body: CancelOrderIn | None = None,
    principal: Principal = Depends(office_access),
    db: Session = Depends(get_db),
):
    try:
        order = cancel_order(db, order_id=order_id, actor_id=principal.id, notes=body.notes if body else None)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return _order_payload(order)


@router.get('/{order_id}/changelog')
def order_changelog(
    order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        get_order(db, order_id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    return [
        {
            'id': row['id'],
            'userId': row['user_id'],
            'action': row['action'],
            'changes': row['changes'],
            'previousValues': row['previous_values'],
            'notes': row['notes'],
            'createdAt': row['created_at'].isoformat() if row['created_at'] else None,
        }
        for row in list_order_changelog(db, order_id=order_id)
    ]


@router.get('/{order_id}/print-log')
def order_print_log(
    order_id: int,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        rows = list_print_log(db, order_id=order_id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    return [
        {
            'id': row['id'],
            'boxNumber': row['box_number'],
            'boxCount': row['box_count'],
            'method': row['method'],
            'contentHash': row['content_hash'],
            'printedById': row['printed_by_id'],
            'printedAt': row['printed_at'].isoformat() if row['printed_at'] else None,
        }
        for row in rows
    ]
