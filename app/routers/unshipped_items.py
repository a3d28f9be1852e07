from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role
from app.db import get_db
from app.dependencies import http_error
from app.exceptions import FulfillmentError
from app.schemas import AuthorizeManyIn, UnshippedItemOut
from app.services.unshipped_item_service import FILTER_OPEN, authorize, authorize_many, list_outstanding

router = APIRouter(prefix='/unshipped-items', tags=['unshipped-items'])

authorization_access = require_role(Role.ADMIN, Role.MANAGER, Role.FRONT_OFFICE)


@router.get('')
def unshipped_items(
    filter_name: str = Query(FILTER_OPEN, alias='filter'),
    customer_name: str | None = Query(None, alias='customerName'),
    order_id: int | None = Query(None, alias='orderId'),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        rows = list_outstanding(
            db,
            filter_name=filter_name,
            role=principal.role,
            customer_name=customer_name,
            order_id=order_id,
        )
    except (FulfillmentError, PermissionError) as exc:
        raise http_error(exc) from exc
    return [UnshippedItemOut.model_validate(row).model_dump(by_alias=True, mode='json') for row in rows]


@router.post('/authorize')
def authorize_unshipped_items(
    body: AuthorizeManyIn,
    principal: Principal = Depends(authorization_access),
    db: Session = Depends(get_db),
):
    try:
        outcomes = authorize_many(db, unshipped_item_ids=body.item_ids, authorizing_user_id=principal.id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {
        'success': all(outcome.success for outcome in outcomes),
        'results': [
            {
                'id': outcome.unshipped_item_id,
                'success': outcome.success,
                'errorCode': outcome.error_code,
                'error': outcome.error,
            }
            for outcome in outcomes
        ],
    }


@router.post('/{unshipped_item_id}/authorize')
def authorize_unshipped_item(
    unshipped_item_id: int,
    principal: Principal = Depends(authorization_access),
    db: Session = Depends(get_db),
):
    try:
        item = authorize(db, unshipped_item_id=unshipped_item_id, authorizing_user_id=principal.id)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    db.commit()
    return {
        'success': True,
        'id': item.id,
        'authorized': item.authorized,
        'authorizedById': item.authorized_by_id,
        'authorizedAt': item.authorized_at.isoformat() if item.authorized_at else None,
    }
