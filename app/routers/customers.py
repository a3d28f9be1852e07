from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import http_error
from app.exceptions import FulfillmentError
from app.services.unshipped_item_service import customer_outstanding_summary

router = APIRouter(prefix='/customers', tags=['customers'])


@router.get('/{customer_name}/has-unshipped-items')
def customer_has_unshipped_items(
    customer_name: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        summary = customer_outstanding_summary(db, customer_name=customer_name)
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    return {
        'customerName': summary.customer_name,
        'hasUnshippedItems': summary.has_unshipped_items,
        'unshippedItemsCount': summary.unshipped_items_count,
        'hasAuthorizedUnshippedItems': summary.has_authorized_unshipped_items,
        'hasUnauthorizedUnshippedItems': summary.has_unauthorized_unshipped_items,
        'pendingOrders': summary.pending_orders,
    }
