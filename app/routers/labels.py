from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from app.auth import Principal, Role, get_current_principal, require_role
from app.db import get_db
from app.dependencies import get_client_ip, http_error
from app.exceptions import FulfillmentError, RenderError
from app.schemas import PreviewLabelIn, PrintBatchIn, PrintLabelIn
from app.services.label_service import preview_box, print_batch, print_box, resolve_preview

logger = structlog.get_logger(__name__)

router = APIRouter(tags=['labels'])

print_access = require_role(Role.ADMIN, Role.MANAGER, Role.FRONT_OFFICE, Role.WAREHOUSE)


def _failure(exc: FulfillmentError, *, box_number: int | None = None) -> JSONResponse:
    http_exc = http_error(exc)
    if isinstance(exc, RenderError) and exc.box_number is not None:
        box_number = exc.box_number
    return JSONResponse(
        status_code=http_exc.status_code,
        content={'success': False, 'code': exc.code, 'error': str(exc), 'boxNumber': box_number},
    )


@router.post('/preview-label')
def preview_label(
    body: PreviewLabelIn,
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        preview = preview_box(db, order_id=body.order_id, box_number=body.current_box, box_count=body.box_count)
    except FulfillmentError as exc:
        return _failure(exc, box_number=body.current_box)
    return {
        'success': True,
        'previewUrl': preview.preview_url,
        'handle': preview.handle,
        'content': preview.content,
        'boxNumber': preview.box_number,
        'boxCount': preview.box_count,
    }


@router.get('/preview-label/{order_id}/{box_number}/{box_count}', response_class=PlainTextResponse)
def preview_label_content(
    order_id: int,
    box_number: int,
    box_count: int,
    handle: str | None = Query(None),
    _: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        preview = resolve_preview(
            db, order_id=order_id, box_number=box_number, box_count=box_count, handle=handle
        )
    except FulfillmentError as exc:
        raise http_error(exc) from exc
    return PlainTextResponse(preview.content, headers={'ETag': f'"{preview.handle}"'})


@router.post('/print-label')
def print_label(
    body: PrintLabelIn,
    request: Request,
    principal: Principal = Depends(print_access),
    db: Session = Depends(get_db),
):
    logger.info(
        'Label print requested',
        order_id=body.order_id,
        box_number=body.current_box,
        method=body.method.value,
        client_ip=get_client_ip(request),
    )
    try:
        print_box(
            db,
            order_id=body.order_id,
            box_number=body.current_box,
            box_count=body.box_count,
            method=body.method,
            actor_id=principal.id,
        )
    except FulfillmentError as exc:
        return _failure(exc, box_number=body.current_box)
    db.commit()
    return {'success': True, 'boxNumber': body.current_box, 'boxCount': body.box_count}


@router.post('/print-batch-labels')
def print_batch_labels(
    body: PrintBatchIn,
    request: Request,
    principal: Principal = Depends(print_access),
    db: Session = Depends(get_db),
):
    logger.info(
        'Label batch print requested',
        order_id=body.order_id,
        box_count=body.box_count,
        method=body.method.value,
        client_ip=get_client_ip(request),
    )
    try:
        result = print_batch(
            db,
            order_id=body.order_id,
            box_count=body.box_count,
            method=body.method,
            actor_id=principal.id,
        )
    except FulfillmentError as exc:
        return _failure(exc)
    db.commit()
    return {
        'success': result.success,
        'printed': len(result.printed),
        'printedBoxes': result.printed,
        'failed': [{'boxNumber': failure.box_number, 'error': failure.error} for failure in result.failed],
    }
