"""Shipping label issuance for the boxes of one order.

Boxes are numbered ``1..box_count``. Label content is a pure function of the
order, its customer and the box position, so a preview can be re-rendered
from its URL and compared by handle. Printing appends to the label print log
and never touches shipped quantities.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import NotFoundError, PrinterError, RenderError, ValidationError
from app.models import ChangelogAction, Customer, LabelPrintLog, Order, PrintMethod
from app.services.audit_service import log_order_change
from app.services.label_printer import LabelPrinter, PrintJob
from app.services.label_template import LabelTemplate
from app.services.ledger_store import savepoint
from app.services.order_status_service import LABEL_PRINTABLE_STATUSES
from app.services.printer_factory import get_label_printer, get_label_template

logger = structlog.get_logger(__name__)

MM_PER_INCH = 25.4


@dataclass(frozen=True)
class LabelPreview:
    order_id: int
    box_number: int
    box_count: int
    content: str
    handle: str
    preview_url: str


@dataclass(frozen=True)
class FailedBox:
    box_number: int
    error: str


@dataclass
class BatchPrintResult:
    order_id: int
    box_count: int
    printed: list[int] = field(default_factory=list)
    failed: list[FailedBox] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def _dots(millimetres: int) -> int:
    return round(millimetres / MM_PER_INCH * settings.label_dpi)


def validate_box_range(box_number: int | None, box_count: int) -> None:
    if box_count < 1:
        raise ValidationError('Box count must be at least 1')
    if box_number is not None and not 1 <= box_number <= box_count:
        raise ValidationError(f'Box number {box_number} is outside 1..{box_count}')


def shipping_company_for(order: Order, customer: Customer | None) -> str:
    if customer:
        for candidate in (customer.shipping_company, customer.preferred_shipping_company, customer.billing_company):
            if candidate and candidate.strip():
                return candidate.strip()
    return (order.area or '').strip()


def _customer_address(customer: Customer | None) -> str:
    if not customer:
        return ''
    parts = [customer.address, customer.city, customer.state, customer.postal_code]
    return ', '.join(part.strip() for part in parts if part and part.strip())


def _shipping_date(order: Order) -> str:
    shipped_on = order.actual_shipping_date or order.estimated_shipping_date or order.order_date
    return shipped_on.date().isoformat()


def build_label_variables(order: Order, customer: Customer | None, *, box_number: int, box_count: int) -> dict:
    return {
        'company_name': settings.label_company_name,
        'order_id': order.id,
        'order_number': order.order_number,
        'customer_name': order.customer_name,
        'customer_address': _customer_address(customer),
        'customer_phone': (customer.phone or '') if customer else '',
        'shipping_company': shipping_company_for(order, customer),
        'area': order.area or '',
        'shipping_date': _shipping_date(order),
        'box_number': box_number,
        'box_count': box_count,
        'dpi': settings.label_dpi,
        'label_width_dots': _dots(settings.label_width_mm),
        'label_height_dots': _dots(settings.label_height_mm),
    }


def content_handle(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def render_box(template: LabelTemplate, variables: dict, *, box_number: int) -> str:
    return template.render(variables, box_number=box_number)


def _load_order(db: Session, order_id: int) -> tuple[Order, Customer | None]:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError(f'Order {order_id} not found')
    customer = db.get(Customer, order.customer_id) if order.customer_id else None
    return order, customer


def _render(
    order: Order,
    customer: Customer | None,
    *,
    box_number: int,
    box_count: int,
    template: LabelTemplate | None,
) -> str:
    variables = build_label_variables(order, customer, box_number=box_number, box_count=box_count)
    return render_box(template or get_label_template(), variables, box_number=box_number)


def preview_box(
    db: Session,
    *,
    order_id: int,
    box_number: int,
    box_count: int,
    template: LabelTemplate | None = None,
) -> LabelPreview:
    validate_box_range(box_number, box_count)
    order, customer = _load_order(db, order_id)
    content = _render(order, customer, box_number=box_number, box_count=box_count, template=template)
    handle = content_handle(content)
    return LabelPreview(
        order_id=order.id,
        box_number=box_number,
        box_count=box_count,
        content=content,
        handle=handle,
        preview_url=f'{settings.preview_base_path}/{order.id}/{box_number}/{box_count}?handle={handle}',
    )


def preview_batch(
    db: Session,
    *,
    order_id: int,
    box_count: int,
    template: LabelTemplate | None = None,
) -> list[LabelPreview]:
    validate_box_range(None, box_count)
    return [
        preview_box(db, order_id=order_id, box_number=box_number, box_count=box_count, template=template)
        for box_number in range(1, box_count + 1)
    ]


def resolve_preview(
    db: Session,
    *,
    order_id: int,
    box_number: int,
    box_count: int,
    handle: str | None,
    template: LabelTemplate | None = None,
) -> LabelPreview:
    preview = preview_box(db, order_id=order_id, box_number=box_number, box_count=box_count, template=template)
    if handle and handle != preview.handle:
        raise NotFoundError(f'Preview of box {box_number} for order {order_id} is out of date; preview it again')
    return preview


def _ensure_printable(order: Order) -> None:
    if order.status not in LABEL_PRINTABLE_STATUSES:
        raise ValidationError(f'Labels cannot be printed for order {order.order_number} while it is {order.status.value}')


def _print_one(
    db: Session,
    *,
    order: Order,
    customer: Customer | None,
    box_number: int,
    box_count: int,
    method: PrintMethod,
    actor_id: int | None,
    printer: LabelPrinter | None,
    template: LabelTemplate | None,
) -> LabelPrintLog:
    content = _render(order, customer, box_number=box_number, box_count=box_count, template=template)
    entry = LabelPrintLog(
        order_id=order.id,
        box_number=box_number,
        box_count=box_count,
        method=method,
        content_hash=content_handle(content),
        printed_by_id=actor_id,
    )
    db.add(entry)
    log_order_change(
        db,
        order_id=order.id,
        user_id=actor_id,
        action=ChangelogAction.LABEL_PRINTED,
        changes={'box_number': box_number, 'box_count': box_count, 'method': method.value},
    )
    db.flush()
    # Audit row first; a printer failure rolls it back with the savepoint.
    if method == PrintMethod.DIRECT:
        (printer or get_label_printer()).send(
            PrintJob(order_number=order.order_number, box_number=box_number, box_count=box_count, content=content)
        )
    logger.info('Label printed', order_id=order.id, box_number=box_number, box_count=box_count, method=method.value)
    return entry


def print_box(
    db: Session,
    *,
    order_id: int,
    box_number: int,
    box_count: int,
    method: PrintMethod,
    actor_id: int | None,
    printer: LabelPrinter | None = None,
    template: LabelTemplate | None = None,
) -> LabelPrintLog:
    validate_box_range(box_number, box_count)
    order, customer = _load_order(db, order_id)
    _ensure_printable(order)
    with savepoint(db):
        return _print_one(
            db,
            order=order,
            customer=customer,
            box_number=box_number,
            box_count=box_count,
            method=method,
            actor_id=actor_id,
            printer=printer,
            template=template,
        )


def print_batch(
    db: Session,
    *,
    order_id: int,
    box_count: int,
    method: PrintMethod,
    actor_id: int | None,
    printer: LabelPrinter | None = None,
    template: LabelTemplate | None = None,
) -> BatchPrintResult:
    validate_box_range(None, box_count)
    order, customer = _load_order(db, order_id)
    _ensure_printable(order)

    result = BatchPrintResult(order_id=order.id, box_count=box_count)
    for box_number in range(1, box_count + 1):
        try:
            with savepoint(db):
                _print_one(
                    db,
                    order=order,
                    customer=customer,
                    box_number=box_number,
                    box_count=box_count,
                    method=method,
                    actor_id=actor_id,
                    printer=printer,
                    template=template,
                )
        except (RenderError, PrinterError) as exc:
            logger.warning('Label print failed', order_id=order.id, box_number=box_number, error=str(exc))
            result.failed.append(FailedBox(box_number=box_number, error=str(exc)))
            continue
        result.printed.append(box_number)
    return result


def list_print_log(db: Session, *, order_id: int) -> list[dict]:
    _load_order(db, order_id)
    rows = db.execute(
        select(LabelPrintLog)
        .where(LabelPrintLog.order_id == order_id)
        .order_by(LabelPrintLog.id.asc())
    ).scalars().all()
    return [
        {
            'id': row.id,
            'box_number': row.box_number,
            'box_count': row.box_count,
            'method': row.method.value,
            'content_hash': row.content_hash,
            'printed_by_id': row.printed_by_id,
            'printed_at': row.printed_at,
        }
        for row in rows
    ]
