"""Outbound fulfillment events.

Services queue events on the SQLAlchemy session that made the change. They are
handed to subscribers only after that session commits, so a consumer never
hears about a status change that was rolled back. Delivery to browsers,
chat or email is left to whichever transport subscribes to the bus.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

import structlog
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)

_PENDING_KEY = 'pending_fulfillment_events'

ORDER_STATUS_CHANGE = 'orderStatusChange'
PARTIAL_SHIPMENT_RECORDED = 'partialShipmentRecorded'
UNSHIPPED_ITEMS_AUTHORIZED = 'unshippedItemsAuthorized'
CUSTOMER_HAS_UNSHIPPED_ITEMS = 'customerHasUnshippedItems'


@dataclass(frozen=True)
class FulfillmentEvent:
    type: str
    payload: dict = field(default_factory=dict)

    def to_message(self) -> dict:
        return {'type': self.type, **self.payload}


def order_status_change(*, order_id: int, order_number: str, previous_status: str, new_status: str) -> FulfillmentEvent:
    return FulfillmentEvent(
        type=ORDER_STATUS_CHANGE,
        payload={
            'orderId': order_id,
            'orderNumber': order_number,
            'previousStatus': previous_status,
            'newStatus': new_status,
        },
    )


Subscriber = Callable[[FulfillmentEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, fulfillment_event: FulfillmentEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(fulfillment_event)
            except Exception:
                # Already committed; remaining subscribers still receive the event.
                logger.exception('Event subscriber failed', event_type=fulfillment_event.type)


event_bus = EventBus()


def _log_event(fulfillment_event: FulfillmentEvent) -> None:
    logger.info('Fulfillment event published', event_type=fulfillment_event.type, **fulfillment_event.payload)


event_bus.subscribe(_log_event)


def queue_event(db: Session, fulfillment_event: FulfillmentEvent) -> None:
    db.info.setdefault(_PENDING_KEY, []).append(fulfillment_event)


def pending_events(db: Session) -> list[FulfillmentEvent]:
    return list(db.info.get(_PENDING_KEY, []))


@event.listens_for(Session, 'after_commit')
def _publish_after_commit(session: Session) -> None:
    # Releasing a SAVEPOINT fires after_commit too; only the outermost commit publishes.
    if session.in_nested_transaction():
        return
    queued = session.info.pop(_PENDING_KEY, [])
    for fulfillment_event in queued:
        event_bus.publish(fulfillment_event)


@event.listens_for(Session, 'after_rollback')
def _discard_after_rollback(session: Session) -> None:
    # A failed SAVEPOINT drops only its own events, see ledger_store.savepoint.
    if session.in_nested_transaction():
        return
    session.info.pop(_PENDING_KEY, None)


def event_mark(db: Session) -> int:
    return len(db.info.get(_PENDING_KEY, []))


def discard_events_since(db: Session, mark: int) -> None:
    queued = db.info.get(_PENDING_KEY)
    if queued is not None:
        del queued[mark:]
