from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select

from app.auth import Role
from app.exceptions import (
    AlreadyAuthorized,
    AlreadyShipped,
    ItemVoided,
    NotAuthorized,
    NotFoundError,
    PartialApprovalRequired,
    ValidationError,
)
from app.models import ItemShippingStatus, OrderItem, OrderStatus, UnshippedItem
from app.services.order_service import OrderLine, cancel_order, create_order, record_shipment
from app.services.unshipped_item_service import (
    FILTER_AUTHORIZED,
    FILTER_PENDING_AUTHORIZATION,
    authorize,
    authorize_many,
    consume,
    count_open_for_customer,
    customer_outstanding_summary,
    list_outstanding,
    record_outstanding,
)
from tests.support import DatabaseTestCase


class PartialShipmentTests(DatabaseTestCase):
    def test_partial_shipment_records_outstanding_quantity(self) -> None:
        order = self.make_order(10, 5)
        result = self.ship(order, [10, 0])

        self.assert_status(order, OrderStatus.PARTIALLY_SHIPPED)
        self.assertEqual(order.percentage_shipped, Decimal('66.66'))
        self.assertTrue(order.is_partial_fulfillment)
        self.assertEqual(order.partial_fulfillment_approved_by_id, self.manager.id)

        records = self.db.execute(select(UnshippedItem)).scalars().all()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].quantity, 5)
        self.assertEqual(records[0].product_id, self.products[1].id)
        self.assertEqual(records[0].original_order_number, order.order_number)
        self.assertEqual(records[0].customer_name, 'Acme Deli')
        self.assertFalse(records[0].authorized)
        self.assertFalse(records[0].shipped)
        self.assertEqual([record.id for record in result.unshipped_items], [records[0].id])

    def test_partial_shipment_needs_approval(self) -> None:
        order = self.make_order(10, 5)
        items = self.db.execute(select(OrderItem).where(OrderItem.order_id == order.id)).scalars().all()
        with self.assertRaises(PartialApprovalRequired):
            record_shipment(
                self.db,
                order_id=order.id,
                shipped_quantities={items[0].id: 10},
                actor_id=self.manager.id,
                actor_role=Role.MANAGER,
            )
        with self.assertRaises(PartialApprovalRequired):
            record_shipment(
                self.db,
                order_id=order.id,
                shipped_quantities={items[0].id: 10},
                actor_id=self.warehouse.id,
                actor_role=Role.WAREHOUSE,
                approve_partial=True,
            )
        self.assertEqual(self.reload(items[0]).shipped_quantity, 0)
        self.assert_status(order, OrderStatus.PICKED)

    def test_replayed_shipment_event_is_a_no_op(self) -> None:
        order = self.make_order(10, 5)
        self.ship(order, [10, 0], shipment_event_id='evt-1')
        replay = self.ship(order, [10, 0], shipment_event_id='evt-1')

        self.assertTrue(replay.replayed)
        self.assertEqual(len(self.db.execute(select(UnshippedItem)).scalars().all()), 1)

    def test_record_outstanding_is_idempotent_per_event(self) -> None:
        order = self.make_order(10, 5)
        self.ship(order, [10, 0], shipment_event_id='evt-1')
        again = record_outstanding(self.db, order=order, shipment_event_id='evt-1')
        self.assertEqual(again, [])
        self.assertEqual(len(self.db.execute(select(UnshippedItem)).scalars().all()), 1)

    def test_new_order_reports_customer_outstanding_items(self) -> None:
        order = self.make_order(10, 5, 4)
        self.ship(order, [10, 0, 0])
        self.assertEqual(count_open_for_customer(self.db, customer_name='acme deli '), 2)

        _, open_count = create_order(
            self.db,
            customer_id=self.customer.id,
            lines=[OrderLine(product_id=self.products[0].id, quantity=1)],
            actor_id=self.front_office.id,
        )
        self.assertEqual(open_count, 2)


class UnshippedLedgerTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.order = self.make_order(10, 5, 4)
        self.ship(self.order, [10, 0, 0])
        self.first, self.second = self.db.execute(
            select(UnshippedItem).order_by(UnshippedItem.id.asc())
        ).scalars().all()

    def test_authorize_sets_flag_actor_and_time_together(self) -> None:
        item = authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.front_office.id)
        self.assertTrue(item.authorized)
        self.assertEqual(item.authorized_by_id, self.front_office.id)
        self.assertIsNotNone(item.authorized_at)

    def test_authorize_distinguishes_failures(self) -> None:
        authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)
        with self.assertRaises(AlreadyAuthorized):
            authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)

        consume(self.db, unshipped_item_ids=[self.first.id], new_order_id=self.order.id)
        with self.assertRaises(AlreadyShipped):
            authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)

        with self.assertRaises(NotFoundError):
            authorize(self.db, unshipped_item_id=9999, authorizing_user_id=self.manager.id)

    def test_authorize_many_reports_each_item(self) -> None:
        authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)
        outcomes = authorize_many(
            self.db,
            unshipped_item_ids=[self.first.id, self.second.id, 9999],
            authorizing_user_id=self.manager.id,
        )
        self.assertEqual(
            [(outcome.unshipped_item_id, outcome.success, outcome.error_code) for outcome in outcomes],
            [(self.first.id, False, 'already_authorized'), (self.second.id, True, None), (9999, False, 'not_found')],
        )

    def test_consume_unauthorized_changes_nothing(self) -> None:
        with self.assertRaises(NotAuthorized):
            consume(self.db, unshipped_item_ids=[self.first.id], new_order_id=self.order.id)

        item = self.reload(self.first)
        self.assertFalse(item.authorized)
        self.assertFalse(item.shipped)
        self.assertIsNone(item.shipped_in_order_id)
        self.assertIsNone(item.shipped_at)

    def test_consume_is_all_or_nothing(self) -> None:
        authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)
        authorize(self.db, unshipped_item_id=self.second.id, authorizing_user_id=self.manager.id)
        consume(self.db, unshipped_item_ids=[self.first.id], new_order_id=self.order.id)

        with self.assertRaises(AlreadyShipped):
            consume(self.db, unshipped_item_ids=[self.second.id, self.first.id], new_order_id=self.order.id)

        second = self.reload(self.second)
        self.assertFalse(second.shipped)
        self.assertIsNone(second.shipped_in_order_id)

    def test_consume_marks_every_record_shipped(self) -> None:
        authorize_many(
            self.db, unshipped_item_ids=[self.first.id, self.second.id], authorizing_user_id=self.manager.id
        )
        consumed = consume(self.db, unshipped_item_ids=[self.first.id, self.second.id], new_order_id=self.order.id)
        self.assertEqual([item.shipped for item in consumed], [True, True])
        self.assertEqual({item.shipped_in_order_id for item in consumed}, {self.order.id})

    def test_pending_authorization_filter_is_privileged(self) -> None:
        with self.assertRaises(PermissionError):
            list_outstanding(self.db, filter_name=FILTER_PENDING_AUTHORIZATION, role=Role.WAREHOUSE)

        rows = list_outstanding(self.db, filter_name=FILTER_PENDING_AUTHORIZATION, role=Role.FRONT_OFFICE)
        self.assertEqual([row['id'] for row in rows], [self.first.id, self.second.id])
        self.assertEqual(rows[0]['sku'], 'SKU-2')

    def test_filters_split_authorized_and_pending(self) -> None:
        authorize(self.db, unshipped_item_id=self.second.id, authorizing_user_id=self.manager.id)
        authorized = list_outstanding(self.db, filter_name=FILTER_AUTHORIZED)
        pending = list_outstanding(self.db, filter_name=FILTER_PENDING_AUTHORIZATION, role=Role.MANAGER)
        self.assertEqual([row['id'] for row in authorized], [self.second.id])
        self.assertEqual([row['id'] for row in pending], [self.first.id])
        self.assertEqual(len(list_outstanding(self.db, customer_name='ACME')), 2)
        self.assertEqual(list_outstanding(self.db, customer_name='nobody'), [])

    def test_customer_summary_breaks_down_outstanding_items(self) -> None:
        authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)
        self.make_order(1, picked=False)
        self.make_order(2)

        summary = customer_outstanding_summary(self.db, customer_name=' acme deli ')
        self.assertEqual(summary.customer_name, 'acme deli')
        self.assertEqual(summary.unshipped_items_count, 2)
        self.assertEqual(summary.authorized_count, 1)
        self.assertEqual(summary.pending_orders, 2)
        self.assertTrue(summary.has_unshipped_items)
        self.assertTrue(summary.has_authorized_unshipped_items)
        self.assertTrue(summary.has_unauthorized_unshipped_items)

        other = customer_outstanding_summary(self.db, customer_name='Nobody')
        self.assertFalse(other.has_unshipped_items)
        self.assertFalse(other.has_unauthorized_unshipped_items)
        self.assertEqual(other.pending_orders, 0)

        with self.assertRaises(ValidationError):
            customer_outstanding_summary(self.db, customer_name='   ')

    def test_cancelling_partial_order_voids_open_items(self) -> None:
        authorize(self.db, unshipped_item_id=self.first.id, authorizing_user_id=self.manager.id)
        cancel_order(self.db, order_id=self.order.id, actor_id=self.manager.id)

        self.assert_status(self.order, OrderStatus.CANCELLED)
        self.assertTrue(self.reload(self.first).voided)
        with self.assertRaises(ItemVoided):
            authorize(self.db, unshipped_item_id=self.second.id, authorizing_user_id=self.manager.id)
        with self.assertRaises(ItemVoided):
            consume(self.db, unshipped_item_ids=[self.first.id], new_order_id=self.order.id)
        self.assertEqual(list_outstanding(self.db), [])

        statuses = self.db.execute(
            select(OrderItem.shipping_status).where(OrderItem.order_id == self.order.id).order_by(OrderItem.id)
        ).scalars().all()
        self.assertEqual(
            statuses,
            [ItemShippingStatus.SHIPPED, ItemShippingStatus.CANCELLED, ItemShippingStatus.CANCELLED],
        )


if __name__ == '__main__':
    unittest.main()
