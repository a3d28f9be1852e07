from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy import select

from app.exceptions import ConflictError, ValidationError
from app.models import ItemShippingStatus, OrderItem
from app.services import ledger_store
from app.services.ledger_store import adjust_shipped_quantity, fill_shipped_quantity, read_item
from tests.support import DatabaseTestCase


class LedgerStoreTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.order = self.make_order(10, 5)
        self.item_a, self.item_b = self.db.execute(
            select(OrderItem).where(OrderItem.order_id == self.order.id).order_by(OrderItem.id.asc())
        ).scalars().all()

    def test_adjust_increments_quantity_and_version(self) -> None:
        snapshot = adjust_shipped_quantity(self.db, self.item_a.id, 4)
        self.assertEqual(snapshot.shipped_quantity, 4)
        self.assertEqual(snapshot.version, 2)

        stored = self.reload(self.item_a)
        self.assertEqual(stored.shipped_quantity, 4)
        self.assertEqual(stored.version, 2)
        self.assertEqual(stored.shipping_status, ItemShippingStatus.PARTIAL)

    def test_adjust_above_ordered_quantity_writes_nothing(self) -> None:
        adjust_shipped_quantity(self.db, self.item_b.id, 3)
        with self.assertRaises(ValidationError):
            adjust_shipped_quantity(self.db, self.item_b.id, 3)
        stored = read_item(self.db, self.item_b.id)
        self.assertEqual(stored.shipped_quantity, 3)
        self.assertEqual(stored.version, 2)

    def test_negative_adjustment_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            adjust_shipped_quantity(self.db, self.item_a.id, -1)

    def test_fill_ships_the_remaining_quantity(self) -> None:
        adjust_shipped_quantity(self.db, self.item_b.id, 2)
        snapshot = fill_shipped_quantity(self.db, self.item_b.id)
        self.assertEqual(snapshot.shipped_quantity, 5)
        self.assertEqual(snapshot.remaining, 0)
        self.assertEqual(self.reload(self.item_b).shipping_status, ItemShippingStatus.SHIPPED)

    def test_fill_on_a_shipped_item_does_not_write(self) -> None:
        fill_shipped_quantity(self.db, self.item_b.id)
        with patch('app.services.ledger_store._write_shipped_quantity') as write_mock:
            snapshot = fill_shipped_quantity(self.db, self.item_b.id)
        write_mock.assert_not_called()
        self.assertEqual(snapshot.shipped_quantity, 5)

    def test_lost_race_retries_with_fresh_read(self) -> None:
        real_write = ledger_store._write_shipped_quantity
        calls = []

        def _lose_first(db, *, snapshot, shipped_quantity):
            calls.append(snapshot.shipped_quantity)
            if len(calls) == 1:
                # Another writer ships 2 units between our read and write.
                real_write(db, snapshot=snapshot, shipped_quantity=2)
                return False
            return real_write(db, snapshot=snapshot, shipped_quantity=shipped_quantity)

        with patch('app.services.ledger_store._write_shipped_quantity', side_effect=_lose_first):
            snapshot = adjust_shipped_quantity(self.db, self.item_a.id, 3)

        self.assertEqual(calls, [0, 2])
        self.assertEqual(snapshot.shipped_quantity, 5)
        self.assertEqual(read_item(self.db, self.item_a.id).shipped_quantity, 5)

    def test_conflict_after_bounded_attempts(self) -> None:
        with patch('app.services.ledger_store._write_shipped_quantity', return_value=False) as write_mock:
            with self.assertRaises(ConflictError):
                adjust_shipped_quantity(self.db, self.item_a.id, 1, max_attempts=3)
        self.assertEqual(write_mock.call_count, 3)
        self.assertEqual(read_item(self.db, self.item_a.id).shipped_quantity, 0)


if __name__ == '__main__':
    unittest.main()
