from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.auth import Role
from app.db import build_engine, build_session_factory, init_db
from app.models import Customer, Order, OrderItem, OrderStatus, Principal, PrincipalRole, Product, WebSession
from app.services.order_service import OrderLine, create_order, mark_picked, record_shipment


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite://')
        init_db(self.engine)
        self.db = build_session_factory(self.engine)()

        self.admin = self._principal('admin', PrincipalRole.ADMIN)
        self.manager = self._principal('manager', PrincipalRole.MANAGER)
        self.front_office = self._principal('frontoffice', PrincipalRole.FRONT_OFFICE)
        self.warehouse = self._principal('warehouse', PrincipalRole.WAREHOUSE)

        self.customer = Customer(
            name='Acme Deli',
            address='1 Main Street',
            city='Springfield',
            postal_code='12345',
            phone='555-0100',
            preferred_shipping_company='Coastal Freight',
        )
        self.db.add(self.customer)
        self.products = [Product(sku=f'SKU-{index}', name=f'Product {index}') for index in range(1, 4)]
        self.db.add_all(self.products)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _principal(self, username: str, role: PrincipalRole) -> Principal:
        principal = Principal(username=username, role=role, active=True)
        self.db.add(principal)
        self.db.flush()
        return principal

    def session_token(self, principal: Principal) -> str:
        token = f'token-{principal.username}'
        self.db.add(
            WebSession(
                session_token=token,
                principal_id=principal.id,
                expires_at=datetime.now(tz=timezone.utc) + timedelta(hours=1),
            )
        )
        self.db.commit()
        return token

    def make_order(self, *quantities: int, picked: bool = True, area: str | None = 'North') -> Order:
        order, _ = create_order(
            self.db,
            customer_id=self.customer.id,
            lines=[
                OrderLine(product_id=self.products[index].id, quantity=quantity)
                for index, quantity in enumerate(quantities)
            ],
            actor_id=self.front_office.id,
            area=area,
        )
        if picked:
            mark_picked(self.db, order_id=order.id, actor_id=self.warehouse.id)
        self.db.commit()
        return order

    def ship(self, order: Order, quantities: list[int], *, shipment_event_id: str | None = None):
        items = self.db.execute(
            select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id.asc())
        ).scalars().all()
        result = record_shipment(
            self.db,
            order_id=order.id,
            shipped_quantities={item.id: quantity for item, quantity in zip(items, quantities)},
            actor_id=self.manager.id,
            actor_role=Role.MANAGER,
            approve_partial=True,
            shipment_event_id=shipment_event_id,
        )
        self.db.commit()
        return result

    def reload(self, instance):
        self.db.refresh(instance)
        return instance

    def assert_status(self, order: Order, status: OrderStatus) -> None:
        self.assertEqual(self.reload(order).status, status)
