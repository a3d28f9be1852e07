import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.db import SessionLocal, init_db
from app.models import Customer, Order, Principal, PrincipalRole, Product, WebSession
from app.services.order_service import OrderLine, create_order, mark_picked

DEMO_USERS = [
    ('admin', PrincipalRole.ADMIN),
    ('manager', PrincipalRole.MANAGER),
    ('frontoffice', PrincipalRole.FRONT_OFFICE),
    ('warehouse', PrincipalRole.WAREHOUSE),
]

DEMO_PRODUCTS = [
    ('OIL-EV-500', 'Extra virgin olive oil 500ml'),
    ('OIL-EV-1000', 'Extra virgin olive oil 1L'),
    ('OIL-EV-5000', 'Extra virgin olive oil 5L tin'),
]


def seed() -> dict[str, str]:
    init_db()
    tokens: dict[str, str] = {}
    with SessionLocal() as db:
        principals: dict[str, Principal] = {}
        for username, role in DEMO_USERS:
            principal = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
            if not principal:
                principal = Principal(username=username, role=role, active=True)
                db.add(principal)
                db.flush()
            principals[username] = principal

            token = secrets.token_urlsafe(32)
            db.add(
                WebSession(
                    session_token=token,
                    principal_id=principal.id,
                    expires_at=datetime.now(tz=timezone.utc) + timedelta(days=7),
                )
            )
            tokens[username] = token

        customer = db.execute(select(Customer).where(Customer.name == 'Demo Deli')).scalar_one_or_none()
        if not customer:
            customer = Customer(
                name='Demo Deli',
                address='12 Harbour Street',
                city='Piraeus',
                postal_code='18531',
                phone='+30 210 000 0000',
                preferred_shipping_company='Coastal Freight',
            )
            db.add(customer)
            db.flush()

        products = []
        for sku, name in DEMO_PRODUCTS:
            product = db.execute(select(Product).where(Product.sku == sku)).scalar_one_or_none()
            if not product:
                product = Product(sku=sku, name=name)
                db.add(product)
                db.flush()
            products.append(product)

        order = db.execute(
            select(Order).where(Order.customer_id == customer.id).order_by(Order.id.asc()).limit(1)
        ).scalar_one_or_none()
        if not order:
            order, _ = create_order(
                db,
                customer_id=customer.id,
                lines=[OrderLine(product_id=products[0].id, quantity=10), OrderLine(product_id=products[1].id, quantity=5)],
                actor_id=principals['frontoffice'].id,
                area='North',
            )
            mark_picked(db, order_id=order.id, actor_id=principals['warehouse'].id)
        db.commit()
        tokens['order'] = order.order_number
    return tokens


if __name__ == '__main__':
    seeded = seed()
    for key, value in seeded.items():
        print(f'{key}: {value}')
    print('Seed data inserted/verified.')
