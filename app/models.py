from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


def _values(enum_cls):
    return [member.value for member in enum_cls]


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    FRONT_OFFICE = 'FRONT_OFFICE'
    WAREHOUSE = 'WAREHOUSE'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    PICKED = 'picked'
    PARTIALLY_SHIPPED = 'partially_shipped'
    SHIPPED = 'shipped'
    CANCELLED = 'cancelled'


class ItemShippingStatus(str, Enum):
    PENDING = 'pending'
    PARTIAL = 'partial'
    SHIPPED = 'shipped'
    CANCELLED = 'cancelled'


class PrintMethod(str, Enum):
    DIRECT = 'direct'
    BROWSER = 'browser'


class ChangelogAction(str, Enum):
    CREATE = 'create'
    STATUS_CHANGE = 'status_change'
    PARTIAL_APPROVAL = 'partial_approval'
    UNSHIPPED_AUTHORIZATION = 'unshipped_authorization'
    LABEL_PRINTED = 'label_printed'
    SHIPMENT_COMPLETED = 'shipment_completed'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(Text)
    state: Mapped[str | None] = mapped_column(Text)
    postal_code: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    shipping_company: Mapped[str | None] = mapped_column(Text)
    preferred_shipping_company: Mapped[str | None] = mapped_column(Text)
    billing_company: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        CheckConstraint('percentage_shipped >= 0 AND percentage_shipped <= 100', name='orders_percentage_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str | None] = mapped_column(String(32), unique=True)
    customer_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('customers.id'))
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    estimated_shipping_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_shipping_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status', values_callable=_values),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default=OrderStatus.PENDING.value,
    )
    percentage_shipped: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal('0.00'), server_default='0'
    )
    area: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    tracking_number: Mapped[str | None] = mapped_column(Text)
    last_shipment_event_id: Mapped[str | None] = mapped_column(String(64))
    is_partial_fulfillment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    partial_fulfillment_approved_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    partial_fulfillment_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    updated_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list[OrderItem]] = relationship(back_populates='order', order_by='OrderItem.id')


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='order_items_quantity_positive_ck'),
        CheckConstraint(
            'shipped_quantity >= 0 AND shipped_quantity <= quantity',
            name='order_items_shipped_bounds_ck',
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    shipped_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    shipping_status: Mapped[ItemShippingStatus] = mapped_column(
        SQLEnum(ItemShippingStatus, name='item_shipping_status', values_callable=_values),
        nullable=False,
        default=ItemShippingStatus.PENDING,
        server_default=ItemShippingStatus.PENDING.value,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')

    order: Mapped[Order] = relationship(back_populates='items')


class UnshippedItem(Base):
    __tablename__ = 'unshipped_items'
    __table_args__ = (
        UniqueConstraint('order_item_id', 'shipment_event_id', name='unshipped_items_item_event_key'),
        CheckConstraint('quantity > 0', name='unshipped_items_quantity_positive_ck'),
        CheckConstraint('NOT shipped OR authorized', name='unshipped_items_shipped_requires_auth_ck'),
        Index('unshipped_items_open_idx', 'order_id', 'shipped'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False)
    order_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('order_items.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    original_order_number: Mapped[str] = mapped_column(String(32), nullable=False)
    shipment_event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    authorized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    authorized_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    authorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    shipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    shipped_in_order_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('orders.id'))
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)


class LabelPrintLog(Base):
    __tablename__ = 'label_print_log'
    __table_args__ = (
        CheckConstraint('box_number >= 1 AND box_number <= box_count', name='label_print_log_box_range_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    box_number: Mapped[int] = mapped_column(Integer, nullable=False)
    box_count: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[PrintMethod] = mapped_column(
        SQLEnum(PrintMethod, name='print_method', values_callable=_values), nullable=False
    )
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    printed_by_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    printed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderChangelog(Base):
    __tablename__ = 'order_changelogs'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    action: Mapped[ChangelogAction] = mapped_column(
        SQLEnum(ChangelogAction, name='changelog_action', values_callable=_values), nullable=False
    )
    changes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    previous_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
