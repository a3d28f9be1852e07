from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models import OrderStatus, PrintMethod


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OrderLineIn(CamelModel):
    product_id: int
    quantity: int = Field(gt=0)


class CreateOrderIn(CamelModel):
    customer_id: int
    items: list[OrderLineIn] = Field(min_length=1)
    area: str | None = None
    notes: str | None = None
    estimated_shipping_date: datetime | None = None


class ShippedLineIn(CamelModel):
    item_id: int
    quantity: int = Field(ge=0)


class ShipOrderIn(CamelModel):
    items: list[ShippedLineIn] = Field(min_length=1)
    shipment_event_id: str | None = Field(default=None, max_length=64)
    tracking_number: str | None = None
    approve_partial: bool = False


class CancelOrderIn(CamelModel):
    notes: str | None = None


class CompleteShipmentIn(CamelModel):
    order_ids: list[int] = Field(min_length=1)


class AuthorizeManyIn(CamelModel):
    item_ids: list[int] = Field(min_length=1)


class PreviewLabelIn(CamelModel):
    order_id: int
    box_count: int
    current_box: int = 1


class PrintLabelIn(CamelModel):
    order_id: int
    box_count: int
    current_box: int
    method: PrintMethod = PrintMethod.DIRECT


class PrintBatchIn(CamelModel):
    order_id: int
    box_count: int
    method: PrintMethod = PrintMethod.DIRECT


class OrderOut(CamelModel):
    id: int
    order_number: str | None
    customer_id: int | None
    customer_name: str
    order_date: datetime
    estimated_shipping_date: datetime | None
    actual_shipping_date: datetime | None
    status: OrderStatus
    percentage_shipped: Decimal
    area: str | None
    notes: str | None
    tracking_number: str | None
    is_partial_fulfillment: bool
    partial_fulfillment_approved_by_id: int | None
    partial_fulfillment_approved_at: datetime | None
    last_updated: datetime | None


class OrderItemOut(CamelModel):
    id: int
    product_id: int
    sku: str
    product_name: str
    quantity: int
    shipped_quantity: int
    remaining: int
    shipping_status: str


class UnshippedItemOut(CamelModel):
    id: int
    order_id: int
    order_item_id: int
    original_order_number: str
    customer_name: str
    product_id: int
    sku: str
    product_name: str
    quantity: int
    created_at: datetime | None
    authorized: bool
    authorized_by_id: int | None
    authorized_at: datetime | None
    shipped: bool
    notes: str | None
