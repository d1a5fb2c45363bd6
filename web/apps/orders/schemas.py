"""Pydantic schemas for orders.

Request DTOs validate and normalize incoming payloads before the workflow
sees them; read DTOs shape the API responses.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from apps.payments.schemas import PaymentInitiationDTO, PaymentReadDTO

from .domain import Address, LineRequest


class AddressIn(BaseModel):
    """Structured address.

    Attributes:
        country: ISO 3166 alpha-2 code, normalized to upper case.
        latitude, longitude: Optional delivery coordinates.
    """

    line1: str = Field(min_length=1, max_length=255)
    line2: str = Field(default="", max_length=255)
    city: str = Field(min_length=1, max_length=100)
    region: str = Field(default="", max_length=100)
    postal_code: str = Field(default="", max_length=20)
    country: str = Field(min_length=2, max_length=2)
    phone: str = Field(default="", max_length=32)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        v2 = v.upper()
        if not v2.isalpha():
            raise ValueError("Country must be a two-letter ISO code")
        return v2

    def to_domain(self) -> Address:
        return Address(**self.model_dump())


class OrderLineIn(BaseModel):
    product_id: UUID
    quantity: int = Field(gt=0, le=1000)
    variant_name: str = Field(default="", max_length=128)

    def to_domain(self) -> LineRequest:
        return LineRequest(product_id=self.product_id, quantity=self.quantity, variant_name=self.variant_name)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    An empty ``items`` list passes validation on purpose; the workflow
    rejects it with ``EMPTY_ORDER``.
    """

    items: list[OrderLineIn] = Field(max_length=100)
    delivery_address: AddressIn
    billing_address: Optional[AddressIn] = None
    payment_method: str = Field(min_length=2, max_length=32)
    phone: Optional[str] = Field(default=None, max_length=32)
    coupon_code: Optional[str] = Field(default=None, max_length=64)
    customer_notes: str = Field(default="", max_length=1000)


class UpdateStatusDTO(BaseModel):
    status: str = Field(min_length=1, max_length=32)
    tracking_number: Optional[str] = Field(default=None, max_length=128)
    carrier: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CancelDTO(BaseModel):
    reason: str = Field(default="", max_length=500)


class OrderLineOut(BaseModel):
    product_id: UUID
    sku: str
    product_name: str
    variant_name: str
    unit_price_minor: int
    quantity: int
    line_total_minor: int
    status: str


class OrderReadDTO(BaseModel):
    id: UUID
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    customer_id: UUID
    store_id: UUID
    subtotal_minor: int
    shipping_minor: int
    discount_minor: int
    fee_minor: int
    total_minor: int
    currency: str
    coupon_code: str = ""
    delivery_address: dict
    tracking_number: str = ""
    carrier: str = ""
    created_at: datetime
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    lines: Optional[list[OrderLineOut]] = None
    payments: Optional[list[PaymentReadDTO]] = None

    @classmethod
    def from_model(cls, order, detail: bool = False) -> "OrderReadDTO":
        data = {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "customer_id": order.customer_id,
            "store_id": order.store_id,
            "subtotal_minor": order.subtotal_minor,
            "shipping_minor": order.shipping_minor,
            "discount_minor": order.discount_minor,
            "fee_minor": order.fee_minor,
            "total_minor": order.total_minor,
            "currency": order.currency,
            "coupon_code": order.coupon_code,
            "delivery_address": order.delivery_address,
            "tracking_number": order.tracking_number,
            "carrier": order.carrier,
            "created_at": order.created_at,
            "paid_at": order.paid_at,
            "delivered_at": order.delivered_at,
            "cancelled_at": order.cancelled_at,
        }
        if detail:
            data["lines"] = [
                OrderLineOut(
                    product_id=line.product_id,
                    sku=line.sku,
                    product_name=line.product_name,
                    variant_name=line.variant_name,
                    unit_price_minor=line.unit_price_minor,
                    quantity=line.quantity,
                    line_total_minor=line.line_total_minor,
                    status=line.status,
                )
                for line in order.lines.all()
            ]
            data["payments"] = [PaymentReadDTO.from_model(p) for p in order.payments.all()]
        return cls.model_validate(data)


class PlacedOrderDTO(BaseModel):
    order: OrderReadDTO
    payment: Optional[PaymentInitiationDTO] = None
