"""Pydantic schemas for the payments API."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class InitiatePaymentDTO(BaseModel):
    order_id: UUID
    payment_method: str = Field(min_length=2, max_length=32)
    amount_minor: int = Field(ge=0)
    phone: Optional[str] = Field(default=None, max_length=32)


class RefundDTO(BaseModel):
    """``amount_minor`` omitted means "refund everything that is left"."""

    amount_minor: Optional[int] = None
    reason: str = Field(default="", max_length=500)


class MethodsQuery(BaseModel):
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    amount: Optional[int] = Field(default=None, ge=0)

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class PaymentReadDTO(BaseModel):
    id: UUID
    order_id: UUID
    transaction_reference: str
    provider_reference: Optional[str] = None
    method: str
    status: str
    amount_minor: int
    currency: str
    refund_of: Optional[UUID] = None
    initiated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, payment) -> "PaymentReadDTO":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            transaction_reference=payment.transaction_reference,
            provider_reference=payment.provider_reference,
            method=payment.method,
            status=payment.status,
            amount_minor=payment.amount_minor,
            currency=payment.currency,
            refund_of=payment.refund_of_id,
            initiated_at=payment.initiated_at,
            completed_at=payment.completed_at,
        )


class PaymentInitiationDTO(BaseModel):
    payment_id: UUID
    transaction_reference: str
    provider_reference: Optional[str] = None
    status: str
    redirect_url: Optional[str] = None
    instructions: Optional[str] = None

    @classmethod
    def from_domain(cls, initiation) -> "PaymentInitiationDTO":
        return cls(
            payment_id=initiation.payment_id,
            transaction_reference=initiation.transaction_reference,
            provider_reference=initiation.provider_reference,
            status=initiation.status.value,
            redirect_url=initiation.redirect_url,
            instructions=initiation.instructions,
        )
