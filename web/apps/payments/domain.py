"""Payment domain types, lifecycle rules and ports.

This module is free of ORM and HTTP concerns: it defines the payment
methods and statuses, the allowed status transitions, the value objects
exchanged with provider adapters, and the ``SettlementListener`` port the
orchestrator uses to tell the order workflow about settled payments.
"""

import re
import secrets
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class PaymentMethod(str, Enum):
    TMONEY = "tmoney"
    FLOOZ = "flooz"
    ORANGE_MONEY = "orange_money"
    MTN_MONEY = "mtn_money"
    CASH_ON_DELIVERY = "cash_on_delivery"

    @property
    def is_mobile_money(self) -> bool:
        return self is not PaymentMethod.CASH_ON_DELIVERY


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


TERMINAL_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }
)

# Statuses of a positive payment whose money reached the merchant at some point.
CAPTURED_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
)

_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Return True when ``current -> target`` is a legal forward move."""
    return PaymentStatus(target) in _TRANSITIONS[PaymentStatus(current)]


class ApplyOutcome(str, Enum):
    """Result of applying a provider callback to a payment."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"


PHONE_RE = re.compile(r"^\+?[0-9]{8,15}$")


def normalize_phone(raw: str | None) -> str | None:
    """Strip whitespace from a phone number and validate its shape.

    Returns:
        The normalized number, or None when ``raw`` is empty.

    Raises:
        ValueError: When the number does not look like an MSISDN.
    """
    if not raw:
        return None
    phone = re.sub(r"\s+", "", raw)
    if not PHONE_RE.match(phone):
        raise ValueError("INVALID_PHONE")
    return phone


def new_transaction_reference(prefix: str) -> str:
    """Generate ``<PREFIX>-<epoch ms>-<6 upper-case chars>``."""
    millis = int(time.time() * 1000)
    suffix = secrets.token_hex(3).upper()
    return f"{prefix}-{millis}-{suffix}"


# ---- Value objects exchanged with adapters ----
@dataclass(frozen=True)
class PaymentRequest:
    """Provider-agnostic description of a collection request."""

    transaction_reference: str
    order_id: uuid.UUID
    order_number: str
    amount_minor: int
    currency: str
    phone: str | None
    description: str


@dataclass(frozen=True)
class ProviderInitiation:
    """What a provider returned when the collection request was accepted.

    ``raw`` is the provider's native body, kept verbatim for audit only.
    """

    provider_reference: str | None
    redirect_url: str | None = None
    instructions: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderStatus:
    status: PaymentStatus
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookResult:
    """A provider callback normalized into the generic shape."""

    provider_reference: str
    status: PaymentStatus
    reported_status: str
    amount_minor: int | None = None


@dataclass(frozen=True)
class PaymentInitiation:
    """Returned to callers of ``PaymentOrchestrator.initiate``."""

    payment_id: uuid.UUID
    transaction_reference: str
    provider_reference: str | None
    status: PaymentStatus
    redirect_url: str | None = None
    instructions: str | None = None


# ---- Ports ----
class SettlementListener(Protocol):
    """Port implemented by the order workflow to react to payment outcomes.

    Each callback runs inside the orchestrator's transaction, with the payment
    row already locked and saved.
    """

    def on_payment_completed(self, order_id: uuid.UUID, payment) -> None:
        raise NotImplementedError()

    def on_payment_failed(self, order_id: uuid.UUID, payment) -> None:
        raise NotImplementedError()

    def on_payment_refunded(self, order_id: uuid.UUID, payment, fully_refunded: bool) -> None:
        raise NotImplementedError()
