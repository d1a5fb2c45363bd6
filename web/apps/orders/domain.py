"""Order lifecycle, value objects and the ports the workflow depends on.

This module has no ORM or HTTP code. It defines the order and line
statuses, the forward-only transition rule, the structured address and
pricing records, and the ``InventoryPort``/``PaymentsPort`` protocols the
``OrderWorkflow`` is wired with.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Iterable, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Order lifecycle.

    The happy path is ``pending -> paid -> confirmed -> processing ->
    shipped -> delivered``. ``cancelled``, ``refunded`` and ``returned`` are
    exits reachable from any state that is not terminal yet.
    """

    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    RETURNED = "returned"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class LineStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


FORWARD_SEQUENCE = (
    OrderStatus.PENDING,
    OrderStatus.PAID,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
EXIT_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.RETURNED})
TERMINAL_STATUSES = EXIT_STATUSES | {OrderStatus.DELIVERED}
CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.CONFIRMED})

_RANK = {status: i for i, status in enumerate(FORWARD_SEQUENCE)}

# Line status mirrored from the order status after a transition.
LINE_STATUS_FOR = {
    OrderStatus.CONFIRMED: LineStatus.CONFIRMED,
    OrderStatus.PROCESSING: LineStatus.CONFIRMED,
    OrderStatus.SHIPPED: LineStatus.SHIPPED,
    OrderStatus.DELIVERED: LineStatus.DELIVERED,
    OrderStatus.CANCELLED: LineStatus.CANCELLED,
    OrderStatus.REFUNDED: LineStatus.CANCELLED,
    OrderStatus.RETURNED: LineStatus.RETURNED,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True when ``current -> target`` is a legal move.

    Nothing leaves a terminal state. Exit states are reachable from any
    non-terminal state; otherwise the target must come later in
    ``FORWARD_SEQUENCE``.
    """
    current, target = OrderStatus(current), OrderStatus(target)
    if current in TERMINAL_STATUSES:
        return False
    if target in EXIT_STATUSES:
        return True
    return _RANK[target] > _RANK[current]


# ---- Value objects ----
@dataclass(frozen=True)
class Address:
    """Structured delivery or billing address, snapshotted onto the order."""

    line1: str
    city: str
    country: str
    region: str = ""
    postal_code: str = ""
    phone: str = ""
    line2: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LineRequest:
    product_id: uuid.UUID
    quantity: int
    variant_name: str = ""


@dataclass(frozen=True)
class PricedLine:
    product_id: uuid.UUID
    sku: str
    product_name: str
    variant_name: str
    unit_price_minor: int
    quantity: int

    @property
    def line_total_minor(self) -> int:
        return self.unit_price_minor * self.quantity


@dataclass(frozen=True)
class PriceBreakdown:
    """All order amounts in minor units.

    ``total_minor`` is derived, so ``total = subtotal + shipping - discount
    + fee`` holds by construction.
    """

    subtotal_minor: int
    shipping_minor: int
    discount_minor: int
    fee_minor: int
    currency: str
    coupon_code: str = ""
    lines: tuple[PricedLine, ...] = field(default_factory=tuple)

    @property
    def total_minor(self) -> int:
        return self.subtotal_minor + self.shipping_minor - self.discount_minor + self.fee_minor


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Stock operations the workflow needs; each takes ``(product_id, qty)`` pairs."""

    def reserve(self, lines: Iterable[tuple[uuid.UUID, int]]) -> None:
        """Reserve every line or raise ``InsufficientStock`` leaving nothing reserved."""
        raise NotImplementedError()

    def release(self, lines: Iterable[tuple[uuid.UUID, int]]) -> None:
        raise NotImplementedError()

    def commit(self, lines: Iterable[tuple[uuid.UUID, int]]) -> None:
        raise NotImplementedError()


class PaymentsPort(Protocol):
    """Payment operations the workflow needs from the orchestrator."""

    def initiate(self, order_id: uuid.UUID, method: str, amount_minor: int, phone: Optional[str] = None):
        """Start a collection; raise ``ProviderUnavailable`` when the provider fails."""
        raise NotImplementedError()

    def refund(self, payment_id: uuid.UUID, amount_minor: Optional[int] = None, reason: str = ""):
        raise NotImplementedError()

    def record_cash_collection(self, order_id: uuid.UUID, amount_minor: int):
        raise NotImplementedError()

    def net_captured(self, order_id: uuid.UUID) -> int:
        raise NotImplementedError()

    def captured_payments(self, order_id: uuid.UUID) -> list:
        raise NotImplementedError()
