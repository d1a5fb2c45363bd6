"""Inventory ledger: reservations, releases and commits of product stock.

All mutations run inside a transaction and use conditional ``UPDATE``
statements (``... WHERE on_hand >= reserved + qty``) on rows that were first
read with ``SELECT ... FOR UPDATE``. Two orders competing for the last unit
therefore serialize on the row lock, and the second one sees the updated
counters and fails with ``INSUFFICIENT_STOCK``. Rows are locked in primary
key order so concurrent multi-line orders cannot deadlock each other.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from django.db import transaction
from django.db.models import F

from apps.common.errors import InsufficientStock, InvariantViolation, ValidationFailed

from .models import InventoryRecord, Product

logger = logging.getLogger("inventory")

StockLine = tuple[uuid.UUID, int]


@dataclass(frozen=True)
class StockLevel:
    product_id: uuid.UUID
    on_hand: int
    reserved: int

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


def _aggregate(lines: Iterable[StockLine]) -> dict[uuid.UUID, int]:
    """Sum quantities per product so repeated lines lock and update a row once."""
    totals: dict[uuid.UUID, int] = defaultdict(int)
    for product_id, quantity in lines:
        if quantity <= 0:
            raise ValidationFailed("INVALID_QUANTITY", f"Quantity must be positive, got {quantity}")
        totals[product_id] += quantity
    return dict(sorted(totals.items()))


def _sku(product_id: uuid.UUID) -> str:
    return Product.objects.filter(pk=product_id).values_list("sku", flat=True).first() or str(product_id)


class InventoryLedger:
    """Implements the inventory port used by the order workflow."""

    @transaction.atomic
    def reserve(self, lines: Iterable[StockLine]) -> None:
        """Reserve every line or none of them.

        Args:
            lines: ``(product_id, quantity)`` pairs.

        Raises:
            InsufficientStock: When any product lacks available stock. The
                enclosing transaction is rolled back so no partial
                reservation survives.
        """
        wanted = _aggregate(lines)
        if not wanted:
            return

        rows = (
            InventoryRecord.objects.select_for_update()
            .filter(product_id__in=list(wanted))
            .order_by("product_id")
        )
        current = {r.product_id: r for r in rows}
        for product_id, qty in wanted.items():
            rec = current.get(product_id)
            available = rec.available if rec else 0
            if available < qty:
                logger.info(
                    "reservation rejected",
                    extra={"product_id": str(product_id), "available": available, "requested": qty},
                )
                raise InsufficientStock(_sku(product_id), available, qty)

        for product_id, qty in wanted.items():
            updated = InventoryRecord.objects.filter(
                product_id=product_id, on_hand__gte=F("reserved") + qty
            ).update(reserved=F("reserved") + qty)
            if updated != 1:
                # Only reachable on backends without row locks (SQLite).
                raise InsufficientStock(_sku(product_id), 0, qty)

        logger.info("stock reserved", extra={"products": len(wanted)})

    @transaction.atomic
    def release(self, lines: Iterable[StockLine]) -> None:
        """Give reserved units back to ``available`` (cancellation, return, refund)."""
        for product_id, qty in _aggregate(lines).items():
            updated = InventoryRecord.objects.filter(
                product_id=product_id, reserved__gte=qty
            ).update(reserved=F("reserved") - qty)
            if updated != 1:
                raise InvariantViolation(
                    "RESERVATION_UNDERFLOW", f"Cannot release {qty} units of {product_id}"
                )
        logger.info("stock released")

    @transaction.atomic
    def commit(self, lines: Iterable[StockLine]) -> None:
        """Turn reservations into a permanent stock decrement (delivery)."""
        for product_id, qty in _aggregate(lines).items():
            updated = InventoryRecord.objects.filter(
                product_id=product_id, reserved__gte=qty, on_hand__gte=qty
            ).update(on_hand=F("on_hand") - qty, reserved=F("reserved") - qty)
            if updated != 1:
                raise InvariantViolation(
                    "COMMIT_WITHOUT_RESERVATION", f"Cannot commit {qty} units of {product_id}"
                )
        logger.info("stock committed")

    @transaction.atomic
    def receive(self, product_id: uuid.UUID, quantity: int) -> StockLevel:
        """Add received units to ``on_hand``, creating the record if needed."""
        if quantity <= 0:
            raise ValidationFailed("INVALID_QUANTITY", f"Quantity must be positive, got {quantity}")
        InventoryRecord.objects.get_or_create(product_id=product_id)
        InventoryRecord.objects.filter(product_id=product_id).update(on_hand=F("on_hand") + quantity)
        return self.level(product_id)

    def level(self, product_id: uuid.UUID) -> StockLevel:
        rec = InventoryRecord.objects.filter(product_id=product_id).first()
        if rec is None:
            return StockLevel(product_id=product_id, on_hand=0, reserved=0)
        return StockLevel(product_id=product_id, on_hand=rec.on_hand, reserved=rec.reserved)
