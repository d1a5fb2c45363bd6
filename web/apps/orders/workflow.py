"""Order workflow: creation, cancellation, fulfilment and settlement.

The workflow owns every order state change. It reaches inventory and
payments only through the ``InventoryPort`` and ``PaymentsPort`` it was
built with, and implements the ``SettlementListener`` the payment
orchestrator calls back into once a payment settles.

Every state change locks the order row first and re-checks the current
state inside the transaction, so concurrent webhooks, cancellations and
status updates serialize on that row. Transitions out of terminal states
are rejected or ignored; money that arrives for a closed order is
refunded instead of reopening it.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from django.core.paginator import Page, Paginator
from django.db import transaction
from django.utils import timezone

from apps.common.actors import Actor
from apps.common.errors import Conflict, DomainError, Forbidden, NotFound, ValidationFailed
from apps.inventory.catalog import ProductCatalog
from apps.payments.domain import PaymentInitiation, PaymentMethod, normalize_phone

from .domain import (
    CANCELLABLE_STATUSES,
    EXIT_STATUSES,
    LINE_STATUS_FOR,
    TERMINAL_STATUSES,
    Address,
    InventoryPort,
    LineRequest,
    LineStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentsPort,
    PricedLine,
    can_transition,
)
from .models import OrderModel
from .pricing import OrderPricing
from .repository import OrderRepository

logger = logging.getLogger("orders")

# Targets a vendor or operator may request through ``update_status``.
SETTABLE_STATUSES = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
        OrderStatus.CANCELLED,
    }
)
_FULFILMENT_STATUSES = frozenset(
    {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
)


@dataclass
class PlacedOrder:
    order: OrderModel
    payment: Optional[PaymentInitiation] = None


def _append_note(existing: str, note: str) -> str:
    note = (note or "").strip()
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


class OrderWorkflow:
    """Coordinates orders with inventory and payments.

    Args:
        inventory: Stock reservation port.
        payments: Payment port (the orchestrator in production).
        catalog: Read access to active products.
        pricing: Order pricing against shipping policy and provider fees.
        repository: Persistence for orders; a default one is created when omitted.
    """

    def __init__(
        self,
        inventory: InventoryPort,
        payments: PaymentsPort,
        catalog: ProductCatalog,
        pricing: OrderPricing,
        repository: Optional[OrderRepository] = None,
    ):
        self.inventory = inventory
        self.payments = payments
        self.catalog = catalog
        self.pricing = pricing
        self.repository = repository or OrderRepository()

    # ---- creation ----
    def create_order(
        self,
        customer_id: uuid.UUID,
        lines: Sequence[LineRequest],
        delivery_address: Address,
        payment_method: str,
        *,
        phone: Optional[str] = None,
        coupon_code: Optional[str] = None,
        billing_address: Optional[Address] = None,
        customer_notes: str = "",
    ) -> PlacedOrder:
        """Reserve stock, price and persist an order, then start its payment.

        Reservation and persistence share one transaction. The provider is
        called after that transaction commits; if it fails, the order is
        cancelled and its stock released in a second transaction before the
        error propagates.

        Raises:
            ValidationFailed: ``EMPTY_ORDER``, ``MULTIPLE_STORES``,
                ``PHONE_REQUIRED``, ``INVALID_PHONE``, ``INVALID_COUPON`` or
                ``PAYMENT_METHOD_UNAVAILABLE``.
            NotFound: ``PRODUCT_NOT_FOUND``.
            InsufficientStock: Nothing was reserved or written.
            ProviderUnavailable: The order exists in ``cancelled``.
        """
        if not lines:
            raise ValidationFailed("EMPTY_ORDER", "An order needs at least one line")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationFailed(
                "PAYMENT_METHOD_UNAVAILABLE", f"Unknown payment method {payment_method!r}"
            ) from None
        try:
            phone = normalize_phone(phone or delivery_address.phone)
        except ValueError:
            raise ValidationFailed("INVALID_PHONE", "Phone number must have 8 to 15 digits") from None
        if method.is_mobile_money and not phone:
            raise ValidationFailed("PHONE_REQUIRED", "Mobile money payments need a phone number")

        products = self.catalog.active_products(line.product_id for line in lines)
        for line in lines:
            if line.product_id not in products:
                raise NotFound("PRODUCT_NOT_FOUND", f"Product {line.product_id} is not available")
        stores = {products[line.product_id].store_id for line in lines}
        if len(stores) > 1:
            raise ValidationFailed("MULTIPLE_STORES", "All items of an order must come from the same store")

        priced = [
            PricedLine(
                product_id=line.product_id,
                sku=products[line.product_id].sku,
                product_name=products[line.product_id].name,
                variant_name=line.variant_name,
                unit_price_minor=products[line.product_id].price_minor,
                quantity=line.quantity,
            )
            for line in lines
        ]

        with transaction.atomic():
            breakdown = self.pricing.price(
                priced,
                country=delivery_address.country,
                requires_shipping=any(products[line.product_id].requires_shipping for line in lines),
                payment_method=method.value,
                coupon_code=coupon_code,
            )
            self.inventory.reserve([(line.product_id, line.quantity) for line in priced])
            order = self.repository.create(
                customer_id=customer_id,
                store_id=stores.pop(),
                breakdown=breakdown,
                payment_method=method.value,
                delivery_address=delivery_address,
                billing_address=billing_address,
                customer_phone=phone or "",
                customer_notes=customer_notes,
            )

        logger.info(
            "order created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "total_minor": order.total_minor,
                "payment_method": method.value,
            },
        )
        if not method.is_mobile_money:
            return PlacedOrder(order=order)

        try:
            initiation = self.payments.initiate(order.id, method.value, order.total_minor, phone)
        except DomainError as exc:
            self._abort_unpaid(order.id, exc.code)
            raise
        order.refresh_from_db()
        return PlacedOrder(order=order, payment=initiation)

    @transaction.atomic
    def _abort_unpaid(self, order_id: uuid.UUID, code: str) -> None:
        order = self.repository.lock(order_id)
        if order.status != OrderStatus.PENDING.value:
            return
        self.inventory.release(order.stock_lines())
        order.status = OrderStatus.CANCELLED.value
        order.payment_status = OrderPaymentStatus.FAILED.value
        order.cancelled_at = timezone.now()
        order.admin_notes = _append_note(order.admin_notes, f"Payment initiation failed: {code}")
        order.save()
        self.repository.set_line_status(order, LineStatus.CANCELLED)
        logger.warning(
            "order cancelled after payment initiation failure",
            extra={"order_id": str(order_id), "code": code},
        )

    # ---- cancellation and fulfilment ----
    @transaction.atomic
    def cancel_order(self, order_id: uuid.UUID, actor: Actor, reason: str = "") -> OrderModel:
        """Cancel an order, release its stock and refund what was captured.

        Cancelling an already cancelled order returns it unchanged.

        Raises:
            Forbidden: The actor is neither the customer, a vendor of the
                store, nor an operator.
            Conflict: ``ORDER_NOT_CANCELLABLE`` past ``confirmed``.
        """
        order = self.repository.lock(order_id)
        if not actor.can_view_order(order.customer_id, order.store_id):
            raise Forbidden("FORBIDDEN", "You cannot cancel this order")

        current = OrderStatus(order.status)
        if current is OrderStatus.CANCELLED:
            return order
        if current not in CANCELLABLE_STATUSES:
            raise Conflict("ORDER_NOT_CANCELLABLE", f"Order is {current.value}")

        # Partially refunded orders still hold money
        holds_funds = self.payments.net_captured(order.id) > 0
        self.inventory.release(order.stock_lines())
        order.status = OrderStatus.CANCELLED.value
        order.cancelled_at = timezone.now()
        order.admin_notes = _append_note(order.admin_notes, f"Cancelled: {reason}" if reason else "")
        order.save()
        self.repository.set_line_status(order, LineStatus.CANCELLED)

        if holds_funds:
            for payment in self.payments.captured_payments(order.id):
                self.payments.refund(payment.pk, None, reason=f"Order cancelled: {reason}".strip())
            order.refresh_from_db()

        logger.info(
            "order cancelled",
            extra={"order_id": str(order.id), "actor_id": str(actor.id), "refunded": holds_funds},
        )
        return order

    def update_status(
        self,
        order_id: uuid.UUID,
        new_status: str,
        actor: Actor,
        *,
        tracking_number: Optional[str] = None,
        carrier: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderModel:
        """Move an order along its fulfilment path.

        Raises:
            ValidationFailed: ``INVALID_STATUS`` for unknown or non-settable targets.
            Forbidden: The actor does not manage the order's store.
            Conflict: ``ILLEGAL_TRANSITION`` or ``ORDER_NOT_PAID``.
        """
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationFailed("INVALID_STATUS", f"Unknown status {new_status!r}") from None
        if target not in SETTABLE_STATUSES:
            raise ValidationFailed("INVALID_STATUS", f"Status {target.value} cannot be set directly")

        with transaction.atomic():
            order = self.repository.lock(order_id)
            if not actor.can_fulfil_order(order.store_id):
                raise Forbidden("FORBIDDEN", "Only the store's vendors or operators can update this order")
            if target is OrderStatus.CANCELLED:
                return self.cancel_order(order_id, actor, notes or "")

            current = OrderStatus(order.status)
            if current is target:
                return order
            if not can_transition(current, target):
                raise Conflict("ILLEGAL_TRANSITION", f"Cannot move order from {current.value} to {target.value}")
            if (
                target in _FULFILMENT_STATUSES
                and not order.is_cash_on_delivery
                and order.payment_status != OrderPaymentStatus.PAID.value
            ):
                raise Conflict("ORDER_NOT_PAID", "The order has not been paid")

            now = timezone.now()
            if target is OrderStatus.DELIVERED:
                lines = list(order.lines.all())
                self.inventory.commit([(line.product_id, line.quantity) for line in lines])
                self.catalog.record_sales(
                    [(line.product_id, line.quantity, line.line_total_minor) for line in lines]
                )
                order.delivered_at = now
                if order.is_cash_on_delivery and order.payment_status != OrderPaymentStatus.PAID.value:
                    self.payments.record_cash_collection(order.id, order.total_minor)
                    order.payment_status = OrderPaymentStatus.PAID.value
                    order.paid_at = now
            elif target is OrderStatus.RETURNED:
                self.inventory.release(order.stock_lines())

            if tracking_number:
                order.tracking_number = tracking_number
            if carrier:
                order.carrier = carrier
            order.admin_notes = _append_note(order.admin_notes, notes or "")
            order.status = target.value
            order.save()
            if target in LINE_STATUS_FOR:
                self.repository.set_line_status(order, LINE_STATUS_FOR[target])

        logger.info(
            "order status updated",
            extra={"order_id": str(order.id), "from": current.value, "to": target.value, "actor_id": str(actor.id)},
        )
        return order

    # ---- settlement (SettlementListener) ----
    def on_payment_completed(self, order_id: uuid.UUID, payment) -> None:
        order = self.repository.lock(order_id, include_deleted=True)
        current = OrderStatus(order.status)
        others = [p for p in self.payments.captured_payments(order_id) if p.pk != payment.pk]
        if current in EXIT_STATUSES or others:
            logger.warning(
                "refunding payment received for a closed or already paid order",
                extra={"order_id": str(order_id), "payment_id": str(payment.pk), "order_status": current.value},
            )
            self.payments.refund(payment.pk, None, reason="Payment received for a closed or already paid order")
            return

        order.payment_status = OrderPaymentStatus.PAID.value
        order.paid_at = timezone.now()
        if current is OrderStatus.PENDING:
            order.status = OrderStatus.PAID.value
        order.save()
        logger.info("order paid", extra={"order_id": str(order_id), "payment_id": str(payment.pk)})

    def on_payment_failed(self, order_id: uuid.UUID, payment) -> None:
        order = self.repository.lock(order_id, include_deleted=True)
        if order.payment_status in (OrderPaymentStatus.PENDING.value, OrderPaymentStatus.FAILED.value):
            order.payment_status = OrderPaymentStatus.FAILED.value
            order.save(update_fields=["payment_status", "updated_at"])
        logger.info("order payment failed", extra={"order_id": str(order_id), "payment_id": str(payment.pk)})

    def on_payment_refunded(self, order_id: uuid.UUID, payment, fully_refunded: bool) -> None:
        order = self.repository.lock(order_id, include_deleted=True)
        if fully_refunded:
            order.payment_status = OrderPaymentStatus.REFUNDED.value
        elif self.payments.net_captured(order_id) >= order.total_minor:
            # Only an excess payment was returned.
            order.payment_status = OrderPaymentStatus.PAID.value
        else:
            order.payment_status = OrderPaymentStatus.PARTIALLY_REFUNDED.value

        current = OrderStatus(order.status)
        if fully_refunded and current not in TERMINAL_STATUSES:
            self.inventory.release(order.stock_lines())
            order.status = OrderStatus.REFUNDED.value
            self.repository.set_line_status(order, LineStatus.CANCELLED)
        order.save()
        logger.info(
            "order refund recorded",
            extra={"order_id": str(order_id), "refund_id": str(payment.pk), "fully_refunded": fully_refunded},
        )

    # ---- archive and reads ----
    @transaction.atomic
    def archive_order(self, order_id: uuid.UUID, actor: Actor) -> OrderModel:
        if not actor.is_operator:
            raise Forbidden("FORBIDDEN", "Only operators can archive orders")
        order = self.repository.lock(order_id)
        if OrderStatus(order.status) not in TERMINAL_STATUSES:
            raise Conflict("ORDER_NOT_TERMINAL", "Only finished orders can be archived")
        order.deleted_at = timezone.now()
        order.save(update_fields=["deleted_at", "updated_at"])
        logger.info("order archived", extra={"order_id": str(order_id), "actor_id": str(actor.id)})
        return order

    def list_orders(
        self, actor: Actor, status: Optional[str] = None, page: int = 1, page_size: int = 20
    ) -> Page:
        if status:
            try:
                status = OrderStatus(status).value
            except ValueError:
                raise ValidationFailed("INVALID_STATUS", f"Unknown status {status!r}") from None
        paginator = Paginator(self.repository.visible_to(actor, status), page_size)
        return paginator.get_page(page)

    def get_order(self, order_id: uuid.UUID, actor: Actor) -> OrderModel:
        order = self.repository.get(order_id)
        if not actor.can_view_order(order.customer_id, order.store_id):
            raise Forbidden("FORBIDDEN", "You cannot view this order")
        return order
