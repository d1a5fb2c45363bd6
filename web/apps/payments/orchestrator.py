"""Payment orchestrator: the single writer of ``Payment`` rows.

It starts collections through a provider adapter, applies provider outcomes
(webhooks or operator reconciliation) exactly once, records refunds and
cash collections, and tells the order workflow about settled payments
through the ``SettlementListener`` port.

Provider calls happen outside any database transaction. The payment row is
committed as ``pending`` before the call so a crash mid-call still leaves
an audit trail.
"""

import logging
import uuid
from typing import Optional

from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone

from apps.common.errors import Conflict, NotFound, ProviderUnavailable, ValidationFailed
from apps.orders.domain import OrderPaymentStatus, OrderStatus
from apps.orders.models import OrderModel

from .adapters import ProviderError
from .domain import (
    CAPTURED_STATUSES,
    TERMINAL_STATUSES,
    ApplyOutcome,
    PaymentInitiation,
    PaymentMethod,
    PaymentRequest,
    PaymentStatus,
    SettlementListener,
    can_transition,
    new_transaction_reference,
    normalize_phone,
)
from .models import Payment
from .registry import ProviderRegistry

logger = logging.getLogger("payments")
webhook_logger = logging.getLogger("webhooks")

REFUND_REFERENCE_PREFIX = "RFD"


class PaymentOrchestrator:
    """Implements the payments port used by the order workflow.

    Args:
        registry: Adapter lookup table.
        settlement: Listener notified of completed, failed and refunded
            payments. Wired after construction because the workflow and the
            orchestrator reference each other.
    """

    def __init__(self, registry: ProviderRegistry, settlement: Optional[SettlementListener] = None):
        self.registry = registry
        self.settlement = settlement

    # ---- initiation ----
    def initiate(
        self, order_id: uuid.UUID, method: str, amount_minor: int, phone: Optional[str] = None
    ) -> PaymentInitiation:
        """Start a mobile-money collection for a pending order.

        Raises:
            NotFound: ``ORDER_NOT_FOUND``.
            Conflict: ``ORDER_ALREADY_PAID`` or ``ORDER_NOT_PAYABLE``.
            ValidationFailed: ``AMOUNT_MISMATCH``, ``INVALID_PHONE``,
                ``PHONE_REQUIRED``, ``PAYMENT_METHOD_MISMATCH`` or
                ``PAYMENT_METHOD_UNAVAILABLE``.
            ProviderUnavailable: The adapter failed; the payment row is kept
                as ``failed`` with the raw error.
        """
        adapter = self.registry.get_configured(method)
        if not adapter.method.is_mobile_money:
            raise ValidationFailed("PAYMENT_METHOD_UNAVAILABLE", "Cash on delivery is settled at delivery")
        try:
            phone = normalize_phone(phone)
        except ValueError:
            raise ValidationFailed("INVALID_PHONE", "Phone number must have 8 to 15 digits") from None
        if not phone:
            raise ValidationFailed("PHONE_REQUIRED", "Mobile money payments need a phone number")

        with transaction.atomic():
            order = (
                OrderModel.objects.select_for_update()
                .filter(pk=order_id, deleted_at__isnull=True)
                .first()
            )
            if order is None:
                raise NotFound("ORDER_NOT_FOUND")
            if order.payment_status == OrderPaymentStatus.PAID.value:
                raise Conflict("ORDER_ALREADY_PAID")
            if order.status != OrderStatus.PENDING.value:
                raise Conflict("ORDER_NOT_PAYABLE", f"Order is {order.status}")
            if order.payment_method != adapter.method.value:
                raise ValidationFailed(
                    "PAYMENT_METHOD_MISMATCH", f"Order is payable with {order.payment_method}"
                )
            if amount_minor != order.total_minor:
                raise ValidationFailed(
                    "AMOUNT_MISMATCH", f"Amount {amount_minor} does not match order total {order.total_minor}"
                )
            payment = Payment.objects.create(
                order=order,
                transaction_reference=new_transaction_reference(adapter.reference_prefix),
                method=adapter.method.value,
                status=PaymentStatus.PENDING.value,
                amount_minor=amount_minor,
                currency=order.currency,
                phone_number=phone,
            )
            order_number = order.order_number

        request = PaymentRequest(
            transaction_reference=payment.transaction_reference,
            order_id=order_id,
            order_number=order_number,
            amount_minor=amount_minor,
            currency=payment.currency,
            phone=phone,
            description=f"Order {order_number}",
        )
        try:
            result = adapter.initiate(request)
        except ProviderError as exc:
            self._record_initiation_failure(payment.pk, str(exc))
            raise ProviderUnavailable(
                "PROVIDER_UNAVAILABLE", "The payment provider could not process the request"
            ) from exc
        except Exception as exc:
            logger.exception("adapter raised unexpectedly", extra={"payment_id": str(payment.pk)})
            self._record_initiation_failure(payment.pk, f"{type(exc).__name__}: {exc}")
            raise ProviderUnavailable(
                "PROVIDER_UNAVAILABLE", "The payment provider could not process the request"
            ) from exc

        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            payment.provider_reference = result.provider_reference
            payment.provider_response = result.raw
            if payment.status == PaymentStatus.PENDING.value:
                payment.status = PaymentStatus.PROCESSING.value
            payment.save()

        logger.info(
            "payment initiated",
            extra={
                "order_id": str(order_id),
                "payment_id": str(payment.pk),
                "method": adapter.method.value,
                "transaction_reference": payment.transaction_reference,
            },
        )
        return PaymentInitiation(
            payment_id=payment.pk,
            transaction_reference=payment.transaction_reference,
            provider_reference=payment.provider_reference,
            status=PaymentStatus(payment.status),
            redirect_url=result.redirect_url,
            instructions=result.instructions,
        )

    @transaction.atomic
    def _record_initiation_failure(self, payment_id: uuid.UUID, reason: str) -> None:
        payment = Payment.objects.select_for_update().get(pk=payment_id)
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason[:4000]
        payment.save(update_fields=["status", "failure_reason", "updated_at"])
        logger.error(
            "payment initiation failed",
            extra={"payment_id": str(payment_id), "method": payment.method, "error": reason},
        )
        if self.settlement is not None:
            self.settlement.on_payment_failed(payment.order_id, payment)

    # ---- provider outcomes ----
    @transaction.atomic
    def apply_webhook_result(
        self,
        provider_reference: str,
        status: PaymentStatus,
        raw_payload: dict,
        method: Optional[str] = None,
    ) -> ApplyOutcome:
        """Apply a provider-reported status to the payment it references.

        Returns:
            ``NOT_FOUND`` when no payment carries the reference,
            ``DUPLICATE`` when the payment is already terminal or the report
            does not move it forward, ``APPLIED`` otherwise.
        """
        qs = Payment.objects.select_for_update().filter(
            provider_reference=provider_reference, refund_of__isnull=True
        )
        if method:
            qs = qs.filter(method=method)
        payment = qs.first()
        if payment is None:
            return ApplyOutcome.NOT_FOUND

        current = PaymentStatus(payment.status)
        status = PaymentStatus(status)
        if current in TERMINAL_STATUSES or not can_transition(current, status):
            webhook_logger.info(
                "payment outcome ignored",
                extra={"payment_id": str(payment.pk), "current": current.value, "reported": status.value},
            )
            return ApplyOutcome.DUPLICATE

        if status is PaymentStatus.PROCESSING:
            payment.status = status.value
            payment.save(update_fields=["status", "updated_at"])
            return ApplyOutcome.APPLIED

        now = timezone.now()
        payment.status = status.value
        payment.webhook_payload = raw_payload
        payment.webhook_received_at = now
        if status is PaymentStatus.COMPLETED:
            payment.completed_at = now
        else:
            payment.failure_reason = str(
                raw_payload.get("reason") or raw_payload.get("message") or "Provider reported failure"
            )
        payment.save()

        webhook_logger.info(
            "payment outcome applied",
            extra={"payment_id": str(payment.pk), "order_id": str(payment.order_id), "status": status.value},
        )
        if self.settlement is not None:
            if status is PaymentStatus.COMPLETED:
                self.settlement.on_payment_completed(payment.order_id, payment)
            else:
                self.settlement.on_payment_failed(payment.order_id, payment)
        return ApplyOutcome.APPLIED

    def reconcile(self, payment_id: uuid.UUID) -> Payment:
        """Ask the provider for the status of a non-terminal payment and apply it."""
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise NotFound("PAYMENT_NOT_FOUND")
        if payment.is_refund or payment.is_terminal:
            return payment
        if not payment.provider_reference:
            raise Conflict("PAYMENT_NOT_RECONCILABLE", "Payment has no provider reference")

        adapter = self.registry.get(payment.method)
        try:
            result = adapter.verify(payment.provider_reference)
        except ProviderError as exc:
            logger.error(
                "payment status check failed",
                extra={"payment_id": str(payment.pk), "method": payment.method, "error": str(exc)},
            )
            raise ProviderUnavailable("PROVIDER_UNAVAILABLE", "The payment provider could not be reached") from exc

        outcome = self.apply_webhook_result(
            payment.provider_reference, result.status, result.raw, method=payment.method
        )
        logger.info(
            "payment reconciled",
            extra={"payment_id": str(payment.pk), "reported": result.status.value, "outcome": outcome.value},
        )
        payment.refresh_from_db()
        return payment

    def get_payment(self, payment_id: uuid.UUID) -> Payment:
        payment = Payment.objects.select_related("order").filter(pk=payment_id).first()
        if payment is None:
            raise NotFound("PAYMENT_NOT_FOUND")
        return payment

    # ---- refunds and manual settlement ----
    @transaction.atomic
    def refund(self, payment_id: uuid.UUID, amount_minor: Optional[int] = None, reason: str = "") -> Payment:
        """Record a refund against a captured payment.

        Without ``amount_minor`` the whole remaining refundable amount is
        returned. The refund is a new ``completed`` payment with a negative
        amount linked through ``refund_of``.

        Raises:
            NotFound: ``PAYMENT_NOT_FOUND``.
            Conflict: ``PAYMENT_NOT_REFUNDABLE`` for refunds, uncaptured or
                fully refunded payments.
            ValidationFailed: ``INVALID_REFUND_AMOUNT``,
                ``REFUND_EXCEEDS_PAYMENT`` or ``REFUND_EXCEEDS_REMAINING``.
        """
        original = Payment.objects.select_for_update().filter(pk=payment_id).first()
        if original is None:
            raise NotFound("PAYMENT_NOT_FOUND")
        if original.is_refund or original.status not in (
            PaymentStatus.COMPLETED.value,
            PaymentStatus.PARTIALLY_REFUNDED.value,
        ):
            raise Conflict("PAYMENT_NOT_REFUNDABLE", f"Payment is {original.status}")

        refunded = -(original.refunds.aggregate(total=Sum("amount_minor"))["total"] or 0)
        remaining = original.amount_minor - refunded
        if amount_minor is None:
            amount_minor = remaining
        if amount_minor <= 0:
            raise ValidationFailed("INVALID_REFUND_AMOUNT", "Refund amount must be positive")
        if amount_minor > original.amount_minor:
            raise ValidationFailed("REFUND_EXCEEDS_PAYMENT")
        if amount_minor > remaining:
            raise ValidationFailed(
                "REFUND_EXCEEDS_REMAINING", f"Only {remaining} is left to refund on this payment"
            )

        now = timezone.now()
        refund = Payment.objects.create(
            order_id=original.order_id,
            transaction_reference=new_transaction_reference(REFUND_REFERENCE_PREFIX),
            method=original.method,
            status=PaymentStatus.COMPLETED.value,
            amount_minor=-amount_minor,
            currency=original.currency,
            phone_number=original.phone_number,
            refund_of=original,
            provider_response={"reason": reason},
            completed_at=now,
        )
        original.status = (
            PaymentStatus.REFUNDED.value if amount_minor == remaining else PaymentStatus.PARTIALLY_REFUNDED.value
        )
        original.save(update_fields=["status", "updated_at"])

        fully_refunded = self.net_captured(original.order_id) == 0
        logger.info(
            "payment refunded",
            extra={
                "payment_id": str(original.pk),
                "refund_id": str(refund.pk),
                "amount_minor": amount_minor,
                "fully_refunded": fully_refunded,
            },
        )
        if self.settlement is not None:
            self.settlement.on_payment_refunded(original.order_id, refund, fully_refunded)
        return refund

    def record_cash_collection(self, order_id: uuid.UUID, amount_minor: int) -> Payment:
        """Record cash handed to the courier as a completed payment (runs in the caller's transaction)."""
        order = OrderModel.objects.get(pk=order_id)
        payment = Payment.objects.create(
            order=order,
            transaction_reference=new_transaction_reference("COD"),
            method=PaymentMethod.CASH_ON_DELIVERY.value,
            status=PaymentStatus.COMPLETED.value,
            amount_minor=amount_minor,
            currency=order.currency,
            phone_number=order.customer_phone,
            provider_response={"settlement": "cash"},
            completed_at=timezone.now(),
        )
        logger.info(
            "cash collection recorded",
            extra={"order_id": str(order_id), "payment_id": str(payment.pk), "amount_minor": amount_minor},
        )
        return payment

    def net_captured(self, order_id: uuid.UUID) -> int:
        """Money currently held for the order: captured payments minus refunds."""
        captured = [s.value for s in CAPTURED_STATUSES]
        total = Payment.objects.filter(order_id=order_id).filter(
            Q(refund_of__isnull=True, status__in=captured)
            | Q(refund_of__isnull=False, status=PaymentStatus.COMPLETED.value)
        ).aggregate(total=Sum("amount_minor"))["total"]
        return total or 0

    def captured_payments(self, order_id: uuid.UUID) -> list[Payment]:
        """Positive payments of the order that still have money left to refund."""
        return list(
            Payment.objects.filter(
                order_id=order_id,
                refund_of__isnull=True,
                status__in=[PaymentStatus.COMPLETED.value, PaymentStatus.PARTIALLY_REFUNDED.value],
            ).order_by("initiated_at")
        )
