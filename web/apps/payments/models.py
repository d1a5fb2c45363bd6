import uuid
from django.db import models
from django.db.models import Q

from .domain import TERMINAL_STATUSES, PaymentMethod, PaymentStatus


class Payment(models.Model):
    """One payment attempt, settlement or refund against an order.

    Refunds are separate rows with a negative ``amount_minor`` pointing at the
    payment they return money from. Rows are never deleted.
    """

    class Status(models.TextChoices):
        PENDING = PaymentStatus.PENDING.value
        PROCESSING = PaymentStatus.PROCESSING.value
        COMPLETED = PaymentStatus.COMPLETED.value
        FAILED = PaymentStatus.FAILED.value
        REFUNDED = PaymentStatus.REFUNDED.value
        PARTIALLY_REFUNDED = PaymentStatus.PARTIALLY_REFUNDED.value

    class Method(models.TextChoices):
        TMONEY = PaymentMethod.TMONEY.value
        FLOOZ = PaymentMethod.FLOOZ.value
        ORANGE_MONEY = PaymentMethod.ORANGE_MONEY.value
        MTN_MONEY = PaymentMethod.MTN_MONEY.value
        CASH_ON_DELIVERY = PaymentMethod.CASH_ON_DELIVERY.value

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey("orders.OrderModel", on_delete=models.PROTECT, related_name="payments")
    transaction_reference = models.CharField(max_length=64, unique=True)
    provider_reference = models.CharField(max_length=128, unique=True, null=True, blank=True)
    method = models.CharField(max_length=32, choices=Method.choices)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    amount_minor = models.BigIntegerField()
    currency = models.CharField(max_length=3)
    phone_number = models.CharField(max_length=20, blank=True, default="")
    refund_of = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.PROTECT, related_name="refunds"
    )
    provider_response = models.JSONField(default=dict, blank=True)
    webhook_payload = models.JSONField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")
    initiated_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    webhook_received_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments"
        ordering = ["-initiated_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(refund_of__isnull=True, amount_minor__gte=0)
                | Q(refund_of__isnull=False, amount_minor__lt=0),
                name="payments_refunds_are_negative",
            ),
        ]

    def __str__(self):
        return f"{self.transaction_reference} {self.status} {self.amount_minor}"

    @property
    def is_refund(self) -> bool:
        return self.refund_of_id is not None

    @property
    def is_terminal(self) -> bool:
        return PaymentStatus(self.status) in TERMINAL_STATUSES


class WebhookEvent(models.Model):
    """Every authenticated provider callback, deduplicated on its body hash.

    Callbacks that reference an unknown payment stay flagged with
    ``needs_review`` until a later delivery resolves them.
    """

    class Outcome(models.TextChoices):
        RECEIVED = "received"
        APPLIED = "applied"
        DUPLICATE = "duplicate"
        NOT_FOUND = "not_found"

    provider = models.CharField(max_length=32)
    payload_hash = models.CharField(max_length=64)
    provider_reference = models.CharField(max_length=128, db_index=True)
    reported_status = models.CharField(max_length=64)
    outcome = models.CharField(max_length=16, choices=Outcome.choices, default=Outcome.RECEIVED)
    needs_review = models.BooleanField(default=False, db_index=True)
    attempts = models.PositiveIntegerField(default=1)
    payload = models.JSONField(default=dict)
    received_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "webhook_events"
        constraints = [
            models.UniqueConstraint(fields=["provider", "payload_hash"], name="ux_webhook_event_payload"),
        ]
