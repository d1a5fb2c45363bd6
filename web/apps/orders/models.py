import uuid

from django.conf import settings
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone

from .domain import LineStatus, OrderPaymentStatus, OrderStatus


class OrderModel(models.Model):
    """An order placed by one customer against one store."""

    # UUID PK exposed through the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal monotonic counter, feeds the order number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)
    order_number = models.CharField(max_length=32, unique=True, editable=False, blank=True)

    class Status(models.TextChoices):
        PENDING = OrderStatus.PENDING.value
        PAID = OrderStatus.PAID.value
        CONFIRMED = OrderStatus.CONFIRMED.value
        PROCESSING = OrderStatus.PROCESSING.value
        SHIPPED = OrderStatus.SHIPPED.value
        DELIVERED = OrderStatus.DELIVERED.value
        CANCELLED = OrderStatus.CANCELLED.value
        REFUNDED = OrderStatus.REFUNDED.value
        RETURNED = OrderStatus.RETURNED.value

    class PaymentStatus(models.TextChoices):
        PENDING = OrderPaymentStatus.PENDING.value
        PAID = OrderPaymentStatus.PAID.value
        FAILED = OrderPaymentStatus.FAILED.value
        REFUNDED = OrderPaymentStatus.REFUNDED.value
        PARTIALLY_REFUNDED = OrderPaymentStatus.PARTIALLY_REFUNDED.value

    customer_id = models.UUIDField(db_index=True)
    store_id = models.UUIDField(db_index=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=32, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    payment_method = models.CharField(max_length=32)

    subtotal_minor = models.BigIntegerField(default=0)
    shipping_minor = models.BigIntegerField(default=0)
    discount_minor = models.BigIntegerField(default=0)
    fee_minor = models.BigIntegerField(default=0)
    total_minor = models.BigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="XOF")
    coupon_code = models.CharField(max_length=64, blank=True, default="")

    delivery_address = models.JSONField(default=dict)
    billing_address = models.JSONField(null=True, blank=True)
    customer_phone = models.CharField(max_length=20, blank=True, default="")
    customer_notes = models.TextField(blank=True, default="")
    admin_notes = models.TextField(blank=True, default="")
    tracking_number = models.CharField(max_length=128, blank=True, default="")
    carrier = models.CharField(max_length=64, blank=True, default="")

    paid_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    total_minor=F("subtotal_minor") + F("shipping_minor") - F("discount_minor") + F("fee_minor")
                ),
                name="orders_total_matches_breakdown",
            ),
            models.CheckConstraint(condition=Q(total_minor__gte=0), name="orders_total_non_negative"),
        ]

    def __str__(self):
        return self.order_number or str(self.id)

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` and the order number only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1
                prefix = getattr(settings, "ORDER_NUMBER_PREFIX", "MKT")
                self.order_number = f"{prefix}-{timezone.now():%Y%m%d}-{self.internal_id:06d}"
                super().save(*args, **kwargs)
                return

        super().save(*args, **kwargs)

    @property
    def is_cash_on_delivery(self) -> bool:
        return self.payment_method == "cash_on_delivery"

    def stock_lines(self) -> list[tuple[uuid.UUID, int]]:
        return [(line.product_id, line.quantity) for line in self.lines.all()]


class OrderLine(models.Model):
    """Immutable snapshot of a product at order time; only ``status`` changes."""

    class Status(models.TextChoices):
        PENDING = LineStatus.PENDING.value
        CONFIRMED = LineStatus.CONFIRMED.value
        SHIPPED = LineStatus.SHIPPED.value
        DELIVERED = LineStatus.DELIVERED.value
        CANCELLED = LineStatus.CANCELLED.value
        RETURNED = LineStatus.RETURNED.value

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="lines")
    product_id = models.UUIDField(db_index=True)
    sku = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    variant_name = models.CharField(max_length=128, blank=True, default="")
    unit_price_minor = models.BigIntegerField()
    quantity = models.PositiveIntegerField()
    line_total_minor = models.BigIntegerField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)

    class Meta:
        db_table = "order_lines"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="order_lines_quantity_positive"),
        ]


class Coupon(models.Model):
    code = models.CharField(max_length=64, unique=True)
    percent_off = models.PositiveSmallIntegerField(null=True, blank=True)
    amount_off_minor = models.BigIntegerField(null=True, blank=True)
    active = models.BooleanField(default=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "coupons"

    def is_usable(self, now=None) -> bool:
        now = now or timezone.now()
        return self.active and (self.expires_at is None or self.expires_at > now)


class IdempotencyKey(models.Model):
    """Stored response of a ``POST /api/orders/`` keyed by the client's ``Idempotency-Key``."""

    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
