import uuid
from django.db import models
from django.db.models import F, Q


class Product(models.Model):
    """Projection of a catalog product as needed by order creation.

    The catalog service owns names, prices and publication status; this table
    holds the copy the workflow snapshots into order lines, plus the sales
    counters updated on delivery.
    """

    class Status(models.TextChoices):
        DRAFT = "draft"
        ACTIVE = "active"
        INACTIVE = "inactive"
        OUT_OF_STOCK = "out_of_stock"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    store_id = models.UUIDField(db_index=True)
    price_minor = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="XOF")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    requires_shipping = models.BooleanField(default=True)
    sales_count = models.PositiveIntegerField(default=0)
    revenue_minor = models.BigIntegerField(default=0)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "products"
        constraints = [
            models.CheckConstraint(condition=Q(price_minor__gte=0), name="products_price_non_negative"),
        ]

    def __str__(self):
        return f"{self.sku} ({self.name})"


class InventoryRecord(models.Model):
    """Stock counters for one product.

    ``reserved`` is held by open orders; ``available = on_hand - reserved``.
    """

    product = models.OneToOneField(
        Product, primary_key=True, on_delete=models.PROTECT, related_name="inventory"
    )
    on_hand = models.PositiveIntegerField(default=0)
    reserved = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "inventory_records"
        constraints = [
            models.CheckConstraint(
                condition=Q(reserved__lte=F("on_hand")), name="inventory_reserved_lte_on_hand"
            ),
        ]

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved
