"""Read side of the catalog used by order creation.

Order lines snapshot the product name and price at creation time, so the
workflow only needs an immutable view of each active product.
"""

import uuid
from dataclasses import dataclass
from typing import Iterable

from django.db.models import F

from .models import Product


@dataclass(frozen=True)
class ProductSnapshot:
    id: uuid.UUID
    sku: str
    name: str
    store_id: uuid.UUID
    price_minor: int
    currency: str
    requires_shipping: bool


class ProductCatalog:
    """Looks up sellable products and records sales once orders are delivered."""

    def active_products(self, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProductSnapshot]:
        """Return snapshots keyed by id for products that are active and not deleted.

        Missing or inactive ids are simply absent from the result; the caller
        decides how to report them.
        """
        qs = Product.objects.filter(
            pk__in=set(product_ids), status=Product.Status.ACTIVE, deleted_at__isnull=True
        )
        return {
            p.id: ProductSnapshot(
                id=p.id,
                sku=p.sku,
                name=p.name,
                store_id=p.store_id,
                price_minor=p.price_minor,
                currency=p.currency,
                requires_shipping=p.requires_shipping,
            )
            for p in qs
        }

    def record_sales(self, sales: Iterable[tuple[uuid.UUID, int, int]]) -> None:
        """Add delivered quantities and revenue to the product counters.

        Args:
            sales: ``(product_id, quantity, revenue_minor)`` tuples.
        """
        for product_id, quantity, revenue in sales:
            Product.objects.filter(pk=product_id).update(
                sales_count=F("sales_count") + quantity,
                revenue_minor=F("revenue_minor") + revenue,
            )
