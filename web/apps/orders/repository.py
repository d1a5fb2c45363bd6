"""Repository layer for persisting and loading orders.

Keeps the Django ORM details (row locks, soft-delete filtering, actor
scoping, prefetching) out of the workflow.
"""

import uuid
from typing import Optional

from django.db.models import Q, QuerySet

from apps.common.actors import Actor, Role
from apps.common.errors import NotFound

from .domain import Address, LineStatus, PriceBreakdown
from .models import OrderLine, OrderModel


class OrderRepository:
    """Repository that persists orders and their lines using Django ORM."""

    def create(
        self,
        *,
        customer_id: uuid.UUID,
        store_id: uuid.UUID,
        breakdown: PriceBreakdown,
        payment_method: str,
        delivery_address: Address,
        billing_address: Optional[Address] = None,
        customer_phone: str = "",
        customer_notes: str = "",
    ) -> OrderModel:
        """Persist a new ``pending`` order and its line snapshots.

        Must run inside the caller's transaction so a failure rolls back the
        stock reservation together with the rows.
        """
        order = OrderModel.objects.create(
            customer_id=customer_id,
            store_id=store_id,
            payment_method=payment_method,
            subtotal_minor=breakdown.subtotal_minor,
            shipping_minor=breakdown.shipping_minor,
            discount_minor=breakdown.discount_minor,
            fee_minor=breakdown.fee_minor,
            total_minor=breakdown.total_minor,
            currency=breakdown.currency,
            coupon_code=breakdown.coupon_code,
            delivery_address=delivery_address.as_dict(),
            billing_address=billing_address.as_dict() if billing_address else None,
            customer_phone=customer_phone,
            customer_notes=customer_notes,
        )
        OrderLine.objects.bulk_create(
            [
                OrderLine(
                    order=order,
                    product_id=line.product_id,
                    sku=line.sku,
                    product_name=line.product_name,
                    variant_name=line.variant_name,
                    unit_price_minor=line.unit_price_minor,
                    quantity=line.quantity,
                    line_total_minor=line.line_total_minor,
                )
                for line in breakdown.lines
            ]
        )
        return order

    def lock(self, order_id: uuid.UUID, include_deleted: bool = False) -> OrderModel:
        """``SELECT ... FOR UPDATE`` the order row; call inside a transaction."""
        qs = OrderModel.objects.select_for_update().filter(pk=order_id)
        if not include_deleted:
            qs = qs.filter(deleted_at__isnull=True)
        order = qs.first()
        if order is None:
            raise NotFound("ORDER_NOT_FOUND")
        return order

    def get(self, order_id: uuid.UUID) -> OrderModel:
        order = (
            OrderModel.objects.filter(pk=order_id, deleted_at__isnull=True)
            .prefetch_related("lines", "payments")
            .first()
        )
        if order is None:
            raise NotFound("ORDER_NOT_FOUND")
        return order

    def visible_to(self, actor: Actor, status: Optional[str] = None) -> QuerySet:
        qs = OrderModel.objects.filter(deleted_at__isnull=True)
        if actor.is_operator:
            pass
        elif actor.role == Role.VENDOR:
            qs = qs.filter(Q(store_id__in=list(actor.store_ids)) | Q(customer_id=actor.id))
        else:
            qs = qs.filter(customer_id=actor.id)
        if status:
            qs = qs.filter(status=status)
        return qs.order_by("-created_at", "-internal_id")

    def set_line_status(self, order: OrderModel, status: LineStatus) -> None:
        OrderLine.objects.filter(order=order).update(status=status.value)
