"""Order pricing: subtotal, shipping, coupon discount and provider fee.

All amounts are integers in minor units. The provider fee is computed on
``subtotal + shipping - discount`` by the adapter of the selected payment
method, so the customer pays exactly what the provider will collect.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional, Sequence

from apps.common.errors import ValidationFailed
from apps.payments.registry import ProviderRegistry

from .domain import PriceBreakdown, PricedLine
from .models import Coupon


def subtotal_of(lines: Sequence[PricedLine]) -> int:
    return sum(line.line_total_minor for line in lines)


def shipping_for(subtotal_minor: int, country: str, requires_shipping: bool, policy: Mapping) -> int:
    """Flat-rate shipping.

    Domestic deliveries pay ``domestic_fee`` unless the subtotal reaches
    ``free_threshold``; every other country pays ``international_fee``.
    Orders made only of non-shippable products ship for free.
    """
    if not requires_shipping:
        return 0
    if (country or "").upper() == policy["domestic_country"]:
        return 0 if subtotal_minor >= policy["free_threshold"] else policy["domestic_fee"]
    return policy["international_fee"]


def discount_for(coupon_code: Optional[str], subtotal_minor: int) -> tuple[int, str]:
    """Resolve a coupon into ``(discount_minor, canonical_code)``.

    The discount never exceeds the subtotal.

    Raises:
        ValidationFailed: ``INVALID_COUPON`` when the code is unknown,
            inactive or expired.
    """
    code = (coupon_code or "").strip()
    if not code:
        return 0, ""
    coupon = Coupon.objects.filter(code__iexact=code).first()
    if coupon is None or not coupon.is_usable():
        raise ValidationFailed("INVALID_COUPON", f"Coupon {code!r} is not valid")

    if coupon.percent_off:
        discount = int(
            (Decimal(subtotal_minor) * Decimal(coupon.percent_off) / Decimal(100)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
    else:
        discount = coupon.amount_off_minor or 0
    return max(0, min(discount, subtotal_minor)), coupon.code


class OrderPricing:
    """Prices an order against the shipping policy and the provider registry."""

    def __init__(self, registry: ProviderRegistry, policy: Mapping, currency: str):
        self.registry = registry
        self.policy = policy
        self.currency = currency

    def price(
        self,
        lines: Sequence[PricedLine],
        *,
        country: str,
        requires_shipping: bool,
        payment_method: str,
        coupon_code: Optional[str] = None,
    ) -> PriceBreakdown:
        subtotal = subtotal_of(lines)
        shipping = shipping_for(subtotal, country, requires_shipping, self.policy)
        discount, code = discount_for(coupon_code, subtotal)
        adapter = self.registry.get_configured(payment_method)
        fee = adapter.fee_for(subtotal + shipping - discount)
        return PriceBreakdown(
            subtotal_minor=subtotal,
            shipping_minor=shipping,
            discount_minor=discount,
            fee_minor=fee,
            currency=self.currency,
            coupon_code=code,
            lines=tuple(lines),
        )
