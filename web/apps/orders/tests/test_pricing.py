import uuid
from datetime import timedelta

import pytest
from django.conf import settings
from django.utils import timezone

from apps.common.errors import ValidationFailed
from apps.orders.domain import PricedLine
from apps.orders.models import Coupon
from apps.orders.pricing import OrderPricing, discount_for, shipping_for, subtotal_of
from apps.payments.registry import build_registry

POLICY = {"domestic_country": "TG", "domestic_fee": 2000, "free_threshold": 50000, "international_fee": 15000}


def _line(price, qty):
    return PricedLine(
        product_id=uuid.uuid4(), sku="SKU", product_name="P", variant_name="", unit_price_minor=price, quantity=qty
    )


def test_subtotal_sums_line_totals():
    assert subtotal_of([_line(5000, 2), _line(1250, 3)]) == 13750


@pytest.mark.parametrize(
    "subtotal,country,requires_shipping,expected",
    [
        (10000, "TG", True, 2000),
        (50000, "TG", True, 0),
        (49999, "tg", True, 2000),
        (80000, "SN", True, 15000),
        (10000, "TG", False, 0),
    ],
)
def test_shipping_policy(subtotal, country, requires_shipping, expected):
    assert shipping_for(subtotal, country, requires_shipping, POLICY) == expected


@pytest.mark.django_db
def test_percent_coupon_rounds_half_up():
    Coupon.objects.create(code="WELCOME10", percent_off=10)
    assert discount_for("welcome10", 12345) == (1235, "WELCOME10")


@pytest.mark.django_db
def test_fixed_coupon_never_exceeds_subtotal():
    Coupon.objects.create(code="BIG", amount_off_minor=99999)
    assert discount_for("BIG", 5000) == (5000, "BIG")


@pytest.mark.django_db
@pytest.mark.parametrize("active,expires_in", [(False, None), (True, timedelta(days=-1))])
def test_unusable_coupon_is_rejected(active, expires_in):
    Coupon.objects.create(
        code="OLD",
        percent_off=5,
        active=active,
        expires_at=timezone.now() + expires_in if expires_in else None,
    )
    with pytest.raises(ValidationFailed) as exc:
        discount_for("OLD", 10000)
    assert exc.value.code == "INVALID_COUPON"


@pytest.mark.django_db
def test_unknown_coupon_is_rejected():
    with pytest.raises(ValidationFailed) as exc:
        discount_for("NOPE", 10000)
    assert exc.value.code == "INVALID_COUPON"


def test_blank_coupon_means_no_discount():
    assert discount_for("  ", 10000) == (0, "")


@pytest.mark.django_db
def test_price_applies_provider_fee_on_discounted_total():
    Coupon.objects.create(code="HALF", percent_off=50)
    pricing = OrderPricing(build_registry(settings), POLICY, "XOF")

    breakdown = pricing.price(
        [_line(5000, 2)], country="TG", requires_shipping=True, payment_method="tmoney", coupon_code="HALF"
    )

    assert breakdown.subtotal_minor == 10000
    assert breakdown.shipping_minor == 2000
    assert breakdown.discount_minor == 5000
    # 1.5% of 7000
    assert breakdown.fee_minor == 105
    assert breakdown.total_minor == 7105
    assert breakdown.coupon_code == "HALF"


def test_fee_is_clamped_to_schedule():
    pricing = OrderPricing(build_registry(settings), POLICY, "XOF")
    small = pricing.price([_line(1000, 1)], country="TG", requires_shipping=False, payment_method="flooz")
    large = pricing.price([_line(1000000, 1)], country="TG", requires_shipping=False, payment_method="flooz")
    assert small.fee_minor == 100
    assert large.fee_minor == 2000


def test_cash_on_delivery_has_no_fee():
    pricing = OrderPricing(build_registry(settings), POLICY, "XOF")
    breakdown = pricing.price(
        [_line(20000, 1)], country="TG", requires_shipping=True, payment_method="cash_on_delivery"
    )
    assert breakdown.fee_minor == 0
    assert breakdown.total_minor == 22000


def test_unconfigured_method_cannot_be_priced(settings):
    settings.PAYMENT_PROVIDERS = {}
    pricing = OrderPricing(build_registry(settings), POLICY, "XOF")
    with pytest.raises(ValidationFailed) as exc:
        pricing.price([_line(1000, 1)], country="TG", requires_shipping=False, payment_method="tmoney")
    assert exc.value.code == "PAYMENT_METHOD_UNAVAILABLE"
