import pytest

from apps.orders.domain import OrderStatus, PriceBreakdown, can_transition

S = OrderStatus


@pytest.mark.parametrize(
    "current,target",
    [
        (S.PENDING, S.PAID),
        (S.PAID, S.CONFIRMED),
        (S.PAID, S.SHIPPED),
        (S.SHIPPED, S.DELIVERED),
        (S.PENDING, S.CANCELLED),
        (S.SHIPPED, S.RETURNED),
        (S.CONFIRMED, S.REFUNDED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (S.PAID, S.PENDING),
        (S.SHIPPED, S.CONFIRMED),
        (S.PAID, S.PAID),
        (S.DELIVERED, S.RETURNED),
        (S.CANCELLED, S.PAID),
        (S.REFUNDED, S.CANCELLED),
        (S.RETURNED, S.DELIVERED),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_total_is_derived_from_breakdown():
    b = PriceBreakdown(subtotal_minor=10000, shipping_minor=2000, discount_minor=500, fee_minor=173, currency="XOF")
    assert b.total_minor == 11673
