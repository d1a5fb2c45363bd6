import pytest

from apps.common.errors import Conflict, NotFound, ProviderUnavailable, ValidationFailed
from apps.payments.adapters import ProviderError, StubProviderAdapter
from apps.payments.domain import ApplyOutcome, PaymentStatus, ProviderStatus
from apps.payments.models import Payment


@pytest.fixture
def paid(make_product, place_order, workflow):
    """A paid TMoney order and its completed payment."""
    p = make_product()
    placed = place_order([(p, 1)])
    workflow.payments.apply_webhook_result(placed.payment.provider_reference, PaymentStatus.COMPLETED, {})
    return placed.order, Payment.objects.get(pk=placed.payment.payment_id)


@pytest.mark.django_db
def test_unknown_reference_is_not_found(workflow):
    assert workflow.payments.apply_webhook_result("nope", PaymentStatus.COMPLETED, {}) is ApplyOutcome.NOT_FOUND


@pytest.mark.django_db
def test_processing_report_does_not_settle(make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    Payment.objects.filter(pk=placed.payment.payment_id).update(status="pending")

    outcome = workflow.payments.apply_webhook_result(placed.payment.provider_reference, PaymentStatus.PROCESSING, {})

    assert outcome is ApplyOutcome.APPLIED
    payment = Payment.objects.get(pk=placed.payment.payment_id)
    assert payment.status == "processing"
    assert payment.webhook_received_at is None


@pytest.mark.django_db
def test_report_for_another_method_is_ignored(make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    outcome = workflow.payments.apply_webhook_result(
        placed.payment.provider_reference, PaymentStatus.COMPLETED, {}, method="flooz"
    )
    assert outcome is ApplyOutcome.NOT_FOUND


@pytest.mark.django_db
def test_cash_on_delivery_cannot_be_initiated(make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)], method="cash_on_delivery")
    with pytest.raises(ValidationFailed) as exc:
        workflow.payments.initiate(placed.order.id, "cash_on_delivery", placed.order.total_minor, "+22890112233")
    assert exc.value.code == "PAYMENT_METHOD_UNAVAILABLE"


@pytest.mark.django_db
def test_refund_rules(paid, workflow):
    order, payment = paid
    payments = workflow.payments

    with pytest.raises(ValidationFailed) as exc:
        payments.refund(payment.pk, 0)
    assert exc.value.code == "INVALID_REFUND_AMOUNT"

    with pytest.raises(ValidationFailed) as exc:
        payments.refund(payment.pk, payment.amount_minor + 1)
    assert exc.value.code == "REFUND_EXCEEDS_PAYMENT"

    refund = payments.refund(payment.pk, 500, reason="damaged box")
    assert refund.amount_minor == -500
    assert refund.status == "completed"
    assert refund.transaction_reference.startswith("RFD-")
    assert refund.provider_response == {"reason": "damaged box"}

    with pytest.raises(Conflict) as exc:
        payments.refund(refund.pk)
    assert exc.value.code == "PAYMENT_NOT_REFUNDABLE"


@pytest.mark.django_db
def test_uncaptured_payment_is_not_refundable(make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    with pytest.raises(Conflict) as exc:
        workflow.payments.refund(placed.payment.payment_id)
    assert exc.value.code == "PAYMENT_NOT_REFUNDABLE"

    with pytest.raises(NotFound):
        workflow.payments.refund(placed.order.id)


@pytest.mark.django_db
def test_net_captured_tracks_refunds(paid, workflow):
    order, payment = paid
    assert workflow.payments.net_captured(order.id) == payment.amount_minor
    workflow.payments.refund(payment.pk, 1000)
    assert workflow.payments.net_captured(order.id) == payment.amount_minor - 1000
    assert [p.pk for p in workflow.payments.captured_payments(order.id)] == [payment.pk]


@pytest.mark.django_db
def test_reconcile_applies_provider_status(make_product, place_order, workflow, monkeypatch):
    monkeypatch.setattr(
        StubProviderAdapter, "verify", lambda self, ref: ProviderStatus(PaymentStatus.COMPLETED, {"status": "SUCCESS"})
    )
    p = make_product()
    placed = place_order([(p, 1)])

    payment = workflow.payments.reconcile(placed.payment.payment_id)

    assert payment.status == "completed"
    assert payment.order.payment_status == "paid"


@pytest.mark.django_db
def test_reconcile_leaves_pending_payment_when_provider_has_no_answer(make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    assert workflow.payments.reconcile(placed.payment.payment_id).status == "processing"


@pytest.mark.django_db
def test_reconcile_provider_failure(make_product, place_order, workflow, monkeypatch):
    def boom(self, ref):
        raise ProviderError("tmoney: ConnectError")

    monkeypatch.setattr(StubProviderAdapter, "verify", boom)
    p = make_product()
    placed = place_order([(p, 1)])
    with pytest.raises(ProviderUnavailable):
        workflow.payments.reconcile(placed.payment.payment_id)


@pytest.mark.django_db
def test_reconcile_without_provider_reference(make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    Payment.objects.filter(pk=placed.payment.payment_id).update(provider_reference=None)
    with pytest.raises(Conflict) as exc:
        workflow.payments.reconcile(placed.payment.payment_id)
    assert exc.value.code == "PAYMENT_NOT_RECONCILABLE"


@pytest.mark.django_db
def test_reconcile_of_settled_payment_is_a_no_op(paid, workflow):
    _, payment = paid
    assert workflow.payments.reconcile(payment.pk).status == "completed"
