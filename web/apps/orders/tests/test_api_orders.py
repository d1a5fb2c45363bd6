import uuid

import pytest

from apps.common.actors import Actor
from apps.inventory.models import InventoryRecord
from apps.orders.models import OrderModel
from apps.payments.domain import PaymentStatus

CREATE_URL = "/api/orders/"


def _payload(product, quantity=2, **overrides):
    payload = {
        "items": [{"product_id": str(product.id), "quantity": quantity}],
        "delivery_address": {
            "line1": "12 Rue du Commerce",
            "city": "Lome",
            "country": "tg",
            "phone": "+22890112233",
        },
        "payment_method": "tmoney",
    }
    payload.update(overrides)
    return payload


def _create(client, headers, payload, **extra):
    return client.post(CREATE_URL, data=payload, content_type="application/json", **headers, **extra)


@pytest.mark.django_db
def test_create_order_returns_order_and_payment(client, customer, auth_headers, make_product):
    p = make_product(price_minor=5000)

    r = _create(client, auth_headers(customer), _payload(p))

    assert r.status_code == 201
    body = r.json()
    order = body["order"]
    assert order["status"] == "pending"
    assert order["total_minor"] == 12180
    assert order["delivery_address"]["country"] == "TG"
    assert order["customer_id"] == str(customer.id)
    assert [line["quantity"] for line in order["lines"]] == [2]
    assert body["payment"]["status"] == "processing"
    assert body["payment"]["redirect_url"].startswith("http://localhost:3000/checkout/success")
    assert r.headers.get("X-Request-ID")


@pytest.mark.django_db
def test_create_cash_on_delivery_has_no_payment(client, customer, auth_headers, make_product):
    p = make_product()
    r = _create(client, auth_headers(customer), _payload(p, payment_method="cash_on_delivery"))
    assert r.status_code == 201
    assert r.json()["payment"] is None


@pytest.mark.django_db
@pytest.mark.parametrize(
    "overrides,status,detail",
    [
        ({"items": []}, 400, "EMPTY_ORDER"),
        ({"items": [{"product_id": "not-a-uuid", "quantity": 1}]}, 400, "VALIDATION_ERROR"),
        ({"items": [{"product_id": str(uuid.uuid4()), "quantity": 1}]}, 404, "PRODUCT_NOT_FOUND"),
        ({"payment_method": "paypal"}, 400, "PAYMENT_METHOD_UNAVAILABLE"),
        ({"coupon_code": "NOPE"}, 400, "INVALID_COUPON"),
        ({"delivery_address": {"line1": "x", "city": "Lome", "country": "T1"}}, 400, "VALIDATION_ERROR"),
    ],
)
def test_create_rejections(client, customer, auth_headers, make_product, overrides, status, detail):
    p = make_product()
    r = _create(client, auth_headers(customer), _payload(p, **overrides))
    assert r.status_code == status
    assert r.json()["detail"] == detail
    assert not OrderModel.objects.exists()


@pytest.mark.django_db
def test_create_insufficient_stock_is_409(client, customer, auth_headers, make_product):
    p = make_product(on_hand=1)
    r = _create(client, auth_headers(customer), _payload(p, quantity=2))
    assert r.status_code == 409
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert InventoryRecord.objects.get(product=p).reserved == 0


@pytest.mark.django_db
def test_create_without_identity_is_401(client, make_product):
    p = make_product()
    r = client.post(CREATE_URL, data=_payload(p), content_type="application/json")
    assert r.status_code == 401
    assert r.json()["detail"] == "NOT_AUTHENTICATED"


@pytest.mark.django_db
def test_invalid_role_header_is_rejected(client, make_product):
    p = make_product()
    r = _create(client, {"HTTP_X_ACTOR_ID": str(uuid.uuid4()), "HTTP_X_ACTOR_ROLE": "system"}, _payload(p))
    assert r.status_code == 401


@pytest.mark.django_db
def test_oversized_body_is_rejected(client, customer, auth_headers, settings, make_product):
    settings.API_MAX_BYTES = 64
    p = make_product()
    r = _create(client, auth_headers(customer), _payload(p, customer_notes="x" * 200))
    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.django_db
def test_list_and_detail_are_scoped(client, customer, vendor, operator, auth_headers, make_product, place_order):
    p = make_product()
    placed = place_order([(p, 1)])

    r = client.get(CREATE_URL, **auth_headers(customer))
    assert r.status_code == 200
    assert r.json()["count"] == 1
    assert r.json()["results"][0]["lines"] is None

    assert client.get(CREATE_URL, **auth_headers(Actor(id=uuid.uuid4()))).json()["count"] == 0
    assert client.get(f"{CREATE_URL}?status=pending", **auth_headers(operator)).json()["count"] == 1
    assert client.get(f"{CREATE_URL}?status=nope", **auth_headers(operator)).status_code == 400

    detail_url = f"{CREATE_URL}{placed.order.id}/"
    detail = client.get(detail_url, **auth_headers(vendor))
    assert detail.status_code == 200
    assert len(detail.json()["payments"]) == 1
    assert client.get(detail_url, **auth_headers(Actor(id=uuid.uuid4()))).status_code == 403
    assert client.get(f"{CREATE_URL}{uuid.uuid4()}/", **auth_headers(operator)).status_code == 404


@pytest.mark.django_db
def test_customer_cancels_order(client, customer, auth_headers, make_product, place_order):
    p = make_product()
    placed = place_order([(p, 3)])

    r = client.post(
        f"{CREATE_URL}{placed.order.id}/cancel/",
        data={"reason": "ordered twice"},
        content_type="application/json",
        **auth_headers(customer),
    )

    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert InventoryRecord.objects.get(product=p).reserved == 0


@pytest.mark.django_db
def test_vendor_fulfils_order(client, vendor, customer, auth_headers, make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    url = f"{CREATE_URL}{placed.order.id}/status/"

    r = client.put(url, data={"status": "confirmed"}, content_type="application/json", **auth_headers(vendor))
    assert r.status_code == 409
    assert r.json()["detail"] == "ORDER_NOT_PAID"

    workflow.payments.apply_webhook_result(placed.payment.provider_reference, PaymentStatus.COMPLETED, {})

    r = client.put(
        url,
        data={"status": "shipped", "tracking_number": "TRK-9", "carrier": "DHL"},
        content_type="application/json",
        **auth_headers(vendor),
    )
    assert r.status_code == 200
    assert (r.json()["status"], r.json()["tracking_number"]) == ("shipped", "TRK-9")

    r = client.put(url, data={"status": "paid"}, content_type="application/json", **auth_headers(vendor))
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_STATUS"

    r = client.put(url, data={"status": "delivered"}, content_type="application/json", **auth_headers(customer))
    assert r.status_code == 403


@pytest.mark.django_db
def test_operator_archives_finished_order(client, customer, operator, auth_headers, make_product, place_order, workflow):
    p = make_product()
    placed = place_order([(p, 1)])
    url = f"{CREATE_URL}{placed.order.id}/"

    assert client.delete(url, **auth_headers(customer)).status_code == 403
    r = client.delete(url, **auth_headers(operator))
    assert r.status_code == 409
    assert r.json()["detail"] == "ORDER_NOT_TERMINAL"

    workflow.cancel_order(placed.order.id, customer)
    assert client.delete(url, **auth_headers(operator)).status_code == 204
    assert client.get(url, **auth_headers(operator)).status_code == 404
