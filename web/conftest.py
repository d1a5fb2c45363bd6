import hashlib
import hmac
import uuid

import pytest
from django.core.cache import cache

from apps.common.actors import Actor, Role
from apps.inventory.models import InventoryRecord, Product
from apps.orders.domain import Address, LineRequest

WEBHOOK_SECRETS = {
    "tmoney": "whsec-tmoney",
    "flooz": "whsec-flooz",
    "orange_money": "whsec-orange",
    "mtn_money": "whsec-mtn",
}


def _provider(method: str, fee_percent: str) -> dict:
    return {
        "base_url": f"https://{method}.example.test",
        "merchant_id": f"M-{method}",
        "api_key": f"key-{method}",
        "secret_key": f"secret-{method}",
        "client_id": f"client-{method}",
        "client_secret": f"client-secret-{method}",
        "webhook_secret": WEBHOOK_SECRETS[method],
        "fee_percent": fee_percent,
        "fee_min": 100,
        "fee_max": 2000,
    }


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.PAYMENT_PROVIDERS = {
        "tmoney": _provider("tmoney", "1.5"),
        "flooz": _provider("flooz", "1.5"),
        "orange_money": _provider("orange_money", "2.0"),
        "mtn_money": _provider("mtn_money", "2.0"),
    }
    settings.SHIPPING_POLICY = {
        "domestic_country": "TG",
        "domestic_fee": 2000,
        "free_threshold": 50000,
        "international_fee": 15000,
    }
    settings.HTTP_RETRY_BACKOFF_BASE = 0
    settings.HTTP_RETRY_MAX_SLEEP = 0
    # Throttle counters live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def store_id():
    return uuid.uuid4()


@pytest.fixture
def customer():
    return Actor(id=uuid.uuid4(), role=Role.CUSTOMER)


@pytest.fixture
def vendor(store_id):
    return Actor(id=uuid.uuid4(), role=Role.VENDOR, store_ids=frozenset({store_id}))


@pytest.fixture
def operator():
    return Actor(id=uuid.uuid4(), role=Role.OPERATOR)


@pytest.fixture
def make_product(db, store_id):
    """Factory for an active product with ``on_hand`` units in stock."""
    counter = {"n": 0}

    def _make(price_minor=5000, on_hand=10, store=None, status=Product.Status.ACTIVE, requires_shipping=True):
        counter["n"] += 1
        product = Product.objects.create(
            sku=f"SKU-{counter['n']}-{uuid.uuid4().hex[:6]}",
            name=f"Product {counter['n']}",
            store_id=store or store_id,
            price_minor=price_minor,
            status=status,
            requires_shipping=requires_shipping,
        )
        InventoryRecord.objects.create(product=product, on_hand=on_hand)
        return product

    return _make


@pytest.fixture
def address():
    return Address(line1="12 Rue du Commerce", city="Lome", country="TG", phone="+22890112233")


@pytest.fixture
def workflow(db):
    from apps.orders.providers import get_order_workflow

    return get_order_workflow()


@pytest.fixture
def place_order(workflow, customer, address):
    """Create an order for ``customer`` through the workflow."""

    def _place(products_qty, method="tmoney", **kwargs):
        lines = [LineRequest(product_id=p.id, quantity=q) for p, q in products_qty]
        return workflow.create_order(customer.id, lines, address, method, **kwargs)

    return _place


@pytest.fixture
def auth_headers():
    """Trusted identity headers, as the edge authentication service sets them."""

    def _headers(actor: Actor) -> dict:
        headers = {"HTTP_X_ACTOR_ID": str(actor.id), "HTTP_X_ACTOR_ROLE": actor.role.value}
        if actor.store_ids:
            headers["HTTP_X_ACTOR_STORES"] = ",".join(str(s) for s in actor.store_ids)
        return headers

    return _headers


@pytest.fixture
def sign_webhook():
    def _sign(method: str, body: bytes) -> str:
        return hmac.new(WEBHOOK_SECRETS[method].encode(), body, hashlib.sha256).hexdigest()

    return _sign
