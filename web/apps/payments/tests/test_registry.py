import pytest
from django.conf import settings

from apps.common.errors import NotFound, ValidationFailed
from apps.payments.adapters import CashOnDeliveryAdapter, StubProviderAdapter, TMoneyAdapter
from apps.payments.domain import PaymentMethod
from apps.payments.registry import build_registry


def test_stub_adapters_when_http_is_disabled():
    registry = build_registry(settings)
    assert isinstance(registry.get("tmoney"), StubProviderAdapter)
    assert isinstance(registry.get("cash_on_delivery"), CashOnDeliveryAdapter)


def test_real_adapters_when_http_is_enabled(settings):
    settings.USE_HTTP_ADAPTERS = True
    adapter = build_registry(settings).get("tmoney")
    assert isinstance(adapter, TMoneyAdapter)
    assert adapter.config.base_url == "https://tmoney.example.test"


def test_provider_urls(settings):
    settings.PAYMENT_CALLBACK_BASE_URL = "https://api.shop.test/"
    settings.FRONTEND_URL = "https://shop.test"
    config = build_registry(settings).get("orange_money").config
    assert config.callback_url == "https://api.shop.test/api/payments/webhook/orange-money/"
    assert config.return_url == "https://shop.test/checkout/success"
    assert config.cancel_url == "https://shop.test/checkout/cancel"


def test_unknown_method():
    with pytest.raises(ValidationFailed) as exc:
        build_registry(settings).get("bitcoin")
    assert exc.value.code == "PAYMENT_METHOD_UNAVAILABLE"


def test_unconfigured_method_is_unavailable(settings):
    settings.PAYMENT_PROVIDERS = {**settings.PAYMENT_PROVIDERS, "mtn_money": {}}
    registry = build_registry(settings)
    with pytest.raises(ValidationFailed):
        registry.get_configured("mtn_money")
    assert "mtn_money" not in {m["id"] for m in registry.available_methods()}


@pytest.mark.parametrize("slug", ["orange-money", "orange_money", "Orange-Money"])
def test_webhook_slug_resolution(slug):
    assert build_registry(settings).for_webhook(slug).method is PaymentMethod.ORANGE_MONEY


@pytest.mark.parametrize("slug", ["cash-on-delivery", "paypal", ""])
def test_webhook_slug_rejected(slug):
    with pytest.raises(NotFound) as exc:
        build_registry(settings).for_webhook(slug)
    assert exc.value.code == "UNKNOWN_PROVIDER"


def test_available_methods_by_country_with_fees():
    methods = {m["id"]: m for m in build_registry(settings).available_methods("tg", 12000)}

    assert set(methods) == {"tmoney", "flooz", "orange_money", "cash_on_delivery"}
    assert methods["tmoney"]["fee_minor"] == 180
    assert methods["tmoney"]["total_minor"] == 12180
    assert methods["tmoney"]["requires_phone"] is True
    assert methods["cash_on_delivery"]["fee_minor"] == 0
    assert methods["cash_on_delivery"]["countries"] is None

    ghana = {m["id"] for m in build_registry(settings).available_methods("GH")}
    assert ghana == {"mtn_money", "cash_on_delivery"}
