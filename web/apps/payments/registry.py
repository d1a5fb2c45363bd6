"""Provider registry: one adapter instance per payment method.

The registry is the lookup table the orchestrator, the pricing code and the
webhook gateway use instead of branching on the method name. It is built
from Django settings on demand; nothing here is cached between requests.
"""

from decimal import Decimal
from typing import Iterator, Mapping, Optional

from apps.common.errors import NotFound, ValidationFailed

from .adapters import (
    CashOnDeliveryAdapter,
    FeeSchedule,
    FloozAdapter,
    MtnMoneyAdapter,
    OrangeMoneyAdapter,
    ProviderAdapter,
    ProviderConfig,
    StubProviderAdapter,
    TMoneyAdapter,
)
from .domain import PaymentMethod

ADAPTER_CLASSES: dict[PaymentMethod, type[ProviderAdapter]] = {
    PaymentMethod.TMONEY: TMoneyAdapter,
    PaymentMethod.FLOOZ: FloozAdapter,
    PaymentMethod.ORANGE_MONEY: OrangeMoneyAdapter,
    PaymentMethod.MTN_MONEY: MtnMoneyAdapter,
}

# None means "every country".
METHOD_COUNTRIES: dict[PaymentMethod, Optional[frozenset[str]]] = {
    PaymentMethod.TMONEY: frozenset({"TG"}),
    PaymentMethod.FLOOZ: frozenset({"TG"}),
    PaymentMethod.ORANGE_MONEY: frozenset({"TG", "SN", "ML", "BF", "CI", "CM", "MG"}),
    PaymentMethod.MTN_MONEY: frozenset({"GH", "UG", "RW", "ZM", "CI", "CM", "BJ"}),
    PaymentMethod.CASH_ON_DELIVERY: None,
}

METHOD_LABELS = {
    PaymentMethod.TMONEY: "TMoney",
    PaymentMethod.FLOOZ: "Flooz",
    PaymentMethod.ORANGE_MONEY: "Orange Money",
    PaymentMethod.MTN_MONEY: "MTN Mobile Money",
    PaymentMethod.CASH_ON_DELIVERY: "Cash on delivery",
}


def _slug(method: PaymentMethod) -> str:
    return method.value.replace("_", "-")


class ProviderRegistry:
    def __init__(self, adapters: Mapping[PaymentMethod, ProviderAdapter]):
        self._adapters = dict(adapters)

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(self._adapters.values())

    def get(self, method) -> ProviderAdapter:
        """Return the adapter for ``method`` whether or not it is configured.

        Raises:
            ValidationFailed: ``PAYMENT_METHOD_UNAVAILABLE`` for unknown methods.
        """
        try:
            return self._adapters[PaymentMethod(method)]
        except (ValueError, KeyError):
            raise ValidationFailed("PAYMENT_METHOD_UNAVAILABLE", f"Unknown payment method {method!r}") from None

    def get_configured(self, method) -> ProviderAdapter:
        adapter = self.get(method)
        if not adapter.is_configured():
            raise ValidationFailed(
                "PAYMENT_METHOD_UNAVAILABLE", f"Payment method {adapter.method.value} is not configured"
            )
        return adapter

    def for_webhook(self, provider_slug: str) -> ProviderAdapter:
        """Resolve the adapter from a webhook URL segment (``orange-money`` or ``orange_money``)."""
        key = (provider_slug or "").strip().lower().replace("-", "_")
        try:
            adapter = self._adapters[PaymentMethod(key)]
        except (ValueError, KeyError):
            raise NotFound("UNKNOWN_PROVIDER", f"Unknown payment provider {provider_slug!r}") from None
        if not adapter.supports_webhooks:
            raise NotFound("UNKNOWN_PROVIDER", f"{adapter.method.value} does not send webhooks")
        return adapter

    def available_methods(self, country: Optional[str] = None, amount_minor: Optional[int] = None) -> list[dict]:
        """Configured methods usable in ``country``, with fees when an amount is given."""
        country = (country or "").strip().upper() or None
        methods = []
        for method, adapter in self._adapters.items():
            countries = METHOD_COUNTRIES.get(method)
            if country and countries is not None and country not in countries:
                continue
            if not adapter.is_configured():
                continue
            entry = {
                "id": method.value,
                "name": METHOD_LABELS[method],
                "fee_percent": str(adapter.config.fee.percent),
                "countries": sorted(countries) if countries is not None else None,
                "requires_phone": method.is_mobile_money,
            }
            if amount_minor is not None:
                fee = adapter.fee_for(amount_minor)
                entry["fee_minor"] = fee
                entry["total_minor"] = amount_minor + fee
            methods.append(entry)
        return methods


def provider_config(method: PaymentMethod, values: Mapping, conf) -> ProviderConfig:
    """Build a ``ProviderConfig`` from one ``PAYMENT_PROVIDERS`` entry."""
    callback_base = conf.PAYMENT_CALLBACK_BASE_URL.rstrip("/")
    frontend = conf.FRONTEND_URL.rstrip("/")
    return ProviderConfig(
        method=method,
        base_url=values.get("base_url", ""),
        merchant_id=values.get("merchant_id", ""),
        api_key=values.get("api_key", ""),
        secret_key=values.get("secret_key", ""),
        client_id=values.get("client_id", ""),
        client_secret=values.get("client_secret", ""),
        webhook_secret=values.get("webhook_secret", ""),
        fee=FeeSchedule(
            percent=Decimal(str(values.get("fee_percent", "0"))),
            minimum=int(values.get("fee_min", 0)),
            maximum=int(values.get("fee_max", 0)),
        ),
        timeout=float(conf.HTTP_TIMEOUT_SECS),
        retry_max=int(conf.HTTP_RETRY_MAX),
        backoff_base=float(conf.HTTP_RETRY_BACKOFF_BASE),
        retry_max_sleep=float(conf.HTTP_RETRY_MAX_SLEEP),
        callback_url=f"{callback_base}/api/payments/webhook/{_slug(method)}/",
        return_url=f"{frontend}/checkout/success",
        cancel_url=f"{frontend}/checkout/cancel",
    )


def build_registry(conf=None) -> ProviderRegistry:
    """Instantiate every adapter from settings.

    Real HTTP adapters are used when ``USE_HTTP_ADAPTERS`` is on; otherwise
    each method gets a ``StubProviderAdapter`` with the same configuration.
    """
    if conf is None:
        from django.conf import settings as conf

    adapters: dict[PaymentMethod, ProviderAdapter] = {
        PaymentMethod.CASH_ON_DELIVERY: CashOnDeliveryAdapter(
            ProviderConfig(method=PaymentMethod.CASH_ON_DELIVERY)
        ),
    }
    providers = getattr(conf, "PAYMENT_PROVIDERS", {}) or {}
    for method, cls in ADAPTER_CLASSES.items():
        config = provider_config(method, providers.get(method.value, {}), conf)
        adapters[method] = cls(config) if conf.USE_HTTP_ADAPTERS else StubProviderAdapter(config, cls)
    return ProviderRegistry(adapters)
