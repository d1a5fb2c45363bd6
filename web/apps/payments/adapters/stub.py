"""In-process provider used when ``USE_HTTP_ADAPTERS`` is off (dev and tests)."""

from ..domain import PaymentRequest, PaymentStatus, ProviderInitiation, ProviderStatus, WebhookResult
from .base import ProviderAdapter, ProviderConfig, ProviderError


class StubProviderAdapter(ProviderAdapter):
    """Deterministic stand-in for a real provider.

    It keeps the real adapter's identity (method, reference prefix, signature
    header, status vocabulary and callback shape) and fee schedule, so
    pricing and webhook verification behave exactly as in production, but it
    never touches the network. Positive amounts are accepted with the
    reference ``STUB-<transaction reference>``.
    """

    def __init__(self, config: ProviderConfig, template: type[ProviderAdapter]):
        super().__init__(config)
        self._real = template(config)
        self.method = template.method
        self.reference_prefix = template.reference_prefix
        self.signature_header = template.signature_header
        self.supports_webhooks = template.supports_webhooks
        self.required_credentials = tuple(c for c in template.required_credentials if c != "base_url")
        self.status_map = template.status_map

    def fee_for(self, amount_minor: int) -> int:
        return self._real.fee_for(amount_minor)

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        if request.amount_minor <= 0:
            raise ProviderError(f"{self.method.value}: amount must be positive")
        reference = f"STUB-{request.transaction_reference}"
        redirect = f"{self.config.return_url}?ref={reference}" if self.config.return_url else None
        return ProviderInitiation(
            provider_reference=reference,
            redirect_url=redirect,
            instructions="Stub payment accepted",
            raw={"stub": True, "transaction_id": reference},
        )

    def verify(self, provider_reference: str) -> ProviderStatus:
        return ProviderStatus(status=PaymentStatus.PROCESSING, raw={"stub": True, "transaction_id": provider_reference})

    def parse_webhook(self, payload: dict) -> WebhookResult:
        return self._real.parse_webhook(payload)
