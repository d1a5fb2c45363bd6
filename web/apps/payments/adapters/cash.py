from ..domain import PaymentMethod, PaymentRequest, PaymentStatus, ProviderInitiation, ProviderStatus
from .base import ProviderAdapter


class CashOnDeliveryAdapter(ProviderAdapter):
    """Manual settlement: nothing is sent anywhere and no callbacks exist.

    The courier collects the money; the order workflow records the payment
    when the order is marked delivered.
    """

    method = PaymentMethod.CASH_ON_DELIVERY
    reference_prefix = "COD"
    supports_webhooks = False

    def fee_for(self, amount_minor: int) -> int:
        return 0

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        return ProviderInitiation(
            provider_reference=None,
            instructions="Pay in cash when the order is delivered",
            raw={"settlement": "manual"},
        )

    def verify(self, provider_reference: str) -> ProviderStatus:
        return ProviderStatus(status=PaymentStatus.PENDING, raw={"settlement": "manual"})

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        return False
