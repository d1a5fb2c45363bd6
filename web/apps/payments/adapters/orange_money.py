"""Orange Money web-payment API (OAuth2 client credentials)."""

from ..domain import PaymentMethod, PaymentRequest, PaymentStatus, ProviderInitiation, ProviderStatus
from .base import ProviderAdapter, ProviderError


class OrangeMoneyAdapter(ProviderAdapter):
    method = PaymentMethod.ORANGE_MONEY
    reference_prefix = "ORA"
    signature_header = "X-Orange-Signature"
    required_credentials = ("base_url", "client_id", "client_secret")
    webhook_reference_field = "txn_id"
    status_map = {
        "SUCCESS": PaymentStatus.COMPLETED,
        "SUCCESSFUL": PaymentStatus.COMPLETED,
        "FAILED": PaymentStatus.FAILED,
        "EXPIRED": PaymentStatus.FAILED,
        "CANCELLED": PaymentStatus.FAILED,
        "PENDING": PaymentStatus.PROCESSING,
        "INITIATED": PaymentStatus.PROCESSING,
    }

    def _access_token(self) -> str:
        data = self._post(
            "/oauth/token",
            data={"grant_type": "client_credentials"},
            auth=(self.config.client_id, self.config.client_secret),
        )
        token = data.get("access_token")
        if not token:
            raise ProviderError("orange_money: token endpoint returned no access_token")
        return token

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        token = self._access_token()
        body = {
            "merchant_key": self.config.merchant_id,
            "currency": request.currency,
            "order_id": request.transaction_reference,
            "amount": request.amount_minor,
            "return_url": self.config.return_url,
            "cancel_url": self.config.cancel_url,
            "notif_url": self.config.callback_url,
            "lang": "fr",
            "reference": request.order_number,
        }
        canonical = f"{self.config.client_id}:{request.transaction_reference}:{request.amount_minor}:{request.currency}"
        headers = {
            "Authorization": f"Bearer {token}",
            "X-Signature": self.sign(canonical, self.config.client_secret),
        }
        data = self._post("/payment/request", json=body, headers=headers)
        reference = data.get("txn_id")
        if not reference:
            raise ProviderError(f"orange_money: response without txn_id: {data}")
        return ProviderInitiation(
            provider_reference=str(reference),
            redirect_url=data.get("payment_url"),
            raw=data,
        )

    def verify(self, provider_reference: str) -> ProviderStatus:
        token = self._access_token()
        data = self._get(
            f"/payment/status/{provider_reference}",
            headers={"Authorization": f"Bearer {token}"},
        )
        return ProviderStatus(status=self.normalize_status(data.get("status")), raw=data)
