"""TMoney (Togocom) collection API."""

import time

from ..domain import PaymentMethod, PaymentRequest, PaymentStatus, ProviderInitiation, ProviderStatus
from .base import ProviderAdapter, ProviderError


class TMoneyAdapter(ProviderAdapter):
    """Bearer-authenticated JSON API with an HMAC-signed request body.

    The request signature covers ``merchant_id + amount + phone_number +
    transaction_id + timestamp`` under the merchant secret key.
    """

    method = PaymentMethod.TMONEY
    reference_prefix = "TMO"
    signature_header = "X-TMoney-Signature"
    required_credentials = ("base_url", "merchant_id", "api_key", "secret_key")
    status_map = {
        "SUCCESS": PaymentStatus.COMPLETED,
        "SUCCESSFUL": PaymentStatus.COMPLETED,
        "COMPLETED": PaymentStatus.COMPLETED,
        "FAILED": PaymentStatus.FAILED,
        "CANCELLED": PaymentStatus.FAILED,
        "EXPIRED": PaymentStatus.FAILED,
        "PENDING": PaymentStatus.PROCESSING,
        "INITIATED": PaymentStatus.PROCESSING,
    }

    def _auth(self) -> dict:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    @staticmethod
    def canonical_request(body: dict) -> str:
        return "".join(
            str(body[k]) for k in ("merchant_id", "amount", "phone_number", "transaction_id", "timestamp")
        )

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        body = {
            "merchant_id": self.config.merchant_id,
            "amount": request.amount_minor,
            "currency": request.currency,
            "phone_number": request.phone or "",
            "description": request.description,
            "transaction_id": request.transaction_reference,
            "callback_url": self.config.callback_url,
            "return_url": self.config.return_url,
            "cancel_url": self.config.cancel_url,
            "timestamp": str(int(time.time() * 1000)),
        }
        body["signature"] = self.sign(self.canonical_request(body), self.config.secret_key)
        data = self._post("/payment/request", json=body, headers=self._auth())
        reference = data.get("transaction_id")
        if not reference:
            raise ProviderError(f"tmoney: response without transaction_id: {data}")
        return ProviderInitiation(
            provider_reference=str(reference),
            redirect_url=data.get("payment_url"),
            instructions=data.get("message"),
            raw=data,
        )

    def verify(self, provider_reference: str) -> ProviderStatus:
        data = self._get(f"/payment/status/{provider_reference}", headers=self._auth())
        return ProviderStatus(status=self.normalize_status(data.get("status")), raw=data)
