"""Flooz (Moov Africa) debit-request API."""

import time

from ..domain import PaymentMethod, PaymentRequest, PaymentStatus, ProviderInitiation, ProviderStatus
from .base import ProviderAdapter, ProviderError


class FloozAdapter(ProviderAdapter):
    """Pushes a debit request to the customer's handset; no redirect page.

    Requests are signed over ``merchant|reference|amount|msisdn|timestamp``
    and the signature travels in the ``X-Flooz-Signature`` header.
    """

    method = PaymentMethod.FLOOZ
    reference_prefix = "FLZ"
    signature_header = "X-Flooz-Signature"
    required_credentials = ("base_url", "merchant_id", "api_key", "secret_key")
    webhook_reference_field = "request_id"
    webhook_status_field = "state"
    status_map = {
        "SUCCESS": PaymentStatus.COMPLETED,
        "COMPLETED": PaymentStatus.COMPLETED,
        "FAILED": PaymentStatus.FAILED,
        "REJECTED": PaymentStatus.FAILED,
        "EXPIRED": PaymentStatus.FAILED,
        "PENDING": PaymentStatus.PROCESSING,
    }

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        timestamp = str(int(time.time() * 1000))
        msisdn = (request.phone or "").lstrip("+")
        body = {
            "merchant": self.config.merchant_id,
            "reference": request.transaction_reference,
            "amount": request.amount_minor,
            "currency": request.currency,
            "msisdn": msisdn,
            "description": request.description,
            "callback_url": self.config.callback_url,
            "timestamp": timestamp,
        }
        canonical = "|".join(
            [self.config.merchant_id, request.transaction_reference, str(request.amount_minor), msisdn, timestamp]
        )
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            self.signature_header: self.sign(canonical, self.config.secret_key),
        }
        data = self._post("/v1/debit-requests", json=body, headers=headers)
        reference = data.get("request_id")
        if not reference:
            raise ProviderError(f"flooz: response without request_id: {data}")
        return ProviderInitiation(
            provider_reference=str(reference),
            instructions=data.get("ussd_prompt") or "Confirm the Flooz payment on your phone",
            raw=data,
        )

    def verify(self, provider_reference: str) -> ProviderStatus:
        data = self._get(
            f"/v1/debit-requests/{provider_reference}",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )
        return ProviderStatus(status=self.normalize_status(data.get("state")), raw=data)
