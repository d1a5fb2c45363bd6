"""MTN Mobile Money collection API (request-to-pay)."""

import uuid

from ..domain import PaymentMethod, PaymentRequest, PaymentStatus, ProviderInitiation, ProviderStatus
from .base import ProviderAdapter


class MtnMoneyAdapter(ProviderAdapter):
    """Request-to-pay: we choose the reference id, MTN answers 202 with no body.

    The final outcome arrives on the callback URL or through the status
    endpoint keyed by the same reference id.
    """

    method = PaymentMethod.MTN_MONEY
    reference_prefix = "MTN"
    signature_header = "X-MTN-Signature"
    required_credentials = ("base_url", "merchant_id", "api_key", "secret_key")
    webhook_reference_field = "referenceId"
    status_map = {
        "SUCCESSFUL": PaymentStatus.COMPLETED,
        "SUCCESS": PaymentStatus.COMPLETED,
        "FAILED": PaymentStatus.FAILED,
        "REJECTED": PaymentStatus.FAILED,
        "TIMEOUT": PaymentStatus.FAILED,
        "PENDING": PaymentStatus.PROCESSING,
    }

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        reference = str(uuid.uuid4())
        msisdn = (request.phone or "").lstrip("+")
        body = {
            "amount": str(request.amount_minor),
            "currency": request.currency,
            "externalId": request.transaction_reference,
            "payer": {"partyIdType": "MSISDN", "partyId": msisdn},
            "payerMessage": request.description,
            "payeeNote": request.order_number,
        }
        canonical = "\n".join([reference, str(request.amount_minor), request.currency, msisdn])
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "X-Reference-Id": reference,
            "X-Callback-Url": self.config.callback_url,
            "X-Merchant-Id": self.config.merchant_id,
            "X-Signature": self.sign(canonical, self.config.secret_key),
        }
        data = self._post("/collection/v1_0/requesttopay", json=body, headers=headers)
        return ProviderInitiation(
            provider_reference=reference,
            instructions="Approve the MTN MoMo request on your phone",
            raw={"reference_id": reference, **data},
        )

    def verify(self, provider_reference: str) -> ProviderStatus:
        data = self._get(
            f"/collection/v1_0/requesttopay/{provider_reference}",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )
        return ProviderStatus(status=self.normalize_status(data.get("status")), raw=data)
