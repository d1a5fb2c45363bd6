"""Common base for payment provider adapters.

An adapter turns a generic ``PaymentRequest`` into one provider's native
HTTP call and normalizes the provider's answers and callbacks back into
``ProviderInitiation``, ``ProviderStatus`` and ``WebhookResult``. Each
adapter receives its ``ProviderConfig`` at construction time.

Outbound calls use ``httpx`` with a bounded timeout and propagate the
``X-Request-ID`` of the inbound request. Collection requests are sent once:
a timeout counts as a failure rather than an unknown state. Status checks
are idempotent GETs and are retried with exponential backoff on transport
errors and 5xx answers.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx

from apps.common.errors import ValidationFailed
from gateway.middleware import REQUEST_ID_CTX

from ..domain import (
    PaymentMethod,
    PaymentRequest,
    PaymentStatus,
    ProviderInitiation,
    ProviderStatus,
    WebhookResult,
)

logger = logging.getLogger("payments")


class ProviderError(Exception):
    """Transport, protocol or business failure reported while talking to a provider.

    The message may contain raw provider text; it is stored for audit and
    never shown to customers.
    """


@dataclass(frozen=True)
class FeeSchedule:
    """Percentage fee clamped to an absolute minimum and maximum (minor units)."""

    percent: Decimal = Decimal("0")
    minimum: int = 0
    maximum: int = 0

    def fee_for(self, amount_minor: int) -> int:
        if amount_minor <= 0 or self.percent <= 0:
            return 0
        raw = (Decimal(amount_minor) * self.percent / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        fee = max(Decimal(self.minimum), raw)
        if self.maximum > 0:
            fee = min(fee, Decimal(self.maximum))
        return int(fee)


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials, endpoints and policies for one provider."""

    method: PaymentMethod
    base_url: str = ""
    merchant_id: str = ""
    api_key: str = ""
    secret_key: str = ""
    client_id: str = ""
    client_secret: str = ""
    webhook_secret: str = ""
    fee: FeeSchedule = field(default_factory=FeeSchedule)
    timeout: float = 10.0
    retry_max: int = 3
    backoff_base: float = 0.15
    retry_max_sleep: float = 0.5
    callback_url: str = ""
    return_url: str = ""
    cancel_url: str = ""


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


class ProviderAdapter:
    """Base class for one payment method's integration.

    Subclasses set the class attributes and implement ``initiate`` and
    ``verify``. ``parse_webhook`` handles the common
    ``{"transaction_id", "status", "amount"}`` callback shape and can be
    overridden.
    """

    method: PaymentMethod
    reference_prefix: str = "PAY"
    signature_header: str | None = None
    supports_webhooks: bool = True
    required_credentials: tuple[str, ...] = ()
    status_map: dict[str, PaymentStatus] = {}
    webhook_reference_field: str = "transaction_id"
    webhook_status_field: str = "status"

    def __init__(self, config: ProviderConfig):
        self.config = config

    # ---- capability ----
    def is_configured(self) -> bool:
        return all(getattr(self.config, name) for name in self.required_credentials)

    def fee_for(self, amount_minor: int) -> int:
        return self.config.fee.fee_for(amount_minor)

    def initiate(self, request: PaymentRequest) -> ProviderInitiation:
        raise NotImplementedError()

    def verify(self, provider_reference: str) -> ProviderStatus:
        raise NotImplementedError()

    # ---- normalization ----
    def normalize_status(self, raw: Any) -> PaymentStatus:
        key = str(raw or "").strip().upper()
        try:
            return self.status_map[key]
        except KeyError:
            raise ProviderError(f"{self.method.value}: unknown status {raw!r}") from None

    def parse_webhook(self, payload: dict) -> WebhookResult:
        """Normalize a callback body.

        Raises:
            ValidationFailed: ``MALFORMED_PAYLOAD`` when the reference or the
                status is missing or not understood.
        """
        if not isinstance(payload, dict):
            raise ValidationFailed("MALFORMED_PAYLOAD", "Webhook body must be a JSON object")
        reference = payload.get(self.webhook_reference_field)
        reported = payload.get(self.webhook_status_field)
        if not reference or not reported:
            raise ValidationFailed("MALFORMED_PAYLOAD", "Webhook is missing reference or status")
        try:
            status = self.normalize_status(reported)
        except ProviderError as exc:
            raise ValidationFailed("MALFORMED_PAYLOAD", str(exc)) from exc
        amount = payload.get("amount")
        try:
            amount_minor = int(Decimal(str(amount))) if amount is not None else None
        except ArithmeticError:
            amount_minor = None
        return WebhookResult(
            provider_reference=str(reference),
            status=status,
            reported_status=str(reported),
            amount_minor=amount_minor,
        )

    # ---- signatures ----
    @staticmethod
    def sign(canonical: str, key: str) -> str:
        """HMAC-SHA256 hex digest of ``canonical`` under ``key``."""
        return hmac.new(key.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        """Check a callback signature over the raw body in constant time.

        Callbacks are rejected when no webhook secret is configured.
        """
        secret = self.config.webhook_secret
        if not secret or not signature:
            return False
        candidate = signature.strip()
        if candidate.lower().startswith("sha256="):
            candidate = candidate[len("sha256="):]
        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, candidate.lower())

    # ---- HTTP plumbing ----
    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self, extra: Optional[dict] = None) -> dict:
        headers: dict[str, str] = {}
        rid = REQUEST_ID_CTX.get()
        if rid and rid != "-":
            headers["X-Request-ID"] = rid
        if extra:
            headers.update(extra)
        return headers

    def _decode(self, resp: httpx.Response) -> dict:
        if resp.status_code >= 400:
            raise ProviderError(f"{self.method.value}: HTTP {resp.status_code}: {resp.text[:500]}")
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.method.value}: response is not JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"{self.method.value}: unexpected response shape")
        return data

    def _post(self, path: str, *, json=None, data=None, headers=None, auth=None) -> dict:
        """Send one POST; any transport error or timeout becomes ``ProviderError``."""
        try:
            with httpx.Client(timeout=self.config.timeout) as client:
                resp = client.post(
                    self._url(path), json=json, data=data, headers=self._headers(headers), auth=auth
                )
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.method.value}: {type(exc).__name__}: {exc}") from exc
        return self._decode(resp)

    def _get(self, path: str, *, headers=None) -> dict:
        """GET with retries and exponential backoff on transport errors and 5xx."""
        max_retries = max(1, self.config.retry_max)
        hdrs = self._headers(headers)
        hdrs["X-Retry-Count"] = "0"
        tries = 0
        with httpx.Client(timeout=self.config.timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.get(self._url(path), headers=hdrs)
                    if not _should_retry(resp, None):
                        return self._decode(resp)
                except httpx.HTTPError as e:
                    exc = e

                tries += 1
                hdrs["X-Retry-Count"] = str(tries)
                if tries >= max_retries:
                    if exc is not None:
                        raise ProviderError(f"{self.method.value}: {type(exc).__name__}: {exc}") from exc
                    return self._decode(resp)

                sleep_s = self.config.backoff_base * (2 ** (tries - 1))
                logger.info(
                    "retrying provider status check",
                    extra={"provider": self.method.value, "attempt": tries},
                )
                time.sleep(min(sleep_s, self.config.retry_max_sleep))
