"""Webhook gateway: authenticate, deduplicate and dispatch provider callbacks.

Processing order matters: the signature is checked against the raw body
before anything is parsed or written, so an unauthenticated request leaves
no trace besides a warning log line. Authenticated callbacks are recorded
in ``webhook_events`` keyed by ``(provider, sha256(body))``:

- a byte-identical replay of an event that was already applied (or found
  to be a duplicate) is acknowledged without touching the payment;
- an event that previously referenced an unknown payment is dispatched
  again, which resolves callbacks that overtook the initiation response.
"""

import hashlib
import json
import logging
from typing import Mapping, Optional

from django.db import IntegrityError, transaction
from django.db.models import F

from apps.common.errors import SignatureInvalid, ValidationFailed

from .domain import ApplyOutcome
from .models import WebhookEvent
from .orchestrator import PaymentOrchestrator
from .registry import ProviderRegistry

logger = logging.getLogger("webhooks")


def _header(headers: Mapping[str, str], name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class WebhookGateway:
    def __init__(self, registry: ProviderRegistry, orchestrator: PaymentOrchestrator):
        self.registry = registry
        self.orchestrator = orchestrator

    def receive(self, provider: str, body: bytes, headers: Mapping[str, str]) -> dict:
        """Handle one callback delivery.

        Args:
            provider: URL slug of the provider (``orange-money`` or ``orange_money``).
            body: Raw request body, exactly as received.
            headers: Request headers; looked up case-insensitively.

        Returns:
            A small acknowledgement body with the outcome.

        Raises:
            NotFound: ``UNKNOWN_PROVIDER``.
            SignatureInvalid: ``INVALID_SIGNATURE``; nothing is written.
            ValidationFailed: ``MALFORMED_PAYLOAD``.
        """
        adapter = self.registry.for_webhook(provider)
        method = adapter.method.value

        signature = _header(headers, adapter.signature_header)
        if not adapter.verify_signature(body, signature):
            logger.warning(
                "webhook signature rejected",
                extra={"provider": method, "signature_present": bool(signature)},
            )
            raise SignatureInvalid("INVALID_SIGNATURE", "Webhook signature verification failed")

        try:
            payload = json.loads(body)
        except ValueError:
            raise ValidationFailed("MALFORMED_PAYLOAD", "Webhook body is not valid JSON") from None
        result = adapter.parse_webhook(payload)
        digest = hashlib.sha256(body).hexdigest()

        with transaction.atomic():
            event, created = self._record(method, digest, result.provider_reference, result.reported_status, payload)
            if not created and event.outcome != WebhookEvent.Outcome.NOT_FOUND:
                WebhookEvent.objects.filter(pk=event.pk).update(attempts=F("attempts") + 1)
                logger.info(
                    "webhook replay acknowledged",
                    extra={"provider": method, "provider_reference": result.provider_reference},
                )
                return {"received": True, "outcome": ApplyOutcome.DUPLICATE.value}

            outcome = self.orchestrator.apply_webhook_result(
                result.provider_reference, result.status, payload, method=method
            )
            event.outcome = outcome.value
            event.needs_review = outcome is ApplyOutcome.NOT_FOUND
            if not created:
                event.attempts = event.attempts + 1
            event.save(update_fields=["outcome", "needs_review", "attempts", "updated_at"])

        if outcome is ApplyOutcome.NOT_FOUND:
            logger.warning(
                "webhook references unknown payment",
                extra={"provider": method, "provider_reference": result.provider_reference},
            )
        return {"received": True, "outcome": outcome.value}

    @staticmethod
    def _record(provider: str, digest: str, reference: str, reported: str, payload: dict):
        try:
            # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
            with transaction.atomic():
                event = WebhookEvent.objects.create(
                    provider=provider,
                    payload_hash=digest,
                    provider_reference=reference,
                    reported_status=reported,
                    payload=payload,
                )
                return event, True
        except IntegrityError:
            event = WebhookEvent.objects.select_for_update().get(provider=provider, payload_hash=digest)
            return event, False
