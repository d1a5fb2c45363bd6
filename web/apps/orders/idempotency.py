"""Idempotent replay for ``POST /api/orders/``.

The first request carrying an ``Idempotency-Key`` creates a record; once
the request finishes, its status code and body are stored on it. A retry
with the same key and the same payload gets the stored response back
without creating a second order or reserving stock again. Reusing a key
with a different payload is a conflict. Keys are scoped to the caller.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from apps.common.errors import Conflict

from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON payload (sorted keys, compact separators)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def scoped_key(actor_id, key: str) -> str:
    return f"{actor_id}:{key}"


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Get-or-create the record for ``key``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``; ``existing`` is True
        when an earlier request already used the key.

    Raises:
        Conflict: ``IDEMPOTENCY_CONFLICT`` when the key was used with a
            different payload.
    """
    h = _hash(payload)

    try:
        # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h)
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise Conflict("IDEMPOTENCY_CONFLICT", "Idempotency-Key was already used with another payload")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the final response so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])

