"""Idempotency-Key handling for ``POST /api/checkout``.

A retried checkout with the same key and the same body replays the stored
response instead of allocating a second order number and a second set of
gateway objects. Reusing a key with a different body is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .errors import DonationError
from .models import IdempotencyKey


class IdempotencyConflict(DonationError):
    code = "IDEMPOTENCY_CONFLICT"
    http_status = 409


def request_hash(payload) -> str:
    """SHA-256 of the payload serialized with sorted keys and compact separators."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload) -> tuple[bool, IdempotencyKey]:
    """Get-or-create the record for ``key``.

    Returns ``(existing, rec)``: ``existing`` is False when this call created
    the record (the caller runs the checkout and finalizes it), True when a
    previous request already owns the key.

    Raises:
        IdempotencyConflict: the key was used with a different payload.
    """
    h = request_hash(payload)
    try:
        # Savepoint: an IntegrityError only rolls back this block
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict()
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the response so retries short-circuit."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey) -> None:
    """Forget a key whose request failed in a retryable way."""
    rec.delete()
