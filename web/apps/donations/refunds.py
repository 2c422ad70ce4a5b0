"""Refunds of completed donations.

A refunded donation leaves the COMPLETED set, so it no longer appears on
the Gift Aid schedule and can never be marked claimed. Refunds reach us
two ways: an admin refunds a one-off card payment through the gateway, or
Stripe reports a refund made elsewhere (the dashboard) with
``charge.refunded``.
"""

import logging

from django.db import transaction

from .domain import GatewayPort
from .errors import NotFound, ValidationFailed
from .models import DonationModel

logger = logging.getLogger("donations.refunds")


class RefundService:
    def __init__(self, gateway: GatewayPort):
        self.gateway = gateway

    def refund(self, donation_id, reason: str, amount_pence: int | None = None) -> dict:
        """Refund a donation in full (default) or in part.

        A partial refund still moves the donation to REFUNDED: it can no
        longer back a Gift Aid claim for its original amount.

        Raises:
            NotFound: Unknown donation.
            ValidationFailed: ``DONATION_NOT_REFUNDABLE`` when it is not
                COMPLETED, ``REFUND_UNSUPPORTED`` for anything but a one-off
                card payment, ``REFUND_EXCEEDS_AMOUNT`` for a partial refund
                larger than the donation.
            GatewayError: The gateway rejected or could not take the refund.
        """
        donation = DonationModel.objects.filter(id=donation_id).first()
        if donation is None:
            raise NotFound("DONATION_NOT_FOUND")
        if donation.status != DonationModel.Status.COMPLETED:
            raise ValidationFailed("DONATION_NOT_REFUNDABLE", message=donation.status)
        if not (donation.transaction_id or "").startswith("pi_"):
            raise ValidationFailed("REFUND_UNSUPPORTED")
        if amount_pence is not None and amount_pence > donation.amount_pence:
            raise ValidationFailed("REFUND_EXCEEDS_AMOUNT")

        refund = self.gateway.refund_payment(
            donation.transaction_id,
            amount_pence=amount_pence,
            reason=reason,
            idempotency_key=f"refund-{donation.id}",
        )
        with transaction.atomic():
            DonationModel.objects.filter(pk=donation.pk, status=DonationModel.Status.COMPLETED).update(
                status=DonationModel.Status.REFUNDED
            )
        logger.info(
            "donation refunded",
            extra={"donation_number": donation.donation_number, "refund_id": refund.id, "reason": reason},
        )
        return {
            "donationNumber": donation.donation_number,
            "status": DonationModel.Status.REFUNDED.value,
            "refundId": refund.id,
            "refundStatus": refund.status,
            "amountPence": amount_pence or donation.amount_pence,
        }

    def mark_refunded(self, payment_intent_id: str) -> int:
        """Move the COMPLETED donations paid by ``payment_intent_id`` to REFUNDED."""
        updated = DonationModel.objects.filter(
            transaction_id=payment_intent_id, status=DonationModel.Status.COMPLETED
        ).update(status=DonationModel.Status.REFUNDED)
        if updated:
            logger.info("donations refunded by gateway", extra={"payment_intent": payment_intent_id, "updated": updated})
        return updated
