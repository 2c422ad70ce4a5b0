"""Off-session charging of deferred one-off donations.

Odd-night daily giving (and any future-dated one-off cart item) is saved at
confirmation as an ACTIVE ``ScheduledCharge``. On its date the runner
charges the card saved during checkout and records the donation.
"""

import logging
from datetime import date

from django.db import transaction
from django.utils import timezone

from .domain import Frequency, GatewayPort, NumberAllocator, utc_today
from .errors import GatewayError
from .models import DonationModel, ScheduledChargeModel

logger = logging.getLogger("donations.scheduled")


class ScheduledChargeRunner:
    def __init__(self, gateway: GatewayPort, numbers: NumberAllocator):
        self.gateway = gateway
        self.numbers = numbers

    def due(self, today: date):
        return ScheduledChargeModel.objects.filter(
            status=ScheduledChargeModel.Status.ACTIVE, charge_date=today
        ).select_related("order", "campaign", "donor")

    def run(self, today: date | None = None) -> dict:
        """Charge every ACTIVE scheduled charge dated ``today``.

        Returns counts ``{"charged": n, "failed": m}``.
        """
        today = today or utc_today()
        result = {"charged": 0, "failed": 0}
        for charge in self.due(today):
            if self.charge(charge, today):
                result["charged"] += 1
            else:
                result["failed"] += 1
        logger.info("scheduled charges run", extra={"date": today.isoformat(), **result})
        return result

    def charge(self, charge: ScheduledChargeModel, today: date) -> bool:
        try:
            status = self.gateway.charge_saved_method(
                charge.customer_id,
                charge.payment_method_id,
                charge.amount_pence,
                idempotency_key=f"scheduled-{charge.id}-{today.isoformat()}",
                metadata={"orderNumber": charge.order.order_number, "scheduledChargeId": str(charge.id)},
            )
        except GatewayError as e:
            self._fail(charge, e.message or e.code)
            return False

        if status.status not in ("succeeded", "processing"):
            self._fail(charge, status.status)
            return False

        number = self.numbers.allocate()
        with transaction.atomic():
            locked = ScheduledChargeModel.objects.select_for_update().get(pk=charge.pk)
            if locked.status != ScheduledChargeModel.Status.ACTIVE:
                return locked.status == ScheduledChargeModel.Status.CHARGED
            donation = DonationModel.objects.create(
                donor=charge.donor,
                campaign=charge.campaign,
                order=charge.order,
                donation_number=number,
                amount_pence=charge.amount_pence,
                donation_type=charge.donation_type,
                frequency=Frequency.ONE_OFF.value,
                status=DonationModel.Status.COMPLETED,
                gift_aid=charge.gift_aid,
                billing_address=charge.order.billing_address,
                billing_postcode=charge.order.billing_postcode,
                transaction_id=status.id,
                completed_at=timezone.now(),
            )
            locked.status = ScheduledChargeModel.Status.CHARGED
            locked.donation = donation
            locked.save(update_fields=["status", "donation"])
        logger.info(
            "scheduled charge succeeded",
            extra={"scheduled_charge": str(charge.id), "donation_number": number},
        )
        return True

    def _fail(self, charge: ScheduledChargeModel, reason: str) -> None:
        ScheduledChargeModel.objects.filter(pk=charge.pk, status=ScheduledChargeModel.Status.ACTIVE).update(
            status=ScheduledChargeModel.Status.FAILED, failure_reason=reason[:255]
        )
        logger.warning("scheduled charge failed", extra={"scheduled_charge": str(charge.id), "reason": reason})
