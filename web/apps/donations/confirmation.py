"""Order confirmation.

Turns a PENDING order into CONFIRMED once the gateway reports the payment
(or card setup) as done, writing the donation records that result from it.
Confirmation is idempotent: the first success stores an acknowledgement on
the order and every later call, whether a client retry or a duplicate
webhook, gets that same acknowledgement back without writing anything.
The acknowledgement is committed with ``receipt: "pending"``; the receipt
outcome replaces it once the notifier returns, so a call that lands in
between sees the pending marker, and an order left at "pending" is one
whose receipt was never dispatched.
"""

import calendar
import logging
from datetime import date, timedelta

from django.db import transaction
from django.utils import timezone

from .domain import Frequency, GatewayPort, NotifierPort, NumberAllocator, utc_today
from .errors import NotFound, NotificationFailure, PaymentIncomplete, ValidationFailed
from .models import (
    DonationModel,
    OrderModel,
    RecurringDonationModel,
    ScheduledChargeModel,
)

logger = logging.getLogger("donations.confirmation")

PAID_STATUSES = {"succeeded", "processing"}
SETUP_STATUSES = {"succeeded"}


def next_charge_date(start: date, frequency: Frequency) -> date:
    if frequency is Frequency.DAILY:
        return start + timedelta(days=1)
    if frequency is Frequency.MONTHLY:
        year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
        return date(year, month, min(start.day, calendar.monthrange(year, month)[1]))
    if frequency is Frequency.YEARLY:
        day = min(start.day, calendar.monthrange(start.year + 1, start.month)[1])
        return date(start.year + 1, start.month, day)
    raise ValueError(frequency)


class ConfirmationService:
    def __init__(self, gateway: GatewayPort, notifier: NotifierPort, numbers: NumberAllocator):
        self.gateway = gateway
        self.notifier = notifier
        self.numbers = numbers

    def confirm(
        self,
        order_number: str,
        payment_intent_id: str | None = None,
        subscription_id: str | None = None,
        setup_intent_id: str | None = None,
    ) -> dict:
        """Confirm an order and return its acknowledgement.

        Args:
            order_number: Number allocated at checkout.
            payment_intent_id: Gateway payment reference, if any.
            subscription_id: Gateway subscription reference, if any.
            setup_intent_id: Gateway setup reference, if any.

        Returns:
            dict: The acknowledgement (``ok``, ``orderNumber``, ``status``,
            created ``donations``/``recurring``/``scheduled`` and the
            ``receipt`` outcome).

        Raises:
            ValidationFailed: No reference, or a reference that does not
                belong to the order.
            NotFound: Unknown order.
            PaymentIncomplete: The gateway has not completed the payment.
            GatewayError: The gateway could not be queried.
        """
        refs = {
            "payment_intent_id": payment_intent_id,
            "subscription_id": subscription_id,
            "setup_intent_id": setup_intent_id,
        }
        if not any(refs.values()):
            raise ValidationFailed("PAYMENT_REFERENCE_REQUIRED")

        order = OrderModel.objects.select_related("donor").filter(order_number=order_number).first()
        if order is None:
            raise NotFound("ORDER_NOT_FOUND")
        for field, value in refs.items():
            if value and value != getattr(order, field):
                raise ValidationFailed("PAYMENT_REFERENCE_MISMATCH")

        if order.status == OrderModel.Status.CONFIRMED:
            return order.confirmation
        if order.status == OrderModel.Status.FAILED:
            raise PaymentIncomplete(message="canceled")

        payment_method_id = self._verify(order)
        today = utc_today()
        items = list(order.items.select_related("campaign"))
        deferred_subscriptions = self._start_deferred_subscriptions(order, items, payment_method_id)
        numbers = [self.numbers.allocate() for i in items if not i.deferred]

        with transaction.atomic():
            locked = OrderModel.objects.select_for_update().get(pk=order.pk)
            if locked.status == OrderModel.Status.CONFIRMED:
                return locked.confirmation
            ack = self._record(locked, items, numbers, deferred_subscriptions, payment_method_id, today)
            locked.status = OrderModel.Status.CONFIRMED
            locked.confirmation = ack
            locked.confirmed_at = timezone.now()
            locked.save(update_fields=["status", "confirmation", "confirmed_at"])

        logger.info(
            "order confirmed",
            extra={"order_number": order_number, "donations": len(ack["donations"]), "mode": locked.mode},
        )
        return self._send_receipt(locked, ack)

    def _verify(self, order: OrderModel) -> str | None:
        """Check every gateway object of the order; return the payment method to reuse."""
        checks = []
        if order.payment_intent_id:
            checks.append((self.gateway.retrieve_payment(order.payment_intent_id), PAID_STATUSES))
        if order.subscription_id:
            checks.append((self.gateway.retrieve_subscription(order.subscription_id), PAID_STATUSES))
        if order.setup_intent_id:
            checks.append((self.gateway.retrieve_setup(order.setup_intent_id), SETUP_STATUSES))

        for status, accepted in checks:
            if status.status == "canceled":
                OrderModel.objects.filter(pk=order.pk, status=OrderModel.Status.PENDING).update(
                    status=OrderModel.Status.FAILED
                )
                logger.warning("order failed", extra={"order_number": order.order_number, "gateway_id": status.id})
                raise PaymentIncomplete(message=status.status)
            if status.status not in accepted:
                raise PaymentIncomplete(message=status.status)
        return next((s.payment_method_id for s, _ in checks if s.payment_method_id), None)

    def _start_deferred_subscriptions(self, order, items, payment_method_id) -> dict:
        started = {}
        for line, item in enumerate(items):
            frequency = Frequency(item.frequency)
            if item.deferred and frequency.is_recurring:
                started[item.pk] = self.gateway.start_subscription(
                    order.order_number,
                    order.customer_id,
                    payment_method_id,
                    item.amount_pence,
                    frequency.interval,
                    item.start_date,
                    end_date=item.daily_end_date,
                    line=line,
                )
        return started

    def _record(self, order, items, numbers, deferred_subscriptions, payment_method_id, today) -> dict:
        now = timezone.now()
        numbers = iter(numbers)
        ack = {
            "ok": True,
            "orderNumber": order.order_number,
            "status": OrderModel.Status.CONFIRMED.value,
            "mode": order.mode,
            "donations": [],
            "recurring": [],
            "scheduled": [],
            "receipt": "pending",
        }
        for item in items:
            frequency = Frequency(item.frequency)
            if not item.deferred:
                donation = DonationModel.objects.create(
                    donor=order.donor,
                    campaign=item.campaign,
                    order=order,
                    donation_number=next(numbers),
                    amount_pence=item.amount_pence,
                    donation_type=item.donation_type,
                    frequency=item.frequency,
                    status=DonationModel.Status.COMPLETED,
                    gift_aid=order.gift_aid,
                    billing_address=order.billing_address,
                    billing_postcode=order.billing_postcode,
                    transaction_id=order.subscription_id if frequency.is_recurring else order.payment_intent_id,
                    completed_at=now,
                )
                ack["donations"].append(
                    {
                        "donationNumber": donation.donation_number,
                        "campaign": item.campaign.title,
                        "amountPence": item.amount_pence,
                        "frequency": item.frequency,
                    }
                )

            if frequency.is_recurring:
                start = item.start_date or today
                recurring = RecurringDonationModel.objects.create(
                    donor=order.donor,
                    campaign=item.campaign,
                    order=order,
                    amount_pence=item.amount_pence,
                    donation_type=item.donation_type,
                    frequency=item.frequency,
                    status=RecurringDonationModel.Status.ACTIVE,
                    subscription_id=deferred_subscriptions.get(item.pk, order.subscription_id or ""),
                    gift_aid=order.gift_aid,
                    start_date=start,
                    end_date=item.daily_end_date,
                    last_payment_date=None if item.deferred else today,
                    next_payment_date=start if item.deferred else next_charge_date(start, frequency),
                )
                ack["recurring"].append(
                    {
                        "campaign": item.campaign.title,
                        "amountPence": item.amount_pence,
                        "frequency": item.frequency,
                        "startDate": start.isoformat(),
                        "subscriptionId": recurring.subscription_id,
                    }
                )
            elif item.deferred:
                ScheduledChargeModel.objects.create(
                    donor=order.donor,
                    campaign=item.campaign,
                    order=order,
                    amount_pence=item.amount_pence,
                    donation_type=item.donation_type,
                    status=ScheduledChargeModel.Status.ACTIVE,
                    charge_date=item.start_date,
                    customer_id=order.customer_id,
                    payment_method_id=payment_method_id,
                    gift_aid=order.gift_aid,
                )
                ack["scheduled"].append(
                    {
                        "campaign": item.campaign.title,
                        "amountPence": item.amount_pence,
                        "chargeDate": item.start_date.isoformat(),
                    }
                )
        return ack

    def _send_receipt(self, order: OrderModel, ack: dict) -> dict:
        donor = order.donor
        receipt = {
            "email": donor.email,
            "donorName": f"{donor.first_name} {donor.last_name}".strip(),
            "orderNumber": order.order_number,
            "totalPence": order.total_pence,
            "giftAid": order.gift_aid,
            "donations": ack["donations"],
            "recurring": ack["recurring"],
            "scheduled": ack["scheduled"],
        }
        try:
            self.notifier.send_receipt(receipt)
        except Exception:
            # the confirmation is committed; only the receipt is lost
            logger.exception("receipt dispatch failed", extra={"order_number": order.order_number})
            ack = {**ack, "receipt": "failed", "detail": NotificationFailure.code}
        else:
            ack = {**ack, "receipt": "sent"}
        OrderModel.objects.filter(pk=order.pk).update(confirmation=ack)
        return ack
