"""Dispatch of verified Stripe webhook events.

Events only ever move state forward: first payments go through the
idempotent confirmation handler, later invoices refresh the recurring
donation's payment dates, failures or cancellations close it, and
refunded charges take their donations out of the Gift Aid set.
"""

import logging

from .confirmation import ConfirmationService, next_charge_date
from .domain import Frequency, utc_today
from .errors import NotFound, PaymentIncomplete, ValidationFailed
from .models import OrderModel, RecurringDonationModel
from .refunds import RefundService

logger = logging.getLogger("donations.webhooks")


def _order_number(obj) -> str | None:
    metadata = getattr(obj, "metadata", None)
    return getattr(metadata, "orderNumber", None) if metadata is not None else None


def _id(value) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return value.id


def _invoice_subscription(invoice) -> str | None:
    # newer API versions nest the subscription under parent.subscription_details
    parent = getattr(invoice, "parent", None)
    details = getattr(parent, "subscription_details", None) if parent is not None else None
    sub = getattr(details, "subscription", None) if details is not None else None
    sub = sub or getattr(invoice, "subscription", None)
    return _id(sub)


class WebhookDispatcher:
    def __init__(self, confirmation: ConfirmationService, refunds: RefundService):
        self.confirmation = confirmation
        self.refunds = refunds

    def handle(self, event) -> str:
        """Apply ``event``; returns a short outcome label for logging and tests."""
        handler = {
            "payment_intent.succeeded": self._payment_succeeded,
            "setup_intent.succeeded": self._setup_succeeded,
            "invoice.payment_succeeded": self._invoice_paid,
            "invoice.payment_failed": self._invoice_failed,
            "customer.subscription.deleted": self._subscription_deleted,
            "charge.refunded": self._charge_refunded,
        }.get(event.type)
        if handler is None:
            logger.info("webhook ignored", extra={"event_type": event.type})
            return "ignored"
        outcome = handler(event.data.object)
        logger.info("webhook handled", extra={"event_type": event.type, "outcome": outcome})
        return outcome

    def _confirm(self, order_number: str, **refs) -> str:
        try:
            ack = self.confirmation.confirm(order_number, **refs)
        except (PaymentIncomplete, ValidationFailed, NotFound) as e:
            # the client-side confirm or a later event will finish the order
            logger.warning("webhook confirmation deferred", extra={"order_number": order_number, "detail": e.code})
            return "deferred"
        return "confirmed" if ack else "deferred"

    def _payment_succeeded(self, pi) -> str:
        order_number = _order_number(pi)
        if not order_number or getattr(pi.metadata, "scheduledChargeId", None):
            return "ignored"
        return self._confirm(order_number, payment_intent_id=pi.id)

    def _setup_succeeded(self, si) -> str:
        order_number = _order_number(si)
        if not order_number:
            return "ignored"
        return self._confirm(order_number, setup_intent_id=si.id)

    def _invoice_paid(self, invoice) -> str:
        subscription_id = _invoice_subscription(invoice)
        if not subscription_id:
            return "ignored"
        order = OrderModel.objects.filter(subscription_id=subscription_id).first()
        if order is not None and order.status == OrderModel.Status.PENDING:
            return self._confirm(order.order_number, subscription_id=subscription_id)

        today = utc_today()
        updated = 0
        for rec in RecurringDonationModel.objects.filter(subscription_id=subscription_id):
            rec.last_payment_date = today
            rec.next_payment_date = next_charge_date(today, Frequency(rec.frequency))
            rec.status = RecurringDonationModel.Status.ACTIVE
            rec.save(update_fields=["last_payment_date", "next_payment_date", "status"])
            updated += 1
        return "renewed" if updated else "ignored"

    def _invoice_failed(self, invoice) -> str:
        subscription_id = _invoice_subscription(invoice)
        if not subscription_id:
            return "ignored"
        RecurringDonationModel.objects.filter(subscription_id=subscription_id).update(
            status=RecurringDonationModel.Status.FAILED
        )
        return "failed"

    def _subscription_deleted(self, sub) -> str:
        RecurringDonationModel.objects.filter(subscription_id=sub.id).update(
            status=RecurringDonationModel.Status.CANCELLED
        )
        return "cancelled"

    def _charge_refunded(self, charge) -> str:
        if not (getattr(charge, "refunded", False) or getattr(charge, "amount_refunded", 0)):
            return "ignored"
        payment_intent_id = _id(getattr(charge, "payment_intent", None))
        if not payment_intent_id:
            return "ignored"
        return "refunded" if self.refunds.mark_refunded(payment_intent_id) else "ignored"
