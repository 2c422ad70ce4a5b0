"""Stripe implementation of ``GatewayPort``.

Every object created for an order carries ``metadata.orderNumber`` and a
Stripe idempotency key derived from the order number. Before creating a
payment intent, subscription or setup intent the adapter searches for one
already tagged with the order number, so a retried checkout reuses what
the first attempt created.

All ``stripe.StripeError`` failures surface as ``GatewayError`` carrying
Stripe's own message; calls are guarded by the ``stripe`` circuit breaker.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

import stripe
from django.conf import settings

from .domain import GatewayIntent, GatewayPort, GatewayStatus
from .errors import GatewayError
from .http_adapters import CircuitOpen, stripe_cb

logger = logging.getLogger("donations.stripe")

# subscription/invoice states mapped onto payment-intent vocabulary
SUBSCRIPTION_STATUS = {
    "active": "succeeded",
    "trialing": "succeeded",
    "past_due": "requires_payment_method",
    "unpaid": "requires_payment_method",
    "incomplete": "requires_payment_method",
    "incomplete_expired": "canceled",
    "canceled": "canceled",
}


def _ts(d: date) -> int:
    return int(datetime.combine(d, time.min, tzinfo=timezone.utc).timestamp())


def _id(value):
    if value is None or isinstance(value, str):
        return value
    return value.id


def _search_query(order_number: str) -> str:
    return f"metadata['orderNumber']:'{order_number}'"


class StripeGateway(GatewayPort):
    def __init__(self, api_key: str | None = None, currency: str | None = None):
        stripe.api_key = api_key or settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_NETWORK_RETRIES", 2)
        self.currency = (currency or getattr(settings, "STRIPE_CURRENCY", "gbp")).lower()
        self._product = getattr(settings, "STRIPE_DONATION_PRODUCT_ID", "") or None

    def _call(self, fn, *args, **kwargs):
        try:
            stripe_cb.before_call()
        except CircuitOpen as e:
            raise GatewayError(message=str(e)) from e
        try:
            result = fn(*args, **kwargs)
        except stripe.CardError:
            # a declined card is the donor's problem, not an unhealthy gateway
            stripe_cb.on_success()
            raise
        except stripe.StripeError as e:
            stripe_cb.on_failure()
            logger.error(
                "stripe call failed",
                extra={"stripe_call": getattr(fn, "__qualname__", str(fn)), "stripe_code": e.code},
            )
            raise GatewayError(message=e.user_message or str(e)) from e
        else:
            stripe_cb.on_success()
            return result
        finally:
            stripe_cb.on_finish()

    def _product_id(self) -> str:
        if not self._product:
            product = self._call(
                stripe.Product.create, name="Donation", idempotency_key="donation-product-v1"
            )
            self._product = product.id
        return self._product

    def _price_data(self, amount_pence: int, interval: str | None = None) -> dict:
        data = {"currency": self.currency, "product": self._product_id(), "unit_amount": amount_pence}
        if interval:
            data["recurring"] = {"interval": interval}
        return data

    def _subscription_secret(self, sub) -> str | None:
        invoice = sub.latest_invoice
        if invoice is None or isinstance(invoice, str):
            return None
        secret = getattr(invoice, "confirmation_secret", None)
        return secret.client_secret if secret else None

    # ---- customers ----
    def ensure_customer(self, email: str, name: str) -> str:
        email = email.strip().lower()
        found = self._call(stripe.Customer.list, email=email, limit=1)
        if found.data:
            return found.data[0].id
        created = self._call(
            stripe.Customer.create, email=email, name=name, idempotency_key=f"customer-{email}"
        )
        return created.id

    # ---- checkout objects ----
    def create_payment(self, order_number, customer_id, amount_pence, save_method=False) -> GatewayIntent:
        found = self._call(stripe.PaymentIntent.search, query=_search_query(order_number), limit=1)
        if found.data:
            pi = found.data[0]
            return GatewayIntent(id=pi.id, client_secret=pi.client_secret)

        params = {
            "amount": amount_pence,
            "currency": self.currency,
            "customer": customer_id,
            "automatic_payment_methods": {"enabled": True},
            "metadata": {"orderNumber": order_number},
            "idempotency_key": f"order-{order_number}-payment",
        }
        if save_method:
            params["setup_future_usage"] = "off_session"
        pi = self._call(stripe.PaymentIntent.create, **params)
        logger.info("payment intent created", extra={"order_number": order_number, "payment_intent": pi.id})
        return GatewayIntent(id=pi.id, client_secret=pi.client_secret)

    def create_subscription(
        self, order_number, customer_id, amount_pence, interval, end_date=None, first_invoice_extra_pence=0
    ) -> GatewayIntent:
        found = self._call(stripe.Subscription.search, query=_search_query(order_number), limit=1)
        if found.data:
            sub = self._call(
                stripe.Subscription.retrieve, found.data[0].id, expand=["latest_invoice.confirmation_secret"]
            )
            return GatewayIntent(id=sub.id, client_secret=self._subscription_secret(sub))

        params = {
            "customer": customer_id,
            "items": [{"price_data": self._price_data(amount_pence, interval)}],
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.confirmation_secret"],
            "metadata": {"orderNumber": order_number},
            "idempotency_key": f"order-{order_number}-subscription",
        }
        if end_date:
            # last charge falls on end_date itself
            params["cancel_at"] = _ts(end_date + timedelta(days=1))
        if first_invoice_extra_pence:
            params["add_invoice_items"] = [{"price_data": self._price_data(first_invoice_extra_pence)}]
        sub = self._call(stripe.Subscription.create, **params)
        logger.info("subscription created", extra={"order_number": order_number, "subscription": sub.id})
        return GatewayIntent(id=sub.id, client_secret=self._subscription_secret(sub))

    def create_setup(self, order_number, customer_id) -> GatewayIntent:
        found = self._call(stripe.SetupIntent.list, customer=customer_id, limit=20)
        for si in found.data:
            if si.metadata is not None and getattr(si.metadata, "orderNumber", None) == order_number:
                return GatewayIntent(id=si.id, client_secret=si.client_secret)
        si = self._call(
            stripe.SetupIntent.create,
            customer=customer_id,
            usage="off_session",
            automatic_payment_methods={"enabled": True},
            metadata={"orderNumber": order_number},
            idempotency_key=f"order-{order_number}-setup",
        )
        return GatewayIntent(id=si.id, client_secret=si.client_secret)

    # ---- verification ----
    def retrieve_payment(self, payment_intent_id: str) -> GatewayStatus:
        pi = self._call(stripe.PaymentIntent.retrieve, payment_intent_id)
        return GatewayStatus(
            id=pi.id, status=pi.status, customer_id=_id(pi.customer), payment_method_id=_id(pi.payment_method)
        )

    def retrieve_subscription(self, subscription_id: str) -> GatewayStatus:
        sub = self._call(stripe.Subscription.retrieve, subscription_id, expand=["latest_invoice"])
        status = SUBSCRIPTION_STATUS.get(sub.status, sub.status)
        invoice = sub.latest_invoice
        if sub.status == "incomplete" and invoice is not None and not isinstance(invoice, str):
            if invoice.status == "paid":
                status = "succeeded"
        return GatewayStatus(
            id=sub.id,
            status=status,
            customer_id=_id(sub.customer),
            payment_method_id=_id(sub.default_payment_method),
        )

    def retrieve_setup(self, setup_intent_id: str) -> GatewayStatus:
        si = self._call(stripe.SetupIntent.retrieve, setup_intent_id)
        return GatewayStatus(
            id=si.id, status=si.status, customer_id=_id(si.customer), payment_method_id=_id(si.payment_method)
        )

    # ---- deferred charges ----
    def start_subscription(
        self, order_number, customer_id, payment_method_id, amount_pence, interval, start_date, end_date=None, line=0
    ) -> str:
        params = {
            "customer": customer_id,
            "items": [{"price_data": self._price_data(amount_pence, interval)}],
            # nothing is charged before start_date
            "trial_end": _ts(start_date),
            "metadata": {"orderNumber": order_number, "deferred": "true"},
            "idempotency_key": f"order-{order_number}-deferred-{line}",
        }
        if payment_method_id:
            params["default_payment_method"] = payment_method_id
        if end_date:
            params["cancel_at"] = _ts(end_date + timedelta(days=1))
        sub = self._call(stripe.Subscription.create, **params)
        logger.info(
            "deferred subscription created",
            extra={"order_number": order_number, "subscription": sub.id, "start_date": start_date.isoformat()},
        )
        return sub.id

    def charge_saved_method(
        self, customer_id, payment_method_id, amount_pence, idempotency_key, metadata
    ) -> GatewayStatus:
        try:
            pi = self._call(
                stripe.PaymentIntent.create,
                amount=amount_pence,
                currency=self.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as e:
            logger.warning("off-session charge declined", extra={"customer": customer_id, "stripe_code": e.code})
            return GatewayStatus(id="", status="requires_payment_method", customer_id=customer_id)
        return GatewayStatus(id=pi.id, status=pi.status, customer_id=customer_id, payment_method_id=payment_method_id)

    def refund_payment(self, payment_intent_id, amount_pence=None, reason="", idempotency_key=None) -> GatewayStatus:
        params = {"payment_intent": payment_intent_id, "metadata": {"reason": reason}}
        if amount_pence is not None:
            params["amount"] = amount_pence
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        refund = self._call(stripe.Refund.create, **params)
        return GatewayStatus(id=refund.id, status=refund.status)
