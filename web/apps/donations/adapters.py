"""In-process stub adapters for the donations ports.

These stubs implement ``GatewayPort`` and ``NotifierPort`` without any
network calls. They are intended for unit tests and local development
where deterministic behavior is useful and Stripe/the email API are not
reachable. Identifiers are derived from the order number so a retried
request sees the same objects, like the real gateway adapter.
"""

import hashlib
import logging
from datetime import date
from typing import List

from .domain import GatewayIntent, GatewayPort, GatewayStatus, NotifierPort

logger = logging.getLogger("donations.adapters")


def _digest(*parts) -> str:
    return hashlib.sha1("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()[:16]


class GatewayStub(GatewayPort):
    """Stub implementation of ``GatewayPort``.

    Every object it "creates" is immediately successful when retrieved:
    ids carry the order number, client secrets are ``<id>_secret``.
    """

    def ensure_customer(self, email: str, name: str) -> str:
        return f"cus_stub_{_digest(email.strip().lower())}"

    def create_payment(self, order_number, customer_id, amount_pence, save_method=False) -> GatewayIntent:
        pid = f"pi_stub_{order_number}"
        return GatewayIntent(id=pid, client_secret=f"{pid}_secret")

    def create_subscription(
        self, order_number, customer_id, amount_pence, interval, end_date=None, first_invoice_extra_pence=0
    ) -> GatewayIntent:
        sid = f"sub_stub_{order_number}"
        return GatewayIntent(id=sid, client_secret=f"{sid}_secret")

    def create_setup(self, order_number, customer_id) -> GatewayIntent:
        sid = f"seti_stub_{order_number}"
        return GatewayIntent(id=sid, client_secret=f"{sid}_secret")

    def retrieve_payment(self, payment_intent_id: str) -> GatewayStatus:
        return GatewayStatus(id=payment_intent_id, status="succeeded", payment_method_id="pm_stub_card")

    def retrieve_subscription(self, subscription_id: str) -> GatewayStatus:
        return GatewayStatus(id=subscription_id, status="succeeded", payment_method_id="pm_stub_card")

    def retrieve_setup(self, setup_intent_id: str) -> GatewayStatus:
        return GatewayStatus(id=setup_intent_id, status="succeeded", payment_method_id="pm_stub_card")

    def start_subscription(
        self, order_number, customer_id, payment_method_id, amount_pence, interval, start_date: date, end_date=None, line=0
    ) -> str:
        return f"sub_stub_{order_number}_{line}_{start_date:%Y%m%d}"

    def charge_saved_method(
        self, customer_id, payment_method_id, amount_pence, idempotency_key, metadata
    ) -> GatewayStatus:
        if amount_pence <= 0:
            return GatewayStatus(id="", status="requires_payment_method")
        return GatewayStatus(id=f"pi_stub_{_digest(idempotency_key)}", status="succeeded")

    def refund_payment(self, payment_intent_id, amount_pence=None, reason="", idempotency_key=None) -> GatewayStatus:
        return GatewayStatus(id=f"re_stub_{_digest(payment_intent_id, amount_pence)}", status="succeeded")


class NotifierStub(NotifierPort):
    """Collects receipts in memory instead of sending them."""

    def __init__(self):
        self.sent: List[dict] = []

    def send_receipt(self, receipt: dict) -> None:
        self.sent.append(receipt)
        logger.info("receipt captured", extra={"order_number": receipt.get("orderNumber")})
