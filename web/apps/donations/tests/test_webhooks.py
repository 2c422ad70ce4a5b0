"""Stripe webhook intake tests.

``stripe.Webhook.construct_event`` is patched to return attribute trees
built from ``SimpleNamespace``, mirroring the SDK's event objects.
"""

from datetime import timedelta
from types import SimpleNamespace as NS
from unittest.mock import patch

import pytest
import stripe

from apps.donations.domain import utc_today
from apps.donations.models import DonationModel, OrderModel, RecurringDonationModel

WEBHOOK_URL = "/webhooks/stripe"


def event(type_, obj):
    return NS(type=type_, data=NS(object=obj))


def deliver(client, evt):
    with patch("stripe.Webhook.construct_event", return_value=evt):
        return client.post(WEBHOOK_URL, data=b"{}", content_type="application/json", HTTP_STRIPE_SIGNATURE="t=1,v1=x")


def checkout(client, payload):
    r = client.post("/api/checkout", data=payload, content_type="application/json")
    assert r.status_code == 201, r.content
    return r.json()


@pytest.mark.django_db
def test_bad_signature_is_400(client):
    err = stripe.SignatureVerificationError("No signatures found", "t=1,v1=x")
    with patch("stripe.Webhook.construct_event", side_effect=err):
        r = client.post(WEBHOOK_URL, data=b"{}", content_type="application/json", HTTP_STRIPE_SIGNATURE="t=1,v1=x")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SIGNATURE"


@pytest.mark.django_db
def test_bad_payload_is_400(client):
    with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
        r = client.post(WEBHOOK_URL, data=b"nope", content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_PAYLOAD"


@pytest.mark.django_db
def test_unhandled_event_is_ignored(client):
    r = deliver(client, event("customer.created", NS(id="cus_1")))
    assert r.status_code == 200
    assert r.json() == {"received": True, "outcome": "ignored"}


@pytest.mark.django_db
def test_payment_succeeded_confirms_order_once(client, checkout_payload):
    out = checkout(client, checkout_payload())
    pi = NS(id=out["paymentIntentId"], metadata=NS(orderNumber=out["orderNumber"]))

    assert deliver(client, event("payment_intent.succeeded", pi)).json()["outcome"] == "confirmed"
    # duplicate delivery replays the stored acknowledgement
    assert deliver(client, event("payment_intent.succeeded", pi)).json()["outcome"] == "confirmed"

    assert OrderModel.objects.get().status == OrderModel.Status.CONFIRMED
    assert DonationModel.objects.count() == 1


@pytest.mark.django_db
def test_scheduled_charge_payment_is_ignored(client):
    pi = NS(id="pi_x", metadata=NS(orderNumber="786-100000001", scheduledChargeId="abc"))
    assert deliver(client, event("payment_intent.succeeded", pi)).json()["outcome"] == "ignored"


@pytest.mark.django_db
def test_payment_for_unknown_order_is_deferred(client):
    pi = NS(id="pi_x", metadata=NS(orderNumber="786-199999999"))
    r = deliver(client, event("payment_intent.succeeded", pi))
    assert r.status_code == 200
    assert r.json()["outcome"] == "deferred"


@pytest.mark.django_db
def test_setup_succeeded_confirms_setup_order(client, checkout_payload):
    start = (utc_today() + timedelta(days=4)).isoformat()
    out = checkout(client, checkout_payload({"frequency": "ONE_OFF", "amountPence": 300, "startDate": start}))
    si = NS(id=out["setupIntentId"], metadata=NS(orderNumber=out["orderNumber"]))
    assert deliver(client, event("setup_intent.succeeded", si)).json()["outcome"] == "confirmed"
    assert OrderModel.objects.get().status == OrderModel.Status.CONFIRMED


@pytest.mark.django_db
def test_first_invoice_confirms_subscription_order(client, checkout_payload):
    out = checkout(client, checkout_payload({"frequency": "MONTHLY", "amountPence": 1000}))
    invoice = NS(id="in_1", parent=NS(subscription_details=NS(subscription=out["subscriptionId"])))
    assert deliver(client, event("invoice.payment_succeeded", invoice)).json()["outcome"] == "confirmed"
    assert RecurringDonationModel.objects.get().status == RecurringDonationModel.Status.ACTIVE


@pytest.mark.django_db
def test_renewal_invoice_updates_dates(client, checkout_payload):
    out = checkout(client, checkout_payload({"frequency": "MONTHLY", "amountPence": 1000}))
    invoice = NS(id="in_1", parent=None, subscription=out["subscriptionId"])
    deliver(client, event("invoice.payment_succeeded", invoice))
    RecurringDonationModel.objects.update(last_payment_date=None)

    r = deliver(client, event("invoice.payment_succeeded", invoice))
    assert r.json()["outcome"] == "renewed"
    rec = RecurringDonationModel.objects.get()
    assert rec.last_payment_date is not None
    # renewals do not write donation rows
    assert DonationModel.objects.count() == 1


@pytest.mark.django_db
def test_failed_invoice_and_cancellation(client, checkout_payload):
    out = checkout(client, checkout_payload({"frequency": "MONTHLY", "amountPence": 1000}))
    sub_id = out["subscriptionId"]
    deliver(client, event("invoice.payment_succeeded", NS(id="in_1", parent=None, subscription=sub_id)))

    assert deliver(client, event("invoice.payment_failed", NS(id="in_2", parent=None, subscription=sub_id))).json()[
        "outcome"
    ] == "failed"
    assert RecurringDonationModel.objects.get().status == RecurringDonationModel.Status.FAILED

    assert deliver(client, event("customer.subscription.deleted", NS(id=sub_id))).json()["outcome"] == "cancelled"
    assert RecurringDonationModel.objects.get().status == RecurringDonationModel.Status.CANCELLED


@pytest.mark.django_db
def test_charge_refunded_marks_donation_refunded(client, checkout_payload):
    out = checkout(client, checkout_payload())
    pi = NS(id=out["paymentIntentId"], metadata=NS(orderNumber=out["orderNumber"]))
    deliver(client, event("payment_intent.succeeded", pi))

    charge = NS(id="ch_1", refunded=True, amount_refunded=2500, payment_intent=out["paymentIntentId"])
    assert deliver(client, event("charge.refunded", charge)).json()["outcome"] == "refunded"
    assert DonationModel.objects.get().status == DonationModel.Status.REFUNDED

    # redelivery finds nothing left to refund
    assert deliver(client, event("charge.refunded", charge)).json()["outcome"] == "ignored"


@pytest.mark.django_db
def test_charge_refunded_with_expanded_payment_intent(client, checkout_payload):
    out = checkout(client, checkout_payload())
    client.post(
        "/api/checkout/confirm",
        data={"orderNumber": out["orderNumber"], "paymentIntentId": out["paymentIntentId"]},
        content_type="application/json",
    )
    charge = NS(id="ch_1", refunded=False, amount_refunded=100, payment_intent=NS(id=out["paymentIntentId"]))
    assert deliver(client, event("charge.refunded", charge)).json()["outcome"] == "refunded"
