from datetime import timedelta

import pytest

from apps.donations import adapters, providers
from apps.donations.domain import utc_today
from apps.donations.errors import DonationNumberUnavailable, GatewayError
from apps.donations.models import DonorModel, OrderItemModel, OrderModel

CHECKOUT_URL = "/api/checkout"


def post(client, payload, **headers):
    return client.post(CHECKOUT_URL, data=payload, content_type="application/json", **headers)


@pytest.mark.django_db
def test_checkout_one_off_creates_pending_order(client, checkout_payload):
    r = post(client, checkout_payload())
    assert r.status_code == 201, r.content
    body = r.json()
    assert body["mode"] == "payment"
    assert body["orderNumber"].startswith("786-1")
    assert body["paymentClientSecret"] == f"pi_stub_{body['orderNumber']}_secret"
    assert "subscriptionClientSecret" not in body

    order = OrderModel.objects.get(order_number=body["orderNumber"])
    assert str(order.id) == body["orderId"]
    assert order.status == OrderModel.Status.PENDING
    assert order.total_pence == 2500
    assert order.gift_aid is True
    # billing falls back to the home address
    assert order.billing_address == "12 High Street"
    assert order.billing_postcode == "LS1 4AB"


@pytest.mark.django_db
def test_checkout_stores_marketing_consent(client, checkout_payload, donor_payload):
    donor_payload.update(marketingEmail=True, marketingSms=False)
    body = post(client, checkout_payload()).json()
    order = OrderModel.objects.get(order_number=body["orderNumber"])
    assert order.marketing_email is True
    assert order.marketing_sms is False


@pytest.mark.django_db
def test_checkout_normalizes_and_reuses_donor(client, checkout_payload, donor_payload):
    post(client, checkout_payload())
    donor_payload["email"] = "aisha.khan@example.org"
    donor_payload["phone"] = "07700900123"
    post(client, checkout_payload())

    assert DonorModel.objects.count() == 1
    donor = DonorModel.objects.get()
    assert donor.email == "aisha.khan@example.org"
    assert donor.phone == "07700900123"
    assert donor.orders.count() == 2


@pytest.mark.django_db
def test_checkout_mixed_cart(client, checkout_payload):
    r = post(
        client,
        checkout_payload({"frequency": "ONE_OFF", "amountPence": 2500}, {"frequency": "MONTHLY", "amountPence": 1000}),
    )
    assert r.status_code == 201
    body = r.json()
    assert body["mode"] == "mixed"
    assert body["paymentIntentId"] and body["subscriptionId"]
    assert OrderItemModel.objects.filter(order__order_number=body["orderNumber"]).count() == 2


@pytest.mark.django_db
def test_checkout_future_items_only_is_setup(client, checkout_payload):
    start = (utc_today() + timedelta(days=5)).isoformat()
    r = post(client, checkout_payload({"frequency": "ONE_OFF", "amountPence": 300, "startDate": start}))
    assert r.status_code == 201
    body = r.json()
    assert body["mode"] == "setup"
    assert body["setupIntentClientSecret"].startswith("seti_stub_")
    assert OrderItemModel.objects.get().deferred is True


@pytest.mark.django_db
def test_checkout_total_mismatch_is_400(client, checkout_payload):
    r = post(client, checkout_payload(total=9999))
    assert r.status_code == 400
    assert r.json()["detail"] == "TOTAL_MISMATCH"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_checkout_schema_errors_are_400(client, checkout_payload):
    payload = checkout_payload()
    payload["donor"]["email"] = "not-an-email"
    r = post(client, payload)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_REQUEST"
    assert r.json()["errors"]


@pytest.mark.django_db
def test_checkout_daily_without_end_date_is_400(client, checkout_payload):
    r = post(client, checkout_payload({"frequency": "DAILY", "amountPence": 300}))
    assert r.status_code == 400


@pytest.mark.django_db
def test_checkout_unknown_campaign_is_404(client, checkout_payload):
    payload = checkout_payload()
    payload["items"][0]["campaignId"] = "00000000-0000-0000-0000-000000000001"
    r = post(client, payload)
    assert r.status_code == 404
    assert r.json()["detail"] == "CAMPAIGN_NOT_FOUND"


@pytest.mark.django_db
def test_checkout_gateway_failure_surfaces_message(client, checkout_payload, monkeypatch):
    def declined(self, *args, **kwargs):
        raise GatewayError(message="Your card was declined.")

    monkeypatch.setattr(adapters.GatewayStub, "create_payment", declined)
    r = post(client, checkout_payload())
    assert r.status_code == 500
    assert r.json() == {"detail": "GATEWAY_ERROR", "message": "Your card was declined."}
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_checkout_number_exhaustion_is_503(client, checkout_payload, monkeypatch):
    class Exhausted:
        def allocate(self):
            raise DonationNumberUnavailable()

    monkeypatch.setattr(providers, "get_number_generator", lambda: Exhausted())
    r = post(client, checkout_payload())
    assert r.status_code == 503
    assert r.json()["detail"] == "DONATION_NUMBER_UNAVAILABLE"


@pytest.mark.django_db
def test_resume_returns_pending_order_details(client, checkout_payload):
    number = post(client, checkout_payload()).json()["orderNumber"]
    r = client.get("/api/checkout/resume", {"orderNumber": number})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "PENDING"
    assert body["paymentClientSecret"] == f"pi_stub_{number}_secret"
    assert body["items"][0]["amountPence"] == 2500
    assert "subscriptionId" not in body


@pytest.mark.django_db
def test_resume_requires_order_number(client):
    r = client.get("/api/checkout/resume")
    assert r.status_code == 400
    assert r.json()["detail"] == "ORDER_NUMBER_REQUIRED"


@pytest.mark.django_db
def test_resume_unknown_and_confirmed_orders(client, checkout_payload):
    assert client.get("/api/checkout/resume", {"orderNumber": "786-199999999"}).status_code == 404

    number = post(client, checkout_payload()).json()["orderNumber"]
    OrderModel.objects.filter(order_number=number).update(status=OrderModel.Status.CONFIRMED)
    r = client.get("/api/checkout/resume", {"orderNumber": number})
    assert r.status_code == 409
    assert r.json()["detail"] == "ORDER_NOT_PENDING"


@pytest.mark.django_db
def test_order_status(client, checkout_payload):
    number = post(client, checkout_payload()).json()["orderNumber"]
    r = client.get(f"/api/checkout/orders/{number}")
    assert r.status_code == 200
    assert r.json()["status"] == "PENDING"
    assert r.json()["confirmation"] is None
    assert client.get("/api/checkout/orders/786-199999999").status_code == 404
