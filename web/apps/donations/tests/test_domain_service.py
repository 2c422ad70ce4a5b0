"""Unit tests for CheckoutService orchestration.

Fakes stand in for every port so the tests can assert which gateway objects
get created for each cart shape, and that nothing is persisted when a
step before the final save fails.
"""

from datetime import date, timedelta

import pytest

from apps.donations.domain import (
    CartItem,
    CheckoutMode,
    CheckoutRequest,
    CheckoutService,
    DonationType,
    DonorProfile,
    Frequency,
    GatewayIntent,
    select_mode,
)
from apps.donations.errors import GatewayError, NotFound, ValidationFailed

TODAY = date(2025, 3, 1)


class FakeGateway:
    """Records create calls; ``fail_on`` makes one of them raise."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def _record(self, name, **kw):
        self.calls.append((name, kw))
        if name == self.fail_on:
            raise GatewayError(message="Your card was declined.")

    def ensure_customer(self, email, name):
        self._record("ensure_customer", email=email)
        return "cus_1"

    def create_payment(self, order_number, customer_id, amount_pence, save_method=False):
        self._record("create_payment", amount_pence=amount_pence, save_method=save_method)
        return GatewayIntent(id="pi_1", client_secret="pi_1_secret")

    def create_subscription(self, order_number, customer_id, amount_pence, interval, end_date=None, first_invoice_extra_pence=0):
        self._record(
            "create_subscription",
            amount_pence=amount_pence,
            interval=interval,
            end_date=end_date,
            extra=first_invoice_extra_pence,
        )
        return GatewayIntent(id="sub_1", client_secret="sub_1_secret")

    def create_setup(self, order_number, customer_id):
        self._record("create_setup")
        return GatewayIntent(id="seti_1", client_secret="seti_1_secret")

    def created(self):
        return [name for name, _ in self.calls if name.startswith("create_")]

    def kwargs(self, name):
        return next(kw for n, kw in self.calls if n == name)


class FakeNumbers:
    def __init__(self):
        self.n = 0

    def allocate(self):
        self.n += 1
        return f"786-1{self.n:08d}"


class FakeDonors:
    def find_or_create(self, email, fields):
        return {"email": email, **fields}


class FakeOrders:
    def __init__(self):
        self.saved = []

    def create_pending(self, **kwargs):
        self.saved.append(kwargs)
        return "order-1"


class FakeCampaigns:
    def __init__(self, missing=()):
        self._missing = set(missing)

    def missing(self, ids):
        return set(ids) & self._missing


def item(amount, frequency=Frequency.ONE_OFF, start=None, end=None, campaign="camp-1"):
    return CartItem(
        campaign_id=campaign,
        frequency=frequency,
        donation_type=DonationType.GENERAL,
        amount_pence=amount,
        daily_end_date=end,
        start_date=start,
    )


def request(*items, fees=0):
    subtotal = sum(i.amount_pence for i in items)
    return CheckoutRequest(
        items=list(items),
        donor=DonorProfile(email="donor@example.org", first_name="Aisha", last_name="Khan"),
        subtotal_pence=subtotal,
        fees_pence=fees,
        total_pence=subtotal + fees,
    )


@pytest.fixture
def wiring():
    gateway, orders = FakeGateway(), FakeOrders()
    service = CheckoutService(gateway, FakeNumbers(), FakeDonors(), orders, FakeCampaigns())
    return service, gateway, orders


def test_one_off_cart_is_payment_mode(wiring):
    service, gateway, orders = wiring
    out = service.checkout(request(item(2500), item(1000)), today=TODAY)

    assert out.mode is CheckoutMode.PAYMENT
    assert out.order_number == "786-100000001"
    assert out.payment_client_secret == "pi_1_secret"
    assert gateway.created() == ["create_payment"]
    assert gateway.kwargs("create_payment") == {"amount_pence": 3500, "save_method": False}
    assert len(orders.saved) == 1


def test_recurring_cart_is_subscription_mode_with_fees_on_first_invoice(wiring):
    service, gateway, _ = wiring
    out = service.checkout(request(item(1000, Frequency.MONTHLY), fees=30), today=TODAY)

    assert out.mode is CheckoutMode.SUBSCRIPTION
    assert out.subscription_client_secret == "sub_1_secret"
    assert gateway.created() == ["create_subscription"]
    assert gateway.kwargs("create_subscription")["interval"] == "month"
    assert gateway.kwargs("create_subscription")["extra"] == 30


def test_mixed_cart_charges_one_offs_and_subscribes_recurring(wiring):
    service, gateway, _ = wiring
    out = service.checkout(request(item(2500), item(1000, Frequency.MONTHLY), fees=50), today=TODAY)

    assert out.mode is CheckoutMode.MIXED
    assert gateway.created() == ["create_payment", "create_subscription"]
    # fees ride on the immediate payment, not the subscription
    assert gateway.kwargs("create_payment")["amount_pence"] == 2550
    assert gateway.kwargs("create_subscription")["amount_pence"] == 1000
    assert gateway.kwargs("create_subscription")["extra"] == 0
    body = out.as_response()
    assert body["paymentClientSecret"] == "pi_1_secret"
    assert body["subscriptionClientSecret"] == "sub_1_secret"
    assert "setupIntentClientSecret" not in body


def test_daily_item_subscribes_with_end_date(wiring):
    service, gateway, _ = wiring
    end = TODAY + timedelta(days=9)
    service.checkout(request(item(300, Frequency.DAILY, end=end)), today=TODAY)
    assert gateway.kwargs("create_subscription")["interval"] == "day"
    assert gateway.kwargs("create_subscription")["end_date"] == end


def test_only_future_items_is_setup_mode(wiring):
    service, gateway, orders = wiring
    nights = [TODAY + timedelta(days=d) for d in (10, 12)]
    out = service.checkout(request(*(item(300, start=n) for n in nights)), today=TODAY)

    assert out.mode is CheckoutMode.SETUP
    assert gateway.created() == ["create_setup"]
    assert out.setup_intent_client_secret == "seti_1_secret"
    assert orders.saved[0]["setup"].id == "seti_1"


def test_due_and_deferred_one_offs_save_the_card(wiring):
    service, gateway, _ = wiring
    service.checkout(request(item(2500), item(300, start=TODAY + timedelta(days=3))), today=TODAY)
    # only the due amount is charged now
    assert gateway.kwargs("create_payment") == {"amount_pence": 2500, "save_method": True}


def test_setup_mode_rejects_fees(wiring):
    service, gateway, orders = wiring
    with pytest.raises(ValidationFailed) as e:
        service.checkout(request(item(300, start=TODAY + timedelta(days=2)), fees=20), today=TODAY)
    assert str(e.value) == "FEES_NOT_SUPPORTED_FOR_SETUP"
    assert gateway.calls == [] and orders.saved == []


def test_mixed_cadence_rejected():
    with pytest.raises(ValidationFailed) as e:
        select_mode([item(1000, Frequency.MONTHLY), item(1000, Frequency.YEARLY)], TODAY)
    assert str(e.value) == "MIXED_CADENCE"


def test_past_start_date_rejected():
    with pytest.raises(ValidationFailed) as e:
        select_mode([item(1000, start=TODAY - timedelta(days=1))], TODAY)
    assert str(e.value) == "CHARGE_DATE_PASSED"


@pytest.mark.parametrize(
    "mutate, code",
    [
        (lambda r: setattr(r, "subtotal_pence", r.subtotal_pence + 1), "SUBTOTAL_MISMATCH"),
        (lambda r: setattr(r, "total_pence", r.total_pence - 1), "TOTAL_MISMATCH"),
        (lambda r: setattr(r, "items", []), "EMPTY_CART"),
    ],
)
def test_inconsistent_request_rejected_before_side_effects(wiring, mutate, code):
    service, gateway, orders = wiring
    req = request(item(2500))
    mutate(req)
    with pytest.raises(ValidationFailed) as e:
        service.checkout(req, today=TODAY)
    assert str(e.value) == code
    assert gateway.calls == [] and orders.saved == []


def test_daily_without_end_date_rejected(wiring):
    service, _, _ = wiring
    with pytest.raises(ValidationFailed) as e:
        service.checkout(request(item(300, Frequency.DAILY)), today=TODAY)
    assert str(e.value) == "DAILY_END_DATE_REQUIRED"


def test_unknown_campaign_is_not_found():
    gateway, orders = FakeGateway(), FakeOrders()
    service = CheckoutService(gateway, FakeNumbers(), FakeDonors(), orders, FakeCampaigns(missing={"ghost"}))
    with pytest.raises(NotFound) as e:
        service.checkout(request(item(2500, campaign="ghost")), today=TODAY)
    assert e.value.code == "CAMPAIGN_NOT_FOUND"
    assert e.value.message == "ghost"
    assert gateway.calls == [] and orders.saved == []


def test_gateway_failure_persists_nothing():
    gateway, orders = FakeGateway(fail_on="create_subscription"), FakeOrders()
    service = CheckoutService(gateway, FakeNumbers(), FakeDonors(), orders, FakeCampaigns())
    with pytest.raises(GatewayError) as e:
        service.checkout(request(item(2500), item(1000, Frequency.MONTHLY)), today=TODAY)
    assert e.value.message == "Your card was declined."
    assert orders.saved == []
