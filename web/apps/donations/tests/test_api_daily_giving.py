from datetime import timedelta

import pytest

from apps.donations.domain import utc_today
from apps.donations.models import OrderItemModel, OrderModel

PLAN_URL = "/api/daily-giving/plan"
CHECKOUT_URL = "/api/daily-giving/checkout"


def post(client, url, payload):
    return client.post(url, data=payload, content_type="application/json")


@pytest.fixture
def window_end():
    # a last-ten-nights window that has not started yet
    return utc_today() + timedelta(days=20)


@pytest.mark.django_db
def test_plan_daily(client):
    end = utc_today() + timedelta(days=4)
    r = post(client, PLAN_URL, {"amountPerDayPence": 500, "mode": "daily", "periodEndDate": end.isoformat()})
    assert r.status_code == 200
    body = r.json()
    assert body["dayCount"] == 5
    assert body["totalPence"] == 2500
    assert body["dates"][0] == utc_today().isoformat()


@pytest.mark.django_db
def test_plan_odd_nights(client, window_end):
    r = post(
        client,
        PLAN_URL,
        {"amountPerDayPence": 300, "mode": "last10", "oddNightsOnly": True, "periodEndDate": window_end.isoformat()},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["dayCount"] == 5
    assert body["dates"][-1] == (window_end - timedelta(days=1)).isoformat()


@pytest.mark.django_db
def test_plan_period_passed(client):
    yesterday = utc_today() - timedelta(days=1)
    r = post(client, PLAN_URL, {"amountPerDayPence": 300, "mode": "daily", "periodEndDate": yesterday.isoformat()})
    assert r.status_code == 400
    assert r.json()["detail"] == "PERIOD_PASSED"


@pytest.mark.django_db
def test_plan_rejects_unknown_mode(client):
    r = post(client, PLAN_URL, {"amountPerDayPence": 300, "mode": "weekly"})
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_REQUEST"


@pytest.mark.django_db
def test_checkout_odd_nights_is_setup_with_five_dated_items(client, campaign, donor_payload, window_end):
    r = post(
        client,
        CHECKOUT_URL,
        {
            "amountPerDayPence": 300,
            "mode": "last10",
            "oddNightsOnly": True,
            "periodEndDate": window_end.isoformat(),
            "campaignId": str(campaign.id),
            "donationType": "SADAQAH",
            "donor": donor_payload,
        },
    )
    assert r.status_code == 201, r.content
    body = r.json()
    assert body["mode"] == "setup"
    assert body["plan"]["totalPence"] == 1500

    order = OrderModel.objects.get(order_number=body["orderNumber"])
    assert order.total_pence == 1500
    items = OrderItemModel.objects.filter(order=order)
    assert items.count() == 5
    assert all(i.deferred and i.odd_nights_only and i.frequency == "ONE_OFF" for i in items)


@pytest.mark.django_db
def test_checkout_daily_starting_today_is_subscription(client, campaign, donor_payload):
    end = utc_today() + timedelta(days=6)
    r = post(
        client,
        CHECKOUT_URL,
        {
            "amountPerDayPence": 200,
            "periodEndDate": end.isoformat(),
            "campaignId": str(campaign.id),
            "donor": donor_payload,
            "feesPence": 10,
        },
    )
    assert r.status_code == 201, r.content
    body = r.json()
    assert body["mode"] == "subscription"
    [item] = OrderItemModel.objects.all()
    assert item.frequency == "DAILY"
    assert item.daily_end_date == end
    assert OrderModel.objects.get().fees_pence == 10
