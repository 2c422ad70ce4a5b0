import csv
import io
from datetime import date, datetime, time

import pytest
from django.db import IntegrityError
from django.utils import timezone

from apps.donations.domain import DonorProfile
from apps.donations.errors import NotFound
from apps.donations.giftaid import CSV_HEADER, GiftAidService, claimable, export_csv
from apps.donations.models import DonationModel, DonorModel
from apps.donations.numbers import DonationNumberGenerator

GIFTAID_URL = "/api/admin/giftaid"


def at(day: date, hour: int = 12):
    return timezone.make_aware(datetime.combine(day, time(hour, 0)))


@pytest.fixture
def donor(db):
    return DonorModel.objects.create(
        email="john@example.org",
        title="Mr",
        first_name="John",
        last_name="Smith, Jr.",
        address="1 Mill Lane",
        postcode="m1 1aa",
    )


@pytest.fixture
def make_donation(donor, campaign):
    seq = iter(range(1, 1000))

    def make(amount, day, gift_aid=True, status=DonationModel.Status.COMPLETED, who=None, claimed=False):
        d = DonationModel.objects.create(
            donor=who or donor,
            campaign=campaign,
            donation_number=f"786-1{next(seq):08d}",
            amount_pence=amount,
            donation_type="GENERAL",
            frequency="ONE_OFF",
            status=status,
            gift_aid=gift_aid,
            gift_aid_claimed=claimed,
        )
        DonationModel.objects.filter(pk=d.pk).update(created_at=at(day))
        return d

    return make


def service():
    return GiftAidService(numbers=DonationNumberGenerator())


@pytest.mark.parametrize("pence, expected", [(10000, 2500), (333, 83), (2, 1), (0, 0), (1, 0)])
def test_claimable_rounds_half_up(pence, expected):
    assert claimable(pence) == expected


@pytest.mark.django_db
def test_schedule_splits_eligible_and_ineligible(make_donation):
    make_donation(10000, date(2025, 4, 6))
    make_donation(333, date(2025, 4, 7))
    make_donation(500, date(2025, 4, 8), gift_aid=False)
    make_donation(700, date(2025, 4, 8), status=DonationModel.Status.PENDING)
    make_donation(900, date(2025, 5, 1))

    data = service().schedule(date(2025, 4, 6), date(2025, 4, 30))

    assert data["range"] == {"start": "2025-04-06", "end": "2025-04-30"}
    assert data["eligible"]["summary"] == {"totalAmountPence": 10333, "totalCount": 2, "claimablePence": 2583}
    assert data["ineligible"]["summary"]["totalCount"] == 1
    row = data["eligible"]["rows"][0]
    assert row["title"] == "Mr"
    assert row["postcode"] == "M1 1AA"
    assert row["donationDate"] == "06/04/25"
    assert row["amount"] == "100.00"
    [summary] = data["eligible"]["donors"]
    assert summary["count"] == 2 and summary["amountPence"] == 10333


@pytest.mark.django_db
def test_schedule_end_day_is_inclusive(make_donation):
    make_donation(100, date(2025, 4, 30))
    data = service().schedule(date(2025, 4, 30), date(2025, 4, 30))
    assert data["eligible"]["summary"]["totalCount"] == 1


@pytest.mark.django_db
def test_mark_claimed_is_idempotent(make_donation):
    make_donation(1000, date(2025, 4, 6))
    make_donation(2000, date(2025, 4, 7))
    make_donation(3000, date(2025, 4, 7), gift_aid=False)

    assert service().mark_claimed(date(2025, 4, 1), date(2025, 4, 30)) == 2
    assert service().mark_claimed(date(2025, 4, 1), date(2025, 4, 30)) == 0
    assert DonationModel.objects.filter(gift_aid_claimed=True).count() == 2
    assert not DonationModel.objects.get(amount_pence=3000).gift_aid_claimed


@pytest.mark.django_db
def test_claimed_requires_gift_aid(make_donation):
    with pytest.raises(IntegrityError):
        make_donation(1000, date(2025, 4, 6), gift_aid=False, claimed=True)


@pytest.mark.django_db
def test_mark_eligible_only_touches_that_donor(make_donation, donor):
    other = DonorModel.objects.create(email="jane@example.org", first_name="Jane", last_name="Doe")
    make_donation(1000, date(2025, 4, 6), gift_aid=False)
    make_donation(2000, date(2025, 4, 6), gift_aid=False, who=other)

    assert service().mark_eligible(donor.id, date(2025, 4, 1), date(2025, 4, 30)) == 1
    assert DonationModel.objects.get(amount_pence=1000).gift_aid is True
    assert DonationModel.objects.get(amount_pence=2000).gift_aid is False


@pytest.mark.django_db
def test_mark_eligible_unknown_donor():
    with pytest.raises(NotFound) as e:
        service().mark_eligible("00000000-0000-0000-0000-000000000001")
    assert e.value.code == "DONOR_NOT_FOUND"


def test_export_csv_quotes_and_numbers_rows():
    rows = [
        {
            "title": "Mr",
            "firstName": "John",
            "lastName": "Smith, Jr.",
            "houseNumber": 'The "Old" Forge',
            "postcode": "M1 1AA",
            "aggregated": "",
            "sponsored": "",
            "donationDate": "06/04/25",
            "amount": "100.00",
        }
    ]
    text = export_csv(rows)
    lines = text.splitlines()
    assert lines[0] == ",".join(CSV_HEADER)
    assert lines[1] == '1,Mr,John,"Smith, Jr.","The ""Old"" Forge",M1 1AA,,,06/04/25,100.00'
    assert list(csv.reader(io.StringIO(text)))[1][3] == "Smith, Jr."


@pytest.mark.django_db
def test_record_offline_donation(campaign):
    profile = DonorProfile(
        email="Cash@Example.org", first_name="Yusuf", last_name="Ali", address="9 Park Road", postcode="B1 2CD"
    )
    body = service().record_offline_donation(
        profile, campaign.id, 5000, gift_aid=True, received_on=date(2025, 4, 10), reference="bank-123"
    )

    d = DonationModel.objects.get(donation_number=body["donationNumber"])
    assert d.status == DonationModel.Status.COMPLETED
    assert d.order is None
    assert d.donor.email == "cash@example.org"
    assert d.transaction_id == "bank-123"
    assert timezone.localtime(d.created_at).date() == date(2025, 4, 10)
    assert service().schedule(date(2025, 4, 10), date(2025, 4, 10))["eligible"]["summary"]["totalCount"] == 1


@pytest.mark.django_db
def test_record_offline_donation_unknown_campaign():
    profile = DonorProfile(email="a@example.org", first_name="A", last_name="B")
    with pytest.raises(NotFound):
        service().record_offline_donation(profile, "00000000-0000-0000-0000-000000000001", 100)


# ---- admin API ----

@pytest.mark.django_db
def test_giftaid_api_requires_admin(client):
    assert client.get(GIFTAID_URL).status_code in (401, 403)


@pytest.mark.django_db
def test_giftaid_api_schedule_and_claim(admin_client, make_donation):
    make_donation(10000, date(2025, 4, 6))

    r = admin_client.get(GIFTAID_URL, {"start": "2025-04-01", "end": "2025-04-30"})
    assert r.status_code == 200
    assert r.json()["eligible"]["summary"]["claimablePence"] == 2500

    r = admin_client.post(GIFTAID_URL, data={"start": "2025-04-01", "end": "2025-04-30"}, content_type="application/json")
    assert r.status_code == 200
    assert r.json() == {"updated": 1}


@pytest.mark.django_db
def test_giftaid_api_rejects_inverted_range(admin_client):
    r = admin_client.get(GIFTAID_URL, {"start": "2025-05-01", "end": "2025-04-01"})
    assert r.status_code == 400


@pytest.mark.django_db
def test_giftaid_api_csv_download(admin_client, make_donation):
    make_donation(10000, date(2025, 4, 6))

    r = admin_client.get(GIFTAID_URL, {"start": "2025-04-01", "end": "2025-04-30", "format": "csv"})
    assert r.status_code == 200
    assert r["Content-Type"].startswith("text/csv")
    assert 'filename="giftaid-eligible.csv"' in r["Content-Disposition"]
    lines = r.content.decode("utf-8").splitlines()
    assert lines[1] == '1,Mr,John,"Smith, Jr.",1 Mill Lane,M1 1AA,,,06/04/25,100.00'

    bad = admin_client.get(GIFTAID_URL, {"format": "csv", "bucket": "claimed"})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "INVALID_BUCKET"


@pytest.mark.django_db
def test_giftaid_api_mark_eligible(admin_client, make_donation, donor):
    make_donation(1000, date(2025, 4, 6), gift_aid=False)
    r = admin_client.patch(GIFTAID_URL, data={"donorId": str(donor.id)}, content_type="application/json")
    assert r.status_code == 200
    assert r.json() == {"updated": 1}

    missing = admin_client.patch(
        GIFTAID_URL, data={"donorId": "00000000-0000-0000-0000-000000000001"}, content_type="application/json"
    )
    assert missing.status_code == 404
    assert missing.json()["detail"] == "DONOR_NOT_FOUND"


@pytest.mark.django_db
def test_offline_donation_api(admin_client, campaign):
    r = admin_client.post(
        "/api/admin/donations",
        data={
            "donor": {"email": "cash@example.org", "firstName": "Yusuf", "lastName": "Ali"},
            "campaignId": str(campaign.id),
            "amountPence": 2000,
            "giftAid": True,
            "receivedOn": "2025-04-10",
        },
        content_type="application/json",
    )
    assert r.status_code == 201, r.content
    assert r.json()["amountPence"] == 2000
    assert DonationModel.objects.get().gift_aid is True
