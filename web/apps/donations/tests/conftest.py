import pytest

from apps.donations.models import CampaignModel


@pytest.fixture
def campaign(db):
    return CampaignModel.objects.create(slug="water-wells", title="Water Wells")


@pytest.fixture
def other_campaign(db):
    return CampaignModel.objects.create(slug="orphan-care", title="Orphan Care")


@pytest.fixture
def donor_payload():
    return {
        "email": "Aisha.Khan@Example.org ",
        "firstName": "Aisha",
        "lastName": "Khan",
        "title": "Mrs",
        "address": "12 High Street",
        "city": "Leeds",
        "postcode": "ls1 4ab",
        "country": "GB",
        "giftAid": True,
    }


@pytest.fixture
def checkout_payload(campaign, donor_payload):
    """Build a checkout body; totals default to the sum of the items."""

    def build(*items, fees=0, subtotal=None, total=None):
        items = items or ({"frequency": "ONE_OFF", "amountPence": 2500},)
        lines = [{"campaignId": str(campaign.id), "donationType": "GENERAL", **i} for i in items]
        sub = sum(i["amountPence"] for i in lines) if subtotal is None else subtotal
        return {
            "items": lines,
            "donor": donor_payload,
            "subtotalPence": sub,
            "feesPence": fees,
            "totalPence": sub + fees if total is None else total,
        }

    return build
