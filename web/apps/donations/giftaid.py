"""Gift Aid reconciliation.

Each completed donation moves one way through three states: ineligible
(no consent), eligible (``gift_aid``) and claimed (``gift_aid_claimed``,
reachable only from eligible). This module builds the HMRC schedule for a
date range, flips donations between those states and renders the schedule
as the fixed-column CSV HMRC expects.
"""

import csv
import io
import logging
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal

from django.db import transaction
from django.utils import timezone

from .domain import DonationType, DonorProfile, Frequency, NumberAllocator
from .errors import NotFound
from .models import CampaignModel, DonationModel, DonorModel
from .repository import DonorRepository

logger = logging.getLogger("donations.giftaid")

CLAIM_RATE = Decimal("0.25")

CSV_HEADER = [
    "Item",
    "Title",
    "First name or initial",
    "Last name",
    "House name or number",
    "Postcode",
    "Aggregated donations",
    "Sponsored event",
    "Donation date",
    "Amount",
]


def claimable(total_pence: int) -> int:
    """Gift Aid reclaimable on ``total_pence``: 25%, rounded half up to the penny."""
    return int((Decimal(total_pence) * CLAIM_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(pence: int) -> str:
    return f"{pence // 100}.{pence % 100:02d}"


def format_donation_date(value: datetime) -> str:
    return timezone.localtime(value).strftime("%d/%m/%y")


def normalize_title(value: str | None) -> str:
    return (value or "").strip()[:4]


def normalize_postcode(value: str | None) -> str:
    return (value or "").strip().upper()


def _bounds(start: date | None, end: date | None) -> dict:
    """ORM filter for ``created_at`` in [start, end], both inclusive days."""
    filters = {}
    if start:
        filters["created_at__gte"] = timezone.make_aware(datetime.combine(start, time.min))
    if end:
        filters["created_at__lt"] = timezone.make_aware(datetime.combine(end + timedelta(days=1), time.min))
    return filters


def _row(d: DonationModel) -> dict:
    donor = d.donor
    return {
        "id": str(d.id),
        "donorId": str(d.donor_id),
        "donationNumber": d.donation_number,
        "title": normalize_title(donor.title),
        "firstName": donor.first_name or "",
        "lastName": donor.last_name or "",
        "email": donor.email,
        "phone": donor.phone or "",
        "giftAidClaimed": d.gift_aid_claimed,
        "houseNumber": (d.billing_address or donor.address or "").strip(),
        "postcode": normalize_postcode(d.billing_postcode or donor.postcode),
        "aggregated": "",
        "sponsored": "",
        "donationDate": format_donation_date(d.created_at),
        "amount": format_amount(d.amount_pence),
        "amountPence": d.amount_pence,
    }


def _bucket(rows: list) -> dict:
    total = sum(r["amountPence"] for r in rows)
    return {
        "rows": rows,
        "summary": {"totalAmountPence": total, "totalCount": len(rows), "claimablePence": claimable(total)},
        "donors": _donor_summaries(rows),
    }


def _donor_summaries(rows: list) -> list:
    donors = {}
    for r in rows:
        s = donors.setdefault(
            r["donorId"],
            {
                "donorId": r["donorId"],
                "name": f"{r['firstName']} {r['lastName']}".strip() or "Unknown donor",
                "email": r["email"],
                "amountPence": 0,
                "count": 0,
                "claimedCount": 0,
            },
        )
        s["amountPence"] += r["amountPence"]
        s["count"] += 1
        s["claimedCount"] += int(r["giftAidClaimed"])
    return sorted(donors.values(), key=lambda s: s["amountPence"], reverse=True)


def export_csv(rows: list) -> str:
    """Render schedule rows as the HMRC Gift Aid CSV.

    ``Item`` is the 1-based position; fields containing a comma, quote or
    newline are quoted with inner quotes doubled.
    """
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADER)
    for item, r in enumerate(rows, start=1):
        writer.writerow(
            [
                item,
                r["title"],
                r["firstName"],
                r["lastName"],
                r["houseNumber"],
                r["postcode"],
                r["aggregated"],
                r["sponsored"],
                r["donationDate"],
                r["amount"],
            ]
        )
    return out.getvalue()


class GiftAidService:
    def __init__(self, numbers: NumberAllocator, donors: DonorRepository | None = None):
        self.numbers = numbers
        self.donors = donors or DonorRepository()

    def _completed(self, start, end):
        return DonationModel.objects.filter(status=DonationModel.Status.COMPLETED, **_bounds(start, end))

    def schedule(self, start: date | None = None, end: date | None = None) -> dict:
        """Eligible and ineligible completed donations created in the range."""
        qs = self._completed(start, end).select_related("donor").order_by("created_at", "donation_number")
        eligible, ineligible = [], []
        for d in qs:
            (eligible if d.gift_aid else ineligible).append(_row(d))
        return {
            "range": {
                "start": start.isoformat() if start else None,
                "end": end.isoformat() if end else None,
            },
            "eligible": _bucket(eligible),
            "ineligible": _bucket(ineligible),
        }

    def mark_claimed(self, start: date | None = None, end: date | None = None) -> int:
        """Mark every eligible, unclaimed donation in the range as claimed.

        Runs in one transaction over the locked row set; running it again
        for the same range changes nothing.
        """
        with transaction.atomic():
            ids = list(
                self._completed(start, end)
                .select_for_update()
                .filter(gift_aid=True, gift_aid_claimed=False)
                .values_list("id", flat=True)
            )
            updated = DonationModel.objects.filter(id__in=ids, gift_aid=True).update(gift_aid_claimed=True)
        logger.info("gift aid marked claimed", extra={"updated": updated, "start": str(start), "end": str(end)})
        return updated

    def mark_eligible(self, donor_id, start: date | None = None, end: date | None = None) -> int:
        """Make a donor's ineligible completed donations in the range eligible.

        This is a blanket override for the donor; the declaration itself is
        assumed to be held by the caller.
        """
        if not DonorModel.objects.filter(id=donor_id).exists():
            raise NotFound("DONOR_NOT_FOUND")
        with transaction.atomic():
            updated = self._completed(start, end).filter(donor_id=donor_id, gift_aid=False).update(gift_aid=True)
        logger.info("gift aid marked eligible", extra={"donor_id": str(donor_id), "updated": updated})
        return updated

    def record_offline_donation(
        self,
        donor: DonorProfile,
        campaign_id,
        amount_pence: int,
        donation_type: DonationType = DonationType.GENERAL,
        gift_aid: bool = False,
        received_on: date | None = None,
        reference: str | None = None,
    ) -> dict:
        """Record a donation received outside the online checkout (cash, bank transfer)."""
        campaign = CampaignModel.objects.filter(id=campaign_id).first()
        if campaign is None:
            raise NotFound("CAMPAIGN_NOT_FOUND")
        donor_row = self.donors.find_or_create(donor.email, donor.donor_fields())
        number = self.numbers.allocate()
        now = timezone.now()
        with transaction.atomic():
            donation = DonationModel.objects.create(
                donor=donor_row,
                campaign=campaign,
                donation_number=number,
                amount_pence=amount_pence,
                donation_type=donation_type.value,
                frequency=Frequency.ONE_OFF.value,
                status=DonationModel.Status.COMPLETED,
                gift_aid=gift_aid,
                billing_address=donor.billing_address or donor.address or "",
                billing_postcode=donor.billing_postcode or donor.postcode or "",
                transaction_id=reference,
                completed_at=now,
            )
            if received_on:
                # auto_now_add ignores explicit values on create
                donation.created_at = timezone.make_aware(datetime.combine(received_on, time(12, 0)))
                DonationModel.objects.filter(pk=donation.pk).update(created_at=donation.created_at)
        logger.info("offline donation recorded", extra={"donation_number": number, "amount_pence": amount_pence})
        return {
            "id": str(donation.id),
            "donationNumber": donation.donation_number,
            "donorId": str(donor_row.id),
            "amountPence": donation.amount_pence,
            "giftAid": donation.gift_aid,
            "createdAt": donation.created_at.isoformat(),
        }
