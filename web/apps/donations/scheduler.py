"""Daily giving schedule computation.

Pure functions only: given an amount per day, a mode and the end of the
giving period, work out which nights get charged and expand that into cart
items the checkout orchestrator understands.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import List

from django.conf import settings

from .domain import CartItem, DonationType, Frequency, utc_today
from .errors import ValidationFailed

LAST_NIGHTS = 10
DEFAULT_END_MONTH_DAY = (3, 20)


class GivingMode(str, Enum):
    DAILY = "daily"
    LAST10 = "last10"


@dataclass
class DailyGivingPlan:
    """Charge dates and totals for one daily giving pledge.

    ``contiguous`` plans are charged by a single daily subscription; the
    others (odd nights) become one dated one-off charge per night.
    """

    amount_per_day_pence: int
    mode: GivingMode
    odd_nights_only: bool
    period_end_date: date
    dates: List[date] = field(default_factory=list)

    @property
    def day_count(self) -> int:
        return len(self.dates)

    @property
    def total_pence(self) -> int:
        return self.amount_per_day_pence * self.day_count

    @property
    def contiguous(self) -> bool:
        return not self.odd_nights_only

    def cart_items(self, campaign_id: str, donation_type: DonationType = DonationType.GENERAL) -> List[CartItem]:
        if self.contiguous:
            return [
                CartItem(
                    campaign_id=campaign_id,
                    frequency=Frequency.DAILY,
                    donation_type=donation_type,
                    amount_pence=self.amount_per_day_pence,
                    daily_end_date=self.dates[-1],
                    start_date=self.dates[0],
                )
            ]
        return [
            CartItem(
                campaign_id=campaign_id,
                frequency=Frequency.ONE_OFF,
                donation_type=donation_type,
                amount_pence=self.amount_per_day_pence,
                odd_nights_only=True,
                start_date=night,
            )
            for night in self.dates
        ]

    def as_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "oddNightsOnly": self.odd_nights_only,
            "periodEndDate": self.period_end_date.isoformat(),
            "amountPerDayPence": self.amount_per_day_pence,
            "dayCount": self.day_count,
            "totalPence": self.total_pence,
            "dates": [d.isoformat() for d in self.dates],
        }


def default_period_end(today: date) -> date:
    """End of the giving period when the caller does not name one.

    A configured ``DAILY_GIVING_END_DATE`` wins; otherwise 20 March of this
    year, rolling over to next year once it has passed.
    """
    configured = getattr(settings, "DAILY_GIVING_END_DATE", None)
    if configured:
        return configured if isinstance(configured, date) else date.fromisoformat(str(configured))
    month, day = DEFAULT_END_MONTH_DAY
    end = date(today.year, month, day)
    if today > end:
        end = date(today.year + 1, month, day)
    return end


def last_nights(end: date) -> List[date]:
    """The ten nights before ``end``, ascending."""
    return [end - timedelta(days=n) for n in range(LAST_NIGHTS, 0, -1)]


def odd_nights(end: date) -> List[date]:
    # odd positions counted back from the final night: end-1, end-3, ... end-9
    return sorted(end - timedelta(days=n) for n in range(1, LAST_NIGHTS, 2))


def plan_daily_giving(
    amount_per_day_pence: int,
    mode: GivingMode | str = GivingMode.DAILY,
    odd_nights_only: bool = False,
    period_end_date: date | None = None,
    today: date | None = None,
) -> DailyGivingPlan:
    """Compute the charge dates of a daily giving pledge.

    Raises:
        ValidationFailed: ``INVALID_AMOUNT`` for a non-positive amount,
            ``PERIOD_PASSED`` when no chargeable night is left.
    """
    today = today or utc_today()
    mode = GivingMode(mode)
    if amount_per_day_pence is None or amount_per_day_pence <= 0:
        raise ValidationFailed("INVALID_AMOUNT")
    end = period_end_date or default_period_end(today)

    if mode is GivingMode.DAILY:
        if odd_nights_only:
            raise ValidationFailed("ODD_NIGHTS_REQUIRE_LAST10")
        if end < today:
            raise ValidationFailed("PERIOD_PASSED")
        dates = [today + timedelta(days=n) for n in range((end - today).days + 1)]
    else:
        if end - timedelta(days=1) < today:
            raise ValidationFailed("PERIOD_PASSED")
        dates = odd_nights(end) if odd_nights_only else last_nights(end)
        # a window already under way loses the nights that have gone
        dates = [d for d in dates if d >= today]

    if len(dates) < 1:
        raise ValidationFailed("PERIOD_PASSED")
    return DailyGivingPlan(
        amount_per_day_pence=amount_per_day_pence,
        mode=mode,
        odd_nights_only=odd_nights_only,
        period_end_date=end,
        dates=dates,
    )
