"""Pydantic schemas for the donations API.

Request bodies arrive in camelCase (``amountPence``, ``dailyEndDate``);
the models accept both camelCase and snake_case and map onto the domain
DTOs.
"""

import re
from datetime import date
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .domain import CartItem, CheckoutRequest, DonationType, DonorProfile, Frequency

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
POSTCODE_RE = re.compile(r"^[A-Z0-9 ]{2,10}$")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class CartItemIn(CamelModel):
    """A cart line as sent by the checkout form."""

    campaign_id: UUID
    frequency: Frequency
    donation_type: DonationType = DonationType.GENERAL
    amount_pence: int = Field(gt=0)
    daily_end_date: Optional[date] = None
    odd_nights_only: bool = False
    start_date: Optional[date] = None

    @model_validator(mode="after")
    def check_daily_end_date(self):
        if self.frequency is Frequency.DAILY and self.daily_end_date is None:
            raise ValueError("dailyEndDate is required for DAILY items")
        if self.frequency is not Frequency.DAILY and self.daily_end_date is not None:
            raise ValueError("dailyEndDate is only allowed on DAILY items")
        return self

    def to_domain(self) -> CartItem:
        return CartItem(
            campaign_id=str(self.campaign_id),
            frequency=self.frequency,
            donation_type=self.donation_type,
            amount_pence=self.amount_pence,
            daily_end_date=self.daily_end_date,
            odd_nights_only=self.odd_nights_only,
            start_date=self.start_date,
        )


class DonorIn(CamelModel):
    email: str = Field(min_length=3, max_length=254)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    title: Optional[str] = Field(default=None, max_length=16)
    phone: Optional[str] = Field(default=None, max_length=32)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    postcode: Optional[str] = Field(default=None, max_length=16)
    country: Optional[str] = Field(default=None, max_length=64)
    billing_address: Optional[str] = Field(default=None, max_length=255)
    billing_postcode: Optional[str] = Field(default=None, max_length=16)
    gift_aid: bool = False
    marketing_email: bool = False
    marketing_sms: bool = False

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email")
        return v2

    @field_validator("postcode", "billing_postcode")
    @classmethod
    def normalize_postcode(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        v2 = v.strip().upper()
        if not POSTCODE_RE.match(v2):
            raise ValueError("Invalid postcode")
        return v2

    def to_domain(self) -> DonorProfile:
        return DonorProfile(**self.model_dump())


class CheckoutIn(CamelModel):
    """Body of ``POST /api/checkout``.

    Totals are computed by the caller and re-checked server side.
    """

    items: list[CartItemIn] = Field(min_length=1)
    donor: DonorIn
    subtotal_pence: int = Field(ge=0)
    fees_pence: int = Field(default=0, ge=0)
    total_pence: int = Field(gt=0)

    def to_domain(self) -> CheckoutRequest:
        return CheckoutRequest(
            items=[i.to_domain() for i in self.items],
            donor=self.donor.to_domain(),
            subtotal_pence=self.subtotal_pence,
            fees_pence=self.fees_pence,
            total_pence=self.total_pence,
        )


class ConfirmIn(CamelModel):
    order_number: str = Field(min_length=1, max_length=32)
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None
    setup_intent_id: Optional[str] = None

    @model_validator(mode="after")
    def require_reference(self):
        if not (self.payment_intent_id or self.subscription_id or self.setup_intent_id):
            raise ValueError("one of paymentIntentId, subscriptionId or setupIntentId is required")
        return self


class DailyGivingPlanIn(CamelModel):
    amount_per_day_pence: int = Field(gt=0)
    mode: Literal["daily", "last10"] = "daily"
    odd_nights_only: bool = False
    period_end_date: Optional[date] = None


class DailyGivingCheckoutIn(DailyGivingPlanIn):
    campaign_id: UUID
    donation_type: DonationType = DonationType.GENERAL
    donor: DonorIn
    fees_pence: int = Field(default=0, ge=0)


class GiftAidRangeIn(CamelModel):
    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode="after")
    def check_order(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class MarkEligibleIn(GiftAidRangeIn):
    donor_id: UUID


class RefundIn(CamelModel):
    """Admin refund; a full refund unless ``amountPence`` is given."""

    reason: str = Field(min_length=2, max_length=255)
    amount_pence: Optional[int] = Field(default=None, gt=0)


class OfflineDonationIn(CamelModel):
    """Admin entry of a donation received outside the online checkout."""

    donor: DonorIn
    campaign_id: UUID
    amount_pence: int = Field(gt=0)
    donation_type: DonationType = DonationType.GENERAL
    gift_aid: bool = False
    received_on: Optional[date] = None
    reference: Optional[str] = Field(default=None, max_length=64)
