"""Repository layer for donors, campaigns and orders.

Thin wrappers over the Django ORM so the checkout orchestrator only sees
primitive values and domain DTOs.
"""

from datetime import date
from typing import Iterable

from django.db import IntegrityError, transaction

from .domain import CheckoutMode, CheckoutRequest, GatewayIntent
from .models import CampaignModel, DonorModel, OrderItemModel, OrderModel


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class CampaignRepository:
    def missing(self, campaign_ids: Iterable[str]) -> set:
        ids = {str(c) for c in campaign_ids}
        found = CampaignModel.objects.filter(id__in=ids, is_active=True).values_list("id", flat=True)
        return ids - {str(f) for f in found}


class DonorRepository:
    """Upserts donors keyed by normalized email."""

    def find_or_create(self, email: str, fields: dict) -> DonorModel:
        """Return the donor for ``email``, creating or refreshing it.

        Blank incoming values never overwrite stored ones. Runs in a
        transaction; a concurrent first-time insert for the same email is
        absorbed by re-reading the row that won.
        """
        email = normalize_email(email)
        incoming = {k: v.strip() for k, v in fields.items() if isinstance(v, str) and v.strip()}

        with transaction.atomic():
            donor = DonorModel.objects.select_for_update().filter(email=email).first()
            if donor is None:
                try:
                    with transaction.atomic():
                        return DonorModel.objects.create(email=email, **incoming)
                except IntegrityError:
                    donor = DonorModel.objects.select_for_update().get(email=email)

            changed = [k for k, v in incoming.items() if getattr(donor, k) != v]
            for k in changed:
                setattr(donor, k, incoming[k])
            if changed:
                donor.save(update_fields=changed)
            return donor


class OrderRepository:
    """Persists checkout orders."""

    @transaction.atomic
    def create_pending(
        self,
        order_number: str,
        mode: CheckoutMode,
        donor: DonorModel,
        request: CheckoutRequest,
        today: date,
        customer_id: str,
        payment: GatewayIntent | None = None,
        subscription: GatewayIntent | None = None,
        setup: GatewayIntent | None = None,
    ):
        profile = request.donor
        order = OrderModel.objects.create(
            order_number=order_number,
            mode=mode.value,
            donor=donor,
            subtotal_pence=request.subtotal_pence,
            fees_pence=request.fees_pence,
            total_pence=request.total_pence,
            gift_aid=profile.gift_aid,
            billing_address=profile.billing_address or profile.address or "",
            billing_postcode=profile.billing_postcode or profile.postcode or "",
            marketing_email=profile.marketing_email,
            marketing_sms=profile.marketing_sms,
            customer_id=customer_id,
            payment_intent_id=payment.id if payment else None,
            payment_client_secret=payment.client_secret if payment else None,
            subscription_id=subscription.id if subscription else None,
            subscription_client_secret=subscription.client_secret if subscription else None,
            setup_intent_id=setup.id if setup else None,
            setup_client_secret=setup.client_secret if setup else None,
        )
        OrderItemModel.objects.bulk_create(
            [
                OrderItemModel(
                    order=order,
                    campaign_id=item.campaign_id,
                    frequency=item.frequency.value,
                    donation_type=item.donation_type.value,
                    amount_pence=item.amount_pence,
                    daily_end_date=item.daily_end_date,
                    odd_nights_only=item.odd_nights_only,
                    start_date=item.start_date,
                    deferred=item.is_deferred(today),
                )
                for item in request.items
            ]
        )
        return order.id
