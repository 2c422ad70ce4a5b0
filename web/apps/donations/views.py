"""HTTP views for the donations app.

Views are kept small: they validate requests (via Pydantic), map to domain
DTOs, delegate to the services obtained from ``providers`` and return an
HTTP response. Domain errors carry their own code and status and are
rendered by ``exception_handler``, registered as DRF's
``EXCEPTION_HANDLER``.

Idempotency: ``POST /api/checkout`` honours an ``Idempotency-Key`` header.
The first request runs the checkout and stores its response; retries with
the same payload replay it with ``Idempotent-Replay: true``; the same key
with a different payload is a 409.
"""

import json
import logging

import stripe
from django.conf import settings
from django.http import HttpResponse
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework.views import exception_handler as drf_exception_handler

from . import providers
from .domain import CheckoutRequest
from .errors import DonationError, NotFound
from .giftaid import export_csv
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent, release
from .models import OrderModel
from .scheduler import plan_daily_giving
from .schemas import (
    CheckoutIn,
    ConfirmIn,
    DailyGivingCheckoutIn,
    DailyGivingPlanIn,
    GiftAidRangeIn,
    MarkEligibleIn,
    OfflineDonationIn,
    RefundIn,
)

logger = logging.getLogger("donations.api")


def exception_handler(exc, context):
    """Render domain errors as ``{"detail": CODE}`` with their status."""
    if isinstance(exc, DonationError):
        return Response(exc.as_body(), status=exc.http_status)
    if isinstance(exc, ValidationError):
        return _invalid(exc)
    response = drf_exception_handler(exc, context)
    if response is None:
        logger.exception("unhandled error", extra={"view": type(context.get("view")).__name__})
        return Response({"detail": "INTERNAL_ERROR"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return response


def _invalid(e: ValidationError) -> Response:
    return Response(
        {"detail": "INVALID_REQUEST", "errors": json.loads(e.json(include_url=False))},
        status=status.HTTP_400_BAD_REQUEST,
    )


class PublicAPIView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]


class AdminAPIView(APIView):
    permission_classes = [IsAdminUser]


class CheckoutView(PublicAPIView):
    """Turn a cart into a PENDING order plus the gateway objects to pay for it.

    Responses:
        - 201 with ``{orderId, orderNumber, mode, ...clientSecrets/ids}``.
        - The stored status and body again for a repeated ``Idempotency-Key``.
        - 409 ``IDEMPOTENCY_CONFLICT`` when a key is reused with another payload.
        - 400 invalid cart or totals, 404 unknown campaign.
        - 500 gateway failure (Stripe's message in ``message``).
        - 503 ``DONATION_NUMBER_UNAVAILABLE``.
    """

    throttle_scope = "checkout"

    def post(self, request):
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CheckoutIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except IdempotencyConflict as e:
                return Response(e.as_body(), status=e.http_status)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        try:
            result = providers.get_checkout_service().checkout(dto.to_domain())
        except DonationError as e:
            if rec:
                # 5xx outcomes are retryable; keep the key free for the retry
                if e.http_status >= 500:
                    release(rec)
                else:
                    finalize(rec, e.http_status, e.as_body())
            raise
        except Exception:
            # rendered as 500 INTERNAL_ERROR, which is retryable too
            if rec:
                release(rec)
            raise

        body = result.as_response()
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=result.order_id)
        return Response(body, status=status.HTTP_201_CREATED)


class ConfirmView(PublicAPIView):
    throttle_scope = "confirm"

    def post(self, request):
        try:
            dto = ConfirmIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        ack = providers.get_confirmation_service().confirm(
            dto.order_number,
            payment_intent_id=dto.payment_intent_id,
            subscription_id=dto.subscription_id,
            setup_intent_id=dto.setup_intent_id,
        )
        return Response(ack, status=status.HTTP_200_OK)


def _order_or_404(order_number: str) -> OrderModel:
    order = OrderModel.objects.select_related("donor").filter(order_number=order_number).first()
    if order is None:
        raise NotFound("ORDER_NOT_FOUND")
    return order


class ResumeCheckoutView(PublicAPIView):
    """Everything the payment page needs to pick up an abandoned PENDING order."""

    throttle_scope = "resume"

    def get(self, request):
        order_number = request.query_params.get("orderNumber")
        if not order_number:
            return Response({"detail": "ORDER_NUMBER_REQUIRED"}, status=status.HTTP_400_BAD_REQUEST)
        order = _order_or_404(order_number)
        if order.status != OrderModel.Status.PENDING:
            return Response(
                {"detail": "ORDER_NOT_PENDING", "status": order.status}, status=status.HTTP_409_CONFLICT
            )
        body = {
            "orderId": str(order.id),
            "orderNumber": order.order_number,
            "mode": order.mode,
            "status": order.status,
            "subtotalPence": order.subtotal_pence,
            "feesPence": order.fees_pence,
            "totalPence": order.total_pence,
            "giftAid": order.gift_aid,
            "donor": {
                "email": order.donor.email,
                "firstName": order.donor.first_name,
                "lastName": order.donor.last_name,
            },
            "items": [
                {
                    "campaignId": str(i.campaign_id),
                    "frequency": i.frequency,
                    "donationType": i.donation_type,
                    "amountPence": i.amount_pence,
                    "dailyEndDate": i.daily_end_date.isoformat() if i.daily_end_date else None,
                    "startDate": i.start_date.isoformat() if i.start_date else None,
                    "deferred": i.deferred,
                }
                for i in order.items.all()
            ],
            "paymentClientSecret": order.payment_client_secret,
            "subscriptionClientSecret": order.subscription_client_secret,
            "setupIntentClientSecret": order.setup_client_secret,
            "paymentIntentId": order.payment_intent_id,
            "subscriptionId": order.subscription_id,
            "setupIntentId": order.setup_intent_id,
        }
        return Response({k: v for k, v in body.items() if v is not None}, status=status.HTTP_200_OK)


class OrderStatusView(PublicAPIView):
    throttle_scope = "order_status"

    def get(self, request, order_number: str):
        order = _order_or_404(order_number)
        return Response(
            {
                "orderNumber": order.order_number,
                "status": order.status,
                "mode": order.mode,
                "totalPence": order.total_pence,
                "confirmedAt": order.confirmed_at.isoformat() if order.confirmed_at else None,
                "confirmation": order.confirmation,
            },
            status=status.HTTP_200_OK,
        )


class DailyGivingPlanView(PublicAPIView):
    throttle_scope = "daily_giving"

    def post(self, request):
        try:
            dto = DailyGivingPlanIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        plan = plan_daily_giving(dto.amount_per_day_pence, dto.mode, dto.odd_nights_only, dto.period_end_date)
        return Response(plan.as_dict(), status=status.HTTP_200_OK)


class DailyGivingCheckoutView(PublicAPIView):
    """Expand a daily giving pledge into cart items and check them out."""

    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = DailyGivingCheckoutIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        plan = plan_daily_giving(dto.amount_per_day_pence, dto.mode, dto.odd_nights_only, dto.period_end_date)
        items = plan.cart_items(str(dto.campaign_id), dto.donation_type)
        subtotal = sum(i.amount_pence for i in items)
        checkout = CheckoutRequest(
            items=items,
            donor=dto.donor.to_domain(),
            subtotal_pence=subtotal,
            fees_pence=dto.fees_pence,
            total_pence=subtotal + dto.fees_pence,
        )
        result = providers.get_checkout_service().checkout(checkout)
        return Response({**result.as_response(), "plan": plan.as_dict()}, status=status.HTTP_201_CREATED)


class GiftAidAdminView(AdminAPIView):
    """HMRC schedule (GET), mark claimed (POST), mark a donor eligible (PATCH)."""

    def get(self, request):
        try:
            rng = GiftAidRangeIn.model_validate(
                {"start": request.query_params.get("start"), "end": request.query_params.get("end")}
            )
        except ValidationError as e:
            return _invalid(e)
        data = providers.get_giftaid_service().schedule(rng.start, rng.end)

        if request.query_params.get("format") == "csv":
            bucket = request.query_params.get("bucket", "eligible")
            if bucket not in ("eligible", "ineligible"):
                return Response({"detail": "INVALID_BUCKET"}, status=status.HTTP_400_BAD_REQUEST)
            resp = HttpResponse(export_csv(data[bucket]["rows"]), content_type="text/csv; charset=utf-8")
            resp["Content-Disposition"] = f'attachment; filename="giftaid-{bucket}.csv"'
            return resp
        return Response(data, status=status.HTTP_200_OK)

    def post(self, request):
        try:
            rng = GiftAidRangeIn.model_validate(request.data or {})
        except ValidationError as e:
            return _invalid(e)
        updated = providers.get_giftaid_service().mark_claimed(rng.start, rng.end)
        return Response({"updated": updated}, status=status.HTTP_200_OK)

    def patch(self, request):
        try:
            dto = MarkEligibleIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        updated = providers.get_giftaid_service().mark_eligible(dto.donor_id, dto.start, dto.end)
        return Response({"updated": updated}, status=status.HTTP_200_OK)


class OfflineDonationView(AdminAPIView):
    def post(self, request):
        try:
            dto = OfflineDonationIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        body = providers.get_giftaid_service().record_offline_donation(
            dto.donor.to_domain(),
            dto.campaign_id,
            dto.amount_pence,
            donation_type=dto.donation_type,
            gift_aid=dto.gift_aid,
            received_on=dto.received_on,
            reference=dto.reference,
        )
        return Response(body, status=status.HTTP_201_CREATED)


class RefundDonationView(AdminAPIView):
    def post(self, request, donation_id):
        try:
            dto = RefundIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid(e)
        body = providers.get_refund_service().refund(donation_id, dto.reason, amount_pence=dto.amount_pence)
        return Response(body, status=status.HTTP_200_OK)


class StripeWebhookView(APIView):
    """Signature-checked Stripe event intake."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        signature = request.headers.get("Stripe-Signature", "")
        try:
            event = stripe.Webhook.construct_event(
                request.body, signature, getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
            )
        except ValueError:
            return Response({"detail": "INVALID_PAYLOAD"}, status=status.HTTP_400_BAD_REQUEST)
        except stripe.SignatureVerificationError:
            logger.warning("webhook signature rejected")
            return Response({"detail": "INVALID_SIGNATURE"}, status=status.HTTP_400_BAD_REQUEST)

        outcome = providers.get_webhook_dispatcher().handle(event)
        return Response({"received": True, "outcome": outcome}, status=status.HTTP_200_OK)
