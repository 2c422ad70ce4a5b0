"""Service provider helpers for wiring the donation services with ports.

Factories return services wired either with the real adapters (Stripe,
HTTP receipt dispatcher) or with in-process stubs, depending on
``settings.USE_STRIPE_GATEWAY`` and ``settings.USE_HTTP_NOTIFIER``. Views
resolve services through these functions at request time so tests can
monkeypatch them.
"""

from django.conf import settings

from .adapters import GatewayStub, NotifierStub
from .confirmation import ConfirmationService
from .domain import CheckoutService, GatewayPort, NotifierPort
from .giftaid import GiftAidService
from .http_adapters import HttpReceiptNotifier
from .numbers import DonationNumberGenerator
from .refunds import RefundService
from .repository import CampaignRepository, DonorRepository, OrderRepository
from .scheduled import ScheduledChargeRunner
from .stripe_gateway import StripeGateway
from .webhooks import WebhookDispatcher


def get_gateway() -> GatewayPort:
    """Stripe when ``USE_STRIPE_GATEWAY`` is set, the stub otherwise."""
    if getattr(settings, "USE_STRIPE_GATEWAY", False):
        return StripeGateway()
    return GatewayStub()


def get_notifier() -> NotifierPort:
    if getattr(settings, "USE_HTTP_NOTIFIER", False):
        return HttpReceiptNotifier()
    return NotifierStub()


def get_number_generator() -> DonationNumberGenerator:
    return DonationNumberGenerator()


def get_checkout_service() -> CheckoutService:
    return CheckoutService(
        gateway=get_gateway(),
        numbers=get_number_generator(),
        donors=DonorRepository(),
        orders=OrderRepository(),
        campaigns=CampaignRepository(),
    )


def get_confirmation_service() -> ConfirmationService:
    return ConfirmationService(gateway=get_gateway(), notifier=get_notifier(), numbers=get_number_generator())


def get_giftaid_service() -> GiftAidService:
    return GiftAidService(numbers=get_number_generator(), donors=DonorRepository())


def get_scheduled_charge_runner() -> ScheduledChargeRunner:
    return ScheduledChargeRunner(gateway=get_gateway(), numbers=get_number_generator())


def get_refund_service() -> RefundService:
    return RefundService(gateway=get_gateway())


def get_webhook_dispatcher() -> WebhookDispatcher:
    return WebhookDispatcher(confirmation=get_confirmation_service(), refunds=get_refund_service())
