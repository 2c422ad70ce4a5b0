"""Domain models, ports and the checkout orchestrator for donations.

This module contains the dataclasses used as DTOs for a checkout (cart
items, donor profile, gateway handles), protocol definitions (ports) for
the collaborators the orchestrator drives (payment gateway, number
allocator, donor/order/campaign stores, receipt notifier), the pure
mode-selection rule, and the ``CheckoutService`` that turns a cart into
exactly one PENDING order plus the gateway objects needed to pay for it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from .errors import NotFound, ValidationFailed

logger = logging.getLogger("donations.checkout")


def utc_today() -> date:
    """Current UTC calendar day."""
    return datetime.now(timezone.utc).date()


# ---- Enums ----
class Frequency(str, Enum):
    """How often a cart item is charged."""

    ONE_OFF = "ONE_OFF"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    DAILY = "DAILY"

    @property
    def is_recurring(self) -> bool:
        return self is not Frequency.ONE_OFF

    @property
    def interval(self) -> str | None:
        """Gateway billing interval for recurring frequencies."""
        return {
            Frequency.MONTHLY: "month",
            Frequency.YEARLY: "year",
            Frequency.DAILY: "day",
        }.get(self)


class DonationType(str, Enum):
    GENERAL = "GENERAL"
    SADAQAH = "SADAQAH"
    ZAKAT = "ZAKAT"
    LILLAH = "LILLAH"


class CheckoutMode(str, Enum):
    """Shape of the gateway interaction an order needs."""

    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"
    MIXED = "mixed"
    SETUP = "setup"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartItem:
    """A single pledge in a checkout cart.

    Attributes:
        campaign_id: Identifier of the campaign (appeal) being supported.
        frequency: ONE_OFF or a recurring cadence.
        donation_type: Religious/accounting tag of the gift.
        amount_pence: Amount per charge in minor units; must be positive.
        daily_end_date: Last charge date of a DAILY item (inclusive).
        odd_nights_only: Set on items expanded from an odd-nights plan.
        start_date: First charge date; ``None`` means "charge now". Items
            starting after the checkout day are deferred.
    """

    campaign_id: str
    frequency: Frequency
    donation_type: DonationType
    amount_pence: int
    daily_end_date: date | None = None
    odd_nights_only: bool = False
    start_date: date | None = None

    def is_deferred(self, today: date) -> bool:
        return self.start_date is not None and self.start_date > today


@dataclass
class DonorProfile:
    """Donor details captured at checkout."""

    email: str
    first_name: str
    last_name: str
    title: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postcode: str | None = None
    country: str | None = None
    billing_address: str | None = None
    billing_postcode: str | None = None
    gift_aid: bool = False
    marketing_email: bool = False
    marketing_sms: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def donor_fields(self) -> dict:
        """Fields stored on the donor record (billing/consent stay on the order)."""
        return {
            "title": self.title,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "postcode": self.postcode,
            "country": self.country,
        }


@dataclass
class CheckoutRequest:
    items: List[CartItem]
    donor: DonorProfile
    subtotal_pence: int
    fees_pence: int
    total_pence: int


@dataclass(frozen=True)
class GatewayIntent:
    """Handle on a gateway object the payment UI has to complete."""

    id: str
    client_secret: str | None = None


@dataclass(frozen=True)
class GatewayStatus:
    """Gateway-side state of a payment, subscription or setup intent."""

    id: str
    status: str
    customer_id: str | None = None
    payment_method_id: str | None = None
    next_payment_date: date | None = None


@dataclass
class ModePlan:
    """Result of mode selection: the mode plus the partitioned cart."""

    mode: CheckoutMode
    due_one_off: List[CartItem] = field(default_factory=list)
    due_recurring: List[CartItem] = field(default_factory=list)
    deferred: List[CartItem] = field(default_factory=list)

    @property
    def one_off_pence(self) -> int:
        return sum(i.amount_pence for i in self.due_one_off)

    @property
    def recurring_pence(self) -> int:
        return sum(i.amount_pence for i in self.due_recurring)

    @property
    def cadence(self) -> Optional[Frequency]:
        return self.due_recurring[0].frequency if self.due_recurring else None

    @property
    def recurring_end_date(self) -> date | None:
        return self.due_recurring[0].daily_end_date if self.due_recurring else None


@dataclass
class CheckoutResult:
    order_id: str
    order_number: str
    mode: CheckoutMode
    payment_client_secret: str | None = None
    subscription_client_secret: str | None = None
    setup_intent_client_secret: str | None = None
    payment_intent_id: str | None = None
    subscription_id: str | None = None
    setup_intent_id: str | None = None

    def as_response(self) -> dict:
        body = {
            "orderId": str(self.order_id),
            "orderNumber": self.order_number,
            "mode": self.mode.value,
            "paymentClientSecret": self.payment_client_secret,
            "subscriptionClientSecret": self.subscription_client_secret,
            "setupIntentClientSecret": self.setup_intent_client_secret,
            "paymentIntentId": self.payment_intent_id,
            "subscriptionId": self.subscription_id,
            "setupIntentId": self.setup_intent_id,
        }
        return {k: v for k, v in body.items() if v is not None}


# ---- Ports (DIP) ----
class GatewayPort(Protocol):
    """Port describing the payment gateway operations used by the domain.

    Every create call is tagged with the order number and must be
    idempotent for it: implementations look an existing object up by order
    number before creating a new one.
    """

    def ensure_customer(self, email: str, name: str) -> str:
        raise NotImplementedError()

    def create_payment(
        self, order_number: str, customer_id: str, amount_pence: int, save_method: bool = False
    ) -> GatewayIntent:
        raise NotImplementedError()

    def create_subscription(
        self,
        order_number: str,
        customer_id: str,
        amount_pence: int,
        interval: str,
        end_date: date | None = None,
        first_invoice_extra_pence: int = 0,
    ) -> GatewayIntent:
        raise NotImplementedError()

    def create_setup(self, order_number: str, customer_id: str) -> GatewayIntent:
        raise NotImplementedError()

    def retrieve_payment(self, payment_intent_id: str) -> GatewayStatus:
        raise NotImplementedError()

    def retrieve_subscription(self, subscription_id: str) -> GatewayStatus:
        raise NotImplementedError()

    def retrieve_setup(self, setup_intent_id: str) -> GatewayStatus:
        raise NotImplementedError()

    def start_subscription(
        self,
        order_number: str,
        customer_id: str,
        payment_method_id: str | None,
        amount_pence: int,
        interval: str,
        start_date: date,
        end_date: date | None = None,
        line: int = 0,
    ) -> str:
        """Create a subscription whose first charge happens on ``start_date``.

        ``line`` distinguishes several deferred items of one order.
        """
        raise NotImplementedError()

    def charge_saved_method(
        self,
        customer_id: str,
        payment_method_id: str | None,
        amount_pence: int,
        idempotency_key: str,
        metadata: dict,
    ) -> GatewayStatus:
        raise NotImplementedError()

    def refund_payment(
        self,
        payment_intent_id: str,
        amount_pence: int | None = None,
        reason: str = "",
        idempotency_key: str | None = None,
    ) -> GatewayStatus:
        """Refund a payment, in full when ``amount_pence`` is None; returns the refund's id and status."""
        raise NotImplementedError()


class NotifierPort(Protocol):
    """Port for the receipt dispatcher (fire-and-forget from the domain's view)."""

    def send_receipt(self, receipt: dict) -> None:
        raise NotImplementedError()


class NumberAllocator(Protocol):
    def allocate(self) -> str:
        raise NotImplementedError()


class CampaignStore(Protocol):
    def missing(self, campaign_ids: Iterable[str]) -> set:
        """Return the ids that do not name an active campaign."""
        raise NotImplementedError()


class DonorStore(Protocol):
    def find_or_create(self, email: str, fields: dict):
        raise NotImplementedError()


class OrderStore(Protocol):
    def create_pending(self, **kwargs) -> str:
        raise NotImplementedError()


# ---- Mode selection ----
def select_mode(items: List[CartItem], today: date) -> ModePlan:
    """Partition a cart and decide which gateway interaction it needs.

    Items starting after ``today`` are deferred; the rest are due now.
    Rules, in priority order: all due-now items one-off -> payment; all
    due-now items recurring on one cadence -> subscription; a mix -> mixed;
    nothing due now -> setup.

    Raises:
        ValidationFailed: ``EMPTY_CART``, ``CHARGE_DATE_PASSED`` or
            ``MIXED_CADENCE`` (recurring items that cannot share one
            subscription).
    """
    if not items:
        raise ValidationFailed("EMPTY_CART")

    plan = ModePlan(mode=CheckoutMode.PAYMENT)
    for item in items:
        if item.start_date is not None and item.start_date < today:
            raise ValidationFailed("CHARGE_DATE_PASSED")
        if item.is_deferred(today):
            plan.deferred.append(item)
        elif item.frequency.is_recurring:
            plan.due_recurring.append(item)
        else:
            plan.due_one_off.append(item)

    cadences = {(i.frequency, i.daily_end_date) for i in plan.due_recurring}
    if len(cadences) > 1:
        raise ValidationFailed("MIXED_CADENCE")

    if not plan.due_one_off and not plan.due_recurring:
        plan.mode = CheckoutMode.SETUP
    elif not plan.due_recurring:
        plan.mode = CheckoutMode.PAYMENT
    elif not plan.due_one_off:
        plan.mode = CheckoutMode.SUBSCRIPTION
    else:
        plan.mode = CheckoutMode.MIXED
    return plan


def validate_request(request: CheckoutRequest, today: date) -> None:
    """Reject malformed carts before any side effect."""
    if not request.items:
        raise ValidationFailed("EMPTY_CART")
    for item in request.items:
        if item.amount_pence is None or item.amount_pence <= 0:
            raise ValidationFailed("INVALID_AMOUNT")
        if item.frequency is Frequency.DAILY:
            if item.daily_end_date is None:
                raise ValidationFailed("DAILY_END_DATE_REQUIRED")
            if item.daily_end_date < (item.start_date or today):
                raise ValidationFailed("PERIOD_PASSED")
        elif item.daily_end_date is not None:
            raise ValidationFailed("END_DATE_ONLY_FOR_DAILY")
    if request.subtotal_pence != sum(i.amount_pence for i in request.items):
        raise ValidationFailed("SUBTOTAL_MISMATCH")
    if request.fees_pence < 0 or request.total_pence != request.subtotal_pence + request.fees_pence:
        raise ValidationFailed("TOTAL_MISMATCH")
    if request.total_pence <= 0:
        raise ValidationFailed("INVALID_AMOUNT")


# ---- Domain service ----
class CheckoutService:
    """Orchestrates a checkout into one PENDING order.

    The service validates the cart, selects the payment mode, upserts the
    donor, allocates the order number, creates the gateway objects tagged
    with that number and finally persists the order. Any failure before the
    last step leaves no order behind.
    """

    def __init__(
        self,
        gateway: GatewayPort,
        numbers: NumberAllocator,
        donors: DonorStore,
        orders: OrderStore,
        campaigns: CampaignStore,
    ):
        self.gateway = gateway
        self.numbers = numbers
        self.donors = donors
        self.orders = orders
        self.campaigns = campaigns

    def checkout(self, request: CheckoutRequest, today: date | None = None) -> CheckoutResult:
        """Run a checkout.

        Args:
            request: Validated cart, donor and caller-computed totals.
            today: Checkout day (UTC); defaults to the current day.

        Returns:
            CheckoutResult with the identifiers and client secrets the
            payment UI needs.

        Raises:
            ValidationFailed: Invalid amounts, totals or schedule.
            NotFound: An item references an unknown campaign.
            GatewayError: The gateway rejected a create call.
            DonationNumberUnavailable: Number allocation was exhausted.
        """
        today = today or utc_today()
        validate_request(request, today)
        plan = select_mode(request.items, today)
        if plan.mode is CheckoutMode.SETUP and request.fees_pence:
            raise ValidationFailed("FEES_NOT_SUPPORTED_FOR_SETUP")

        missing = self.campaigns.missing({i.campaign_id for i in request.items})
        if missing:
            raise NotFound("CAMPAIGN_NOT_FOUND", message=", ".join(sorted(missing)))

        donor = self.donors.find_or_create(request.donor.email, request.donor.donor_fields())
        order_number = self.numbers.allocate()
        customer_id = self.gateway.ensure_customer(request.donor.email, request.donor.full_name)

        payment = subscription = setup = None
        if plan.due_one_off:
            payment = self.gateway.create_payment(
                order_number,
                customer_id,
                plan.one_off_pence + request.fees_pence,
                save_method=bool(plan.deferred),
            )
        if plan.due_recurring:
            subscription = self.gateway.create_subscription(
                order_number,
                customer_id,
                plan.recurring_pence,
                plan.cadence.interval,
                end_date=plan.recurring_end_date,
                first_invoice_extra_pence=0 if payment else request.fees_pence,
            )
        if plan.mode is CheckoutMode.SETUP:
            setup = self.gateway.create_setup(order_number, customer_id)

        order_id = self.orders.create_pending(
            order_number=order_number,
            mode=plan.mode,
            donor=donor,
            request=request,
            today=today,
            customer_id=customer_id,
            payment=payment,
            subscription=subscription,
            setup=setup,
        )
        logger.info(
            "checkout created",
            extra={"order_number": order_number, "mode": plan.mode.value, "total_pence": request.total_pence},
        )
        return CheckoutResult(
            order_id=order_id,
            order_number=order_number,
            mode=plan.mode,
            payment_client_secret=payment.client_secret if payment else None,
            subscription_client_secret=subscription.client_secret if subscription else None,
            setup_intent_client_secret=setup.client_secret if setup else None,
            payment_intent_id=payment.id if payment else None,
            subscription_id=subscription.id if subscription else None,
            setup_intent_id=setup.id if setup else None,
        )
