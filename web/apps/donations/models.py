import uuid
from django.db import models


class CampaignModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slug = models.SlugField(max_length=64, unique=True)
    title = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "campaigns"
        ordering = ["title"]


class DonorModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # normalized (trimmed, lower-cased); the upsert key
    email = models.EmailField(max_length=254, unique=True)
    title = models.CharField(max_length=16, blank=True, default="")
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    phone = models.CharField(max_length=32, blank=True, default="")
    address = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=100, blank=True, default="")
    postcode = models.CharField(max_length=16, blank=True, default="")
    country = models.CharField(max_length=64, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "donors"


class DonationNumberCounter(models.Model):
    name = models.CharField(max_length=32, primary_key=True)
    value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "donation_number_counters"


class IssuedNumber(models.Model):
    # The unique index is the collision detector for allocation
    number = models.CharField(max_length=32, unique=True)
    issued_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "issued_numbers"


class OrderModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True, editable=False)

    class Mode(models.TextChoices):
        PAYMENT = "payment"
        SUBSCRIPTION = "subscription"
        MIXED = "mixed"
        SETUP = "setup"

    class Status(models.TextChoices):
        PENDING = "PENDING"
        CONFIRMED = "CONFIRMED"
        FAILED = "FAILED"

    mode = models.CharField(max_length=16, choices=Mode.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    donor = models.ForeignKey(DonorModel, on_delete=models.PROTECT, related_name="orders")

    subtotal_pence = models.PositiveIntegerField(default=0)
    fees_pence = models.PositiveIntegerField(default=0)
    total_pence = models.PositiveIntegerField(default=0)
    gift_aid = models.BooleanField(default=False)
    billing_address = models.CharField(max_length=255, blank=True, default="")
    billing_postcode = models.CharField(max_length=16, blank=True, default="")
    marketing_email = models.BooleanField(default=False)
    marketing_sms = models.BooleanField(default=False)

    customer_id = models.CharField(max_length=64, blank=True, default="")
    payment_intent_id = models.CharField(max_length=64, null=True, blank=True)
    payment_client_secret = models.CharField(max_length=255, null=True, blank=True)
    subscription_id = models.CharField(max_length=64, null=True, blank=True)
    subscription_client_secret = models.CharField(max_length=255, null=True, blank=True)
    setup_intent_id = models.CharField(max_length=64, null=True, blank=True)
    setup_client_secret = models.CharField(max_length=255, null=True, blank=True)

    # acknowledgement returned by the first successful confirmation
    confirmation = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    campaign = models.ForeignKey(CampaignModel, on_delete=models.PROTECT, related_name="+")
    frequency = models.CharField(max_length=16)
    donation_type = models.CharField(max_length=16)
    amount_pence = models.PositiveIntegerField()
    daily_end_date = models.DateField(null=True, blank=True)
    odd_nights_only = models.BooleanField(default=False)
    start_date = models.DateField(null=True, blank=True)
    deferred = models.BooleanField(default=False)

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class DonationModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    donor = models.ForeignKey(DonorModel, on_delete=models.PROTECT, related_name="donations")
    campaign = models.ForeignKey(CampaignModel, on_delete=models.PROTECT, related_name="donations")
    order = models.ForeignKey(
        OrderModel, on_delete=models.PROTECT, related_name="donations", null=True, blank=True
    )
    donation_number = models.CharField(max_length=32, unique=True, editable=False)
    amount_pence = models.PositiveIntegerField()
    donation_type = models.CharField(max_length=16)
    frequency = models.CharField(max_length=16)

    class Status(models.TextChoices):
        PENDING = "PENDING"
        COMPLETED = "COMPLETED"
        FAILED = "FAILED"
        REFUNDED = "REFUNDED"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    gift_aid = models.BooleanField(default=False)
    gift_aid_claimed = models.BooleanField(default=False)
    billing_address = models.CharField(max_length=255, blank=True, default="")
    billing_postcode = models.CharField(max_length=16, blank=True, default="")
    transaction_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "donations"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(gift_aid_claimed=False) | models.Q(gift_aid=True),
                name="donation_claimed_requires_gift_aid",
            ),
        ]


class RecurringDonationModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    donor = models.ForeignKey(DonorModel, on_delete=models.PROTECT, related_name="recurring")
    campaign = models.ForeignKey(CampaignModel, on_delete=models.PROTECT, related_name="+")
    order = models.ForeignKey(OrderModel, on_delete=models.PROTECT, related_name="recurring")
    amount_pence = models.PositiveIntegerField()
    donation_type = models.CharField(max_length=16)
    frequency = models.CharField(max_length=16)

    class Status(models.TextChoices):
        PENDING = "PENDING"
        ACTIVE = "ACTIVE"
        FAILED = "FAILED"
        CANCELLED = "CANCELLED"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    subscription_id = models.CharField(max_length=64, blank=True, default="")
    gift_aid = models.BooleanField(default=False)
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    last_payment_date = models.DateField(null=True, blank=True)
    next_payment_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "recurring_donations"


class ScheduledChargeModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    donor = models.ForeignKey(DonorModel, on_delete=models.PROTECT, related_name="+")
    campaign = models.ForeignKey(CampaignModel, on_delete=models.PROTECT, related_name="+")
    order = models.ForeignKey(OrderModel, on_delete=models.PROTECT, related_name="scheduled_charges")
    amount_pence = models.PositiveIntegerField()
    donation_type = models.CharField(max_length=16)

    class Status(models.TextChoices):
        PENDING = "PENDING"
        ACTIVE = "ACTIVE"
        CHARGED = "CHARGED"
        FAILED = "FAILED"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    charge_date = models.DateField(db_index=True)
    customer_id = models.CharField(max_length=64)
    payment_method_id = models.CharField(max_length=64, null=True, blank=True)
    gift_aid = models.BooleanField(default=False)
    donation = models.OneToOneField(
        DonationModel, on_delete=models.PROTECT, null=True, blank=True, related_name="scheduled_charge"
    )
    failure_reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "scheduled_charges"
        ordering = ["charge_date"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=128, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
