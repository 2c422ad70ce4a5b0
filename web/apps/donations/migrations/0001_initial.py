import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CampaignModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("slug", models.SlugField(max_length=64, unique=True)),
                ("title", models.CharField(max_length=200)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "db_table": "campaigns",
                "ordering": ["title"],
            },
        ),
        migrations.CreateModel(
            name="DonorModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("title", models.CharField(blank=True, default="", max_length=16)),
                ("first_name", models.CharField(max_length=100)),
                ("last_name", models.CharField(max_length=100)),
                ("phone", models.CharField(blank=True, default="", max_length=32)),
                ("address", models.CharField(blank=True, default="", max_length=255)),
                ("city", models.CharField(blank=True, default="", max_length=100)),
                ("postcode", models.CharField(blank=True, default="", max_length=16)),
                ("country", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "donors",
            },
        ),
        migrations.CreateModel(
            name="DonationNumberCounter",
            fields=[
                ("name", models.CharField(max_length=32, primary_key=True, serialize=False)),
                ("value", models.BigIntegerField(default=0)),
            ],
            options={
                "db_table": "donation_number_counters",
            },
        ),
        migrations.CreateModel(
            name="IssuedNumber",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("number", models.CharField(max_length=32, unique=True)),
                ("issued_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "issued_numbers",
            },
        ),
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(editable=False, max_length=32, unique=True)),
                (
                    "mode",
                    models.CharField(
                        choices=[
                            ("payment", "Payment"),
                            ("subscription", "Subscription"),
                            ("mixed", "Mixed"),
                            ("setup", "Setup"),
                        ],
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("PENDING", "Pending"), ("CONFIRMED", "Confirmed"), ("FAILED", "Failed")],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("subtotal_pence", models.PositiveIntegerField(default=0)),
                ("fees_pence", models.PositiveIntegerField(default=0)),
                ("total_pence", models.PositiveIntegerField(default=0)),
                ("gift_aid", models.BooleanField(default=False)),
                ("billing_address", models.CharField(blank=True, default="", max_length=255)),
                ("billing_postcode", models.CharField(blank=True, default="", max_length=16)),
                ("customer_id", models.CharField(blank=True, default="", max_length=64)),
                ("payment_intent_id", models.CharField(blank=True, max_length=64, null=True)),
                ("payment_client_secret", models.CharField(blank=True, max_length=255, null=True)),
                ("subscription_id", models.CharField(blank=True, max_length=64, null=True)),
                ("subscription_client_secret", models.CharField(blank=True, max_length=255, null=True)),
                ("setup_intent_id", models.CharField(blank=True, max_length=64, null=True)),
                ("setup_client_secret", models.CharField(blank=True, max_length=255, null=True)),
                ("confirmation", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "donor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to="donations.donormodel",
                    ),
                ),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("frequency", models.CharField(max_length=16)),
                ("donation_type", models.CharField(max_length=16)),
                ("amount_pence", models.PositiveIntegerField()),
                ("daily_end_date", models.DateField(blank=True, null=True)),
                ("odd_nights_only", models.BooleanField(default=False)),
                ("start_date", models.DateField(blank=True, null=True)),
                ("deferred", models.BooleanField(default=False)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="donations.campaignmodel",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="donations.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "order_items",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="DonationModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("donation_number", models.CharField(editable=False, max_length=32, unique=True)),
                ("amount_pence", models.PositiveIntegerField()),
                ("donation_type", models.CharField(max_length=16)),
                ("frequency", models.CharField(max_length=16)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("COMPLETED", "Completed"),
                            ("FAILED", "Failed"),
                            ("REFUNDED", "Refunded"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("gift_aid", models.BooleanField(default=False)),
                ("gift_aid_claimed", models.BooleanField(default=False)),
                ("billing_address", models.CharField(blank=True, default="", max_length=255)),
                ("billing_postcode", models.CharField(blank=True, default="", max_length=16)),
                ("transaction_id", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="donations",
                        to="donations.campaignmodel",
                    ),
                ),
                (
                    "donor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="donations",
                        to="donations.donormodel",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="donations",
                        to="donations.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "donations",
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("gift_aid_claimed", False), ("gift_aid", True), _connector="OR"),
                        name="donation_claimed_requires_gift_aid",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RecurringDonationModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount_pence", models.PositiveIntegerField()),
                ("donation_type", models.CharField(max_length=16)),
                ("frequency", models.CharField(max_length=16)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("ACTIVE", "Active"),
                            ("FAILED", "Failed"),
                            ("CANCELLED", "Cancelled"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("subscription_id", models.CharField(blank=True, default="", max_length=64)),
                ("gift_aid", models.BooleanField(default=False)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(blank=True, null=True)),
                ("last_payment_date", models.DateField(blank=True, null=True)),
                ("next_payment_date", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="donations.campaignmodel",
                    ),
                ),
                (
                    "donor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="recurring",
                        to="donations.donormodel",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="recurring",
                        to="donations.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "recurring_donations",
            },
        ),
        migrations.CreateModel(
            name="ScheduledChargeModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount_pence", models.PositiveIntegerField()),
                ("donation_type", models.CharField(max_length=16)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("ACTIVE", "Active"),
                            ("CHARGED", "Charged"),
                            ("FAILED", "Failed"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("charge_date", models.DateField(db_index=True)),
                ("customer_id", models.CharField(max_length=64)),
                ("payment_method_id", models.CharField(blank=True, max_length=64, null=True)),
                ("gift_aid", models.BooleanField(default=False)),
                ("failure_reason", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "campaign",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="donations.campaignmodel",
                    ),
                ),
                (
                    "donation",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="scheduled_charge",
                        to="donations.donationmodel",
                    ),
                ),
                (
                    "donor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="donations.donormodel",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="scheduled_charges",
                        to="donations.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "scheduled_charges",
                "ordering": ["charge_date"],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=128, unique=True)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="donations.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "idempotency_keys",
            },
        ),
    ]
