import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Escrow",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("version", models.PositiveIntegerField(default=1, help_text="Version for optimistic locking - incremented on each save")),
                ("payment_reference", models.CharField(blank=True, default="", max_length=255)),
                ("amount_held_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="ghs", max_length=3)),
                (
                    "release_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("release_date", models.DateTimeField(blank=True, help_text="When the release scheduler may release this escrow", null=True)),
                ("frozen", models.BooleanField(default=False, help_text="Set while a dispute is open; blocks release")),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("released_to", models.CharField(blank=True, default="", help_text="Recipient code the funds were transferred to", max_length=255)),
                ("release_reason", models.CharField(blank=True, default="", max_length=30)),
                ("transfer_reference", models.CharField(blank=True, default="", max_length=255)),
                ("transfer_id", models.CharField(blank=True, default="", max_length=255)),
                ("release_attempts", models.PositiveIntegerField(default=0)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "escrows",
                "ordering": ["release_date", "created_at"],
                "indexes": [
                    models.Index(fields=["release_status", "frozen", "release_date"], name="escrow_due_release_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount_held_cents__gt", 0)), name="escrow_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundAttempt",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("payment_reference", models.CharField(blank=True, default="", max_length=255)),
                ("amount_cents", models.PositiveBigIntegerField()),
                ("gateway_ref", models.CharField(blank=True, default="", help_text="Gateway refund id (re_xxx) when the call succeeded", max_length=255)),
                ("idempotency_key", models.CharField(db_index=True, max_length=255)),
                ("status", models.CharField(choices=[("success", "Success"), ("failed", "Failed")], max_length=20)),
                ("error_message", models.TextField(blank=True, default="")),
                ("reason", models.TextField(blank=True, default="")),
                ("attempted_at", models.DateTimeField()),
                (
                    "initiated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refund_attempts",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["attempted_at", "id"],
            },
        ),
    ]
