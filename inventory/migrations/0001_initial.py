import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models
from django.db.models.functions import Lower


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Vendor",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("company_name", models.CharField(max_length=255)),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("phone", models.CharField(blank=True, default="", max_length=32)),
                (
                    "gst_number",
                    models.CharField(
                        blank=True,
                        default="",
                        max_length=15,
                        validators=[
                            django.core.validators.RegexValidator(
                                message="Enter a valid 15-character GSTIN (e.g. 22AAAAA0000A1Z5).",
                                regex="^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$",
                            )
                        ],
                    ),
                ),
                ("address", models.TextField(blank=True, default="")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["company_name"],
                "indexes": [
                    models.Index(fields=["is_active", "company_name"], name="inv_vendor_active_name_idx"),
                    models.Index(fields=["gst_number"], name="inv_vendor_gst_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InventoryItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("item_name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("hsn_sac_code", models.CharField(blank=True, default="", max_length=32)),
                ("unit", models.CharField(default="nos", max_length=32)),
                (
                    "central_stock",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                ("image_urls", models.JSONField(blank=True, default=list)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                ("vendors", models.ManyToManyField(blank=True, related_name="inventory_items", to="inventory.vendor")),
            ],
            options={
                "ordering": ["item_name"],
                "constraints": [
                    models.UniqueConstraint(Lower("item_name"), name="inv_item_name_ci_unique"),
                    models.CheckConstraint(condition=models.Q(central_stock__gte=0), name="inv_item_stock_non_negative"),
                ],
                "indexes": [models.Index(fields=["is_active", "item_name"], name="inv_item_active_name_idx")],
            },
        ),
        migrations.CreateModel(
            name="StockMove",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("balance_after", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "reason",
                    models.CharField(
                        choices=[("fulfilment", "Request fulfilment"), ("adjustment", "Adjustment"), ("receipt", "Receipt")],
                        max_length=32,
                    ),
                ),
                ("note", models.CharField(blank=True, default="", max_length=255)),
                ("source_ref_type", models.CharField(blank=True, max_length=64, null=True)),
                ("source_ref_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_moves",
                        to="inventory.inventoryitem",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["item", "created_at"], name="inv_move_item_created_idx"),
                    models.Index(fields=["source_ref_id", "source_ref_type"], name="inv_move_source_idx"),
                ],
            },
        ),
    ]
