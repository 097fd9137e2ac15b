import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PurchaseRequest",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("request_number", models.CharField(max_length=32)),
                ("item_order", models.PositiveIntegerField(default=1)),
                ("item_name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("specs_brand", models.CharField(blank=True, default="", max_length=255)),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("unit", models.CharField(max_length=32)),
                ("required_by", models.DateField(blank=True, null=True)),
                ("is_urgent", models.BooleanField(default=False)),
                ("photo_urls", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("pending", "Pending approval"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("ready_for_cc", "Ready for cost comparison"),
                            ("cc_pending", "Cost comparison pending"),
                            ("ready_for_po", "Ready for PO"),
                            ("ready_for_delivery", "Ready for delivery"),
                            ("delivery_stage", "Out for delivery"),
                            ("delivered", "Delivered"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="draft",
                        max_length=32,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("notes", models.TextField(blank=True, default="")),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "site",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchase_requests", to="core.site"),
                ),
            ],
            options={
                "ordering": ["-created_at", "item_order"],
                "constraints": [
                    models.UniqueConstraint(fields=["request_number", "item_order"], name="proc_req_number_order_uniq"),
                ],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="proc_req_status_created_idx"),
                    models.Index(fields=["site", "status"], name="proc_req_site_status_idx"),
                    models.Index(fields=["created_by", "status"], name="proc_req_creator_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="RequestNote",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("request_number", models.CharField(max_length=32)),
                ("role", models.CharField(blank=True, default="", max_length=32)),
                ("status", models.CharField(blank=True, default="", max_length=32)),
                ("type", models.CharField(choices=[("note", "Note"), ("log", "Log")], default="note", max_length=8)),
                ("content", models.TextField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "author",
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
                "ordering": ["created_at"],
                "indexes": [models.Index(fields=["request_number", "created_at"], name="proc_note_number_created_idx")],
            },
        ),
        migrations.CreateModel(
            name="CostComparison",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("cc_pending", "Pending review"),
                            ("cc_approved", "Approved"),
                            ("cc_rejected", "Rejected"),
                        ],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("is_direct_delivery", models.BooleanField(default=False)),
                ("inventory_fulfillment_quantity", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("purchase_quantity", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("manager_notes", models.TextField(blank=True, default="")),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cost_comparisons",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "request",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cost_comparison",
                        to="procurement.purchaserequest",
                    ),
                ),
                (
                    "selected_vendor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="selected_in_comparisons",
                        to="inventory.vendor",
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["status", "updated_at"], name="proc_cc_status_updated_idx")],
            },
        ),
        migrations.CreateModel(
            name="VendorQuote",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quoted_price", models.DecimalField(decimal_places=4, max_digits=14)),
                ("per_unit_basis", models.DecimalField(decimal_places=2, default=1, max_digits=12)),
                ("unit_price", models.DecimalField(decimal_places=4, max_digits=14)),
                ("quantity", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("unit", models.CharField(blank=True, default="", max_length=32)),
                ("discount_percent", models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ("gst_percent", models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ("position", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "comparison",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="quotes",
                        to="procurement.costcomparison",
                    ),
                ),
                (
                    "vendor",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="quotes", to="inventory.vendor"),
                ),
            ],
            options={
                "ordering": ["position", "created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=["comparison", "vendor"], name="proc_quote_comparison_vendor_uniq"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrder",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("po_number", models.CharField(max_length=64, unique=True)),
                ("is_direct", models.BooleanField(default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_approval", "Pending approval"),
                            ("ordered", "Ordered"),
                            ("delivered", "Delivered"),
                            ("rejected", "Rejected"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending_approval",
                        max_length=24,
                    ),
                ),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("valid_till", models.DateField(blank=True, null=True)),
                ("expected_delivery_date", models.DateField(blank=True, null=True)),
                ("actual_delivery_date", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.TextField(blank=True, default="")),
                ("notes", models.TextField(blank=True, default="")),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "site",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchase_orders", to="core.site"),
                ),
                (
                    "vendor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="inventory.vendor",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="proc_po_status_created_idx"),
                    models.Index(fields=["vendor", "status"], name="proc_po_vendor_status_idx"),
                    models.Index(fields=["is_direct", "status"], name="proc_po_direct_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrderLine",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("position", models.PositiveIntegerField(default=0)),
                ("item_description", models.CharField(max_length=255)),
                ("hsn_sac_code", models.CharField(blank=True, default="", max_length=32)),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("unit", models.CharField(max_length=32)),
                ("unit_rate", models.DecimalField(decimal_places=4, max_digits=14)),
                ("per_unit_basis", models.DecimalField(decimal_places=2, default=1, max_digits=12)),
                ("per_unit_basis_unit", models.CharField(blank=True, default="", max_length=32)),
                ("discount_percent", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("gst_tax_rate", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("line_total", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="procurement.purchaseorder",
                    ),
                ),
                (
                    "request",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="po_lines",
                        to="procurement.purchaserequest",
                    ),
                ),
            ],
            options={
                "ordering": ["position"],
                "indexes": [models.Index(fields=["purchase_order", "position"], name="proc_po_line_order_idx")],
            },
        ),
    ]
