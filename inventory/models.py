import uuid

from django.conf import settings
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models
from django.db.models.functions import Lower

GST_NUMBER_PATTERN = r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$"

gst_number_validator = RegexValidator(
    regex=GST_NUMBER_PATTERN,
    message="Enter a valid 15-character GSTIN (e.g. 22AAAAA0000A1Z5).",
)


class Vendor(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company_name = models.CharField(max_length=255)
    contact_name = models.CharField(max_length=255, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=32, blank=True, default="")
    gst_number = models.CharField(max_length=15, blank=True, default="", validators=[gst_number_validator])
    address = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["company_name"]
        indexes = [
            models.Index(fields=["is_active", "company_name"], name="inv_vendor_active_name_idx"),
            models.Index(fields=["gst_number"], name="inv_vendor_gst_idx"),
        ]

    def __str__(self):
        return self.company_name


class InventoryItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item_name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    hsn_sac_code = models.CharField(max_length=32, blank=True, default="")
    unit = models.CharField(max_length=32, default="nos")
    central_stock = models.DecimalField(max_digits=12, decimal_places=2, default=0, validators=[MinValueValidator(0)])
    vendors = models.ManyToManyField(Vendor, blank=True, related_name="inventory_items")
    image_urls = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["item_name"]
        constraints = [
            models.UniqueConstraint(Lower("item_name"), name="inv_item_name_ci_unique"),
            models.CheckConstraint(condition=models.Q(central_stock__gte=0), name="inv_item_stock_non_negative"),
        ]
        indexes = [
            models.Index(fields=["is_active", "item_name"], name="inv_item_active_name_idx"),
        ]

    def __str__(self):
        return self.item_name


class StockMove(models.Model):
    class Reason(models.TextChoices):
        FULFILMENT = "fulfilment", "Request fulfilment"
        ADJUSTMENT = "adjustment", "Adjustment"
        RECEIPT = "receipt", "Receipt"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item = models.ForeignKey(InventoryItem, on_delete=models.PROTECT, related_name="stock_moves")
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.CharField(max_length=32, choices=Reason.choices)
    note = models.CharField(max_length=255, blank=True, default="")
    source_ref_type = models.CharField(max_length=64, null=True, blank=True)
    source_ref_id = models.UUIDField(null=True, blank=True)
    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["item", "created_at"], name="inv_move_item_created_idx"),
            models.Index(fields=["source_ref_id", "source_ref_type"], name="inv_move_source_idx"),
        ]
