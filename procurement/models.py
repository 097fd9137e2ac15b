import uuid

from django.conf import settings
from django.db import models

from core.models import Site
from inventory.models import Vendor


class PurchaseRequest(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING = "pending", "Pending approval"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"
        READY_FOR_CC = "ready_for_cc", "Ready for cost comparison"
        CC_PENDING = "cc_pending", "Cost comparison pending"
        READY_FOR_PO = "ready_for_po", "Ready for PO"
        READY_FOR_DELIVERY = "ready_for_delivery", "Ready for delivery"
        DELIVERY_STAGE = "delivery_stage", "Out for delivery"
        DELIVERED = "delivered", "Delivered"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = (Status.DELIVERED, Status.REJECTED, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request_number = models.CharField(max_length=32)
    item_order = models.PositiveIntegerField(default=1)
    site = models.ForeignKey(Site, on_delete=models.PROTECT, related_name="purchase_requests")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="purchase_requests")
    item_name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    specs_brand = models.CharField(max_length=255, blank=True, default="")
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    unit = models.CharField(max_length=32)
    required_by = models.DateField(null=True, blank=True)
    is_urgent = models.BooleanField(default=False)
    photo_urls = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.DRAFT)
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")
    delivered_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "item_order"]
        constraints = [
            models.UniqueConstraint(fields=["request_number", "item_order"], name="proc_req_number_order_uniq"),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="proc_req_status_created_idx"),
            models.Index(fields=["site", "status"], name="proc_req_site_status_idx"),
            models.Index(fields=["created_by", "status"], name="proc_req_creator_status_idx"),
        ]

    def __str__(self):
        return f"#{self.request_number}/{self.item_order} {self.item_name}"


class RequestNote(models.Model):
    class Type(models.TextChoices):
        NOTE = "note", "Note"
        LOG = "log", "Log"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request_number = models.CharField(max_length=32)
    author = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    role = models.CharField(max_length=32, blank=True, default="")
    status = models.CharField(max_length=32, blank=True, default="")
    type = models.CharField(max_length=8, choices=Type.choices, default=Type.NOTE)
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["request_number", "created_at"], name="proc_note_number_created_idx"),
        ]


class CostComparison(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        CC_PENDING = "cc_pending", "Pending review"
        CC_APPROVED = "cc_approved", "Approved"
        CC_REJECTED = "cc_rejected", "Rejected"

    EDITABLE_STATUSES = (Status.DRAFT, Status.CC_REJECTED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request = models.OneToOneField(PurchaseRequest, on_delete=models.CASCADE, related_name="cost_comparison")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    is_direct_delivery = models.BooleanField(default=False)
    inventory_fulfillment_quantity = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    purchase_quantity = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    selected_vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, null=True, blank=True, related_name="selected_in_comparisons")
    manager_notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="cost_comparisons")
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "updated_at"], name="proc_cc_status_updated_idx"),
        ]

    @property
    def comparison_quantity(self):
        return self.purchase_quantity if self.purchase_quantity is not None else self.request.quantity


class VendorQuote(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    comparison = models.ForeignKey(CostComparison, on_delete=models.CASCADE, related_name="quotes")
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name="quotes")
    quoted_price = models.DecimalField(max_digits=14, decimal_places=4)
    per_unit_basis = models.DecimalField(max_digits=12, decimal_places=2, default=1)
    unit_price = models.DecimalField(max_digits=14, decimal_places=4)
    quantity = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    unit = models.CharField(max_length=32, blank=True, default="")
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    gst_percent = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["position", "created_at"]
        constraints = [
            models.UniqueConstraint(fields=["comparison", "vendor"], name="proc_quote_comparison_vendor_uniq"),
        ]


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        PENDING_APPROVAL = "pending_approval", "Pending approval"
        ORDERED = "ordered", "Ordered"
        DELIVERED = "delivered", "Delivered"
        REJECTED = "rejected", "Rejected"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = (Status.DELIVERED, Status.REJECTED, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    po_number = models.CharField(max_length=64, unique=True)
    is_direct = models.BooleanField(default=False)
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT, related_name="purchase_orders")
    site = models.ForeignKey(Site, on_delete=models.PROTECT, related_name="purchase_orders")
    status = models.CharField(max_length=24, choices=Status.choices, default=Status.PENDING_APPROVAL)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    valid_till = models.DateField(null=True, blank=True)
    expected_delivery_date = models.DateField(null=True, blank=True)
    actual_delivery_date = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="purchase_orders")
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="proc_po_status_created_idx"),
            models.Index(fields=["vendor", "status"], name="proc_po_vendor_status_idx"),
            models.Index(fields=["is_direct", "status"], name="proc_po_direct_status_idx"),
        ]

    def __str__(self):
        return self.po_number


class PurchaseOrderLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="lines")
    request = models.ForeignKey(PurchaseRequest, on_delete=models.PROTECT, null=True, blank=True, related_name="po_lines")
    position = models.PositiveIntegerField(default=0)
    item_description = models.CharField(max_length=255)
    hsn_sac_code = models.CharField(max_length=32, blank=True, default="")
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    unit = models.CharField(max_length=32)
    unit_rate = models.DecimalField(max_digits=14, decimal_places=4)
    per_unit_basis = models.DecimalField(max_digits=12, decimal_places=2, default=1)
    per_unit_basis_unit = models.CharField(max_length=32, blank=True, default="")
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    gst_tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    line_total = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    class Meta:
        ordering = ["position"]
        indexes = [
            models.Index(fields=["purchase_order", "position"], name="proc_po_line_order_idx"),
        ]


class DocumentSequence(models.Model):
    """Last serial handed out per numbering key (request numbers, monthly PO serials)."""

    key = models.CharField(max_length=64, primary_key=True)
    last_value = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.key}={self.last_value}"
