from decimal import Decimal

from rest_framework import serializers

from core.models import Site
from inventory.models import Vendor
from procurement.models import (
    CostComparison,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseRequest,
    RequestNote,
    VendorQuote,
)
from procurement.services import rank_quotes

PERCENT_FIELD_KWARGS = {"max_digits": 5, "decimal_places": 2, "min_value": Decimal("0"), "max_value": Decimal("100")}


class PurchaseRequestSerializer(serializers.ModelSerializer):
    site_name = serializers.CharField(source="site.name", read_only=True)
    created_by_name = serializers.CharField(source="created_by.display_name", read_only=True)
    approved_by_name = serializers.CharField(source="approved_by.display_name", read_only=True, default=None)
    has_cost_comparison = serializers.SerializerMethodField()

    class Meta:
        model = PurchaseRequest
        fields = [
            "id",
            "request_number",
            "item_order",
            "site",
            "site_name",
            "created_by",
            "created_by_name",
            "item_name",
            "description",
            "specs_brand",
            "quantity",
            "unit",
            "required_by",
            "is_urgent",
            "photo_urls",
            "status",
            "approved_by",
            "approved_by_name",
            "approved_at",
            "rejection_reason",
            "notes",
            "delivered_at",
            "has_cost_comparison",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_has_cost_comparison(self, obj):
        return hasattr(obj, "cost_comparison")


class RequestItemSerializer(serializers.Serializer):
    item_name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    specs_brand = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    unit = serializers.CharField(max_length=32)
    required_by = serializers.DateField(required=False, allow_null=True, default=None)
    is_urgent = serializers.BooleanField(required=False, default=False)
    photo_urls = serializers.ListField(child=serializers.URLField(), required=False, default=list)


class RequestGroupCreateSerializer(serializers.Serializer):
    site = serializers.PrimaryKeyRelatedField(queryset=Site.objects.all())
    items = RequestItemSerializer(many=True, allow_empty=False)
    submit = serializers.BooleanField(required=False, default=False)


class DraftItemUpdateSerializer(serializers.Serializer):
    item_name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    specs_brand = serializers.CharField(max_length=255, required=False, allow_blank=True)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    unit = serializers.CharField(max_length=32, required=False)
    required_by = serializers.DateField(required=False, allow_null=True)
    is_urgent = serializers.BooleanField(required=False)
    photo_urls = serializers.ListField(child=serializers.URLField(), required=False)


class RequestDetailsSerializer(serializers.Serializer):
    item_name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    unit = serializers.CharField(max_length=32, required=False)


class ReviewSerializer(serializers.Serializer):
    approve = serializers.BooleanField()
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RequestNoteSerializer(serializers.ModelSerializer):
    author_name = serializers.CharField(source="author.display_name", read_only=True, default=None)

    class Meta:
        model = RequestNote
        fields = ["id", "request_number", "author", "author_name", "role", "status", "type", "content", "created_at"]
        read_only_fields = ["id", "author", "author_name", "role", "status", "type", "created_at"]


class VendorQuoteSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source="vendor.company_name", read_only=True)

    class Meta:
        model = VendorQuote
        fields = [
            "id",
            "vendor",
            "vendor_name",
            "quoted_price",
            "per_unit_basis",
            "unit_price",
            "quantity",
            "unit",
            "discount_percent",
            "gst_percent",
            "position",
        ]
        read_only_fields = fields


class QuoteInputSerializer(serializers.Serializer):
    vendor = serializers.PrimaryKeyRelatedField(queryset=Vendor.objects.all())
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=4, min_value=Decimal("0"))
    per_unit_basis = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=1)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    discount_percent = serializers.DecimalField(required=False, allow_null=True, default=None, **PERCENT_FIELD_KWARGS)
    gst_percent = serializers.DecimalField(required=False, allow_null=True, default=None, **PERCENT_FIELD_KWARGS)


class CostComparisonSerializer(serializers.ModelSerializer):
    request_detail = PurchaseRequestSerializer(source="request", read_only=True)
    quotes = VendorQuoteSerializer(many=True, read_only=True)
    ranking = serializers.SerializerMethodField()
    best_vendor = serializers.SerializerMethodField()
    comparison_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    selected_vendor_name = serializers.CharField(source="selected_vendor.company_name", read_only=True, default=None)

    class Meta:
        model = CostComparison
        fields = [
            "id",
            "request",
            "request_detail",
            "status",
            "is_direct_delivery",
            "inventory_fulfillment_quantity",
            "purchase_quantity",
            "comparison_quantity",
            "selected_vendor",
            "selected_vendor_name",
            "manager_notes",
            "quotes",
            "ranking",
            "best_vendor",
            "created_by",
            "approved_by",
            "approved_at",
            "rejected_at",
            "submitted_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def _ranking(self, obj):
        if not hasattr(self, "_ranking_cache"):
            self._ranking_cache = {}
        if obj.pk not in self._ranking_cache:
            self._ranking_cache[obj.pk] = rank_quotes(list(obj.quotes.all()), obj.comparison_quantity)
        return self._ranking_cache[obj.pk]

    def get_ranking(self, obj):
        return [
            {
                "vendor": str(row["quote"].vendor_id),
                "vendor_name": row["quote"].vendor.company_name,
                "final_unit_price": str(row["final_unit_price"]),
                "total": str(row["total"]),
                "is_best": row["is_best"],
            }
            for row in self._ranking(obj)
        ]

    def get_best_vendor(self, obj):
        best = next((row for row in self._ranking(obj) if row["is_best"]), None)
        return str(best["quote"].vendor_id) if best else None


class OpenComparisonSerializer(serializers.Serializer):
    request = serializers.PrimaryKeyRelatedField(queryset=PurchaseRequest.objects.all())


class RemoveQuoteSerializer(serializers.Serializer):
    vendor = serializers.PrimaryKeyRelatedField(queryset=Vendor.objects.all())


class FulfilmentSerializer(serializers.Serializer):
    inventory_quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    purchase_quantity = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=0)


class ComparisonReviewSerializer(serializers.Serializer):
    approve = serializers.BooleanField()
    selected_vendor = serializers.PrimaryKeyRelatedField(queryset=Vendor.objects.all(), required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ComparisonResubmitSerializer(serializers.Serializer):
    quotes = QuoteInputSerializer(many=True)
    is_direct_delivery = serializers.BooleanField(required=False, default=False)


class PurchaseOrderLineSerializer(serializers.ModelSerializer):
    request_number = serializers.CharField(source="request.request_number", read_only=True, default=None)

    class Meta:
        model = PurchaseOrderLine
        fields = [
            "id",
            "position",
            "request",
            "request_number",
            "item_description",
            "hsn_sac_code",
            "quantity",
            "unit",
            "unit_rate",
            "per_unit_basis",
            "per_unit_basis_unit",
            "discount_percent",
            "gst_tax_rate",
            "line_total",
        ]
        read_only_fields = fields


class PurchaseOrderSerializer(serializers.ModelSerializer):
    lines = PurchaseOrderLineSerializer(many=True, read_only=True)
    vendor_name = serializers.CharField(source="vendor.company_name", read_only=True)
    site_name = serializers.CharField(source="site.name", read_only=True)
    created_by_name = serializers.CharField(source="created_by.display_name", read_only=True)
    approved_by_name = serializers.CharField(source="approved_by.display_name", read_only=True, default=None)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "po_number",
            "is_direct",
            "vendor",
            "vendor_name",
            "site",
            "site_name",
            "status",
            "total_amount",
            "valid_till",
            "expected_delivery_date",
            "actual_delivery_date",
            "rejection_reason",
            "notes",
            "created_by",
            "created_by_name",
            "approved_by",
            "approved_by_name",
            "approved_at",
            "cancelled_at",
            "lines",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class IssuePurchaseOrderSerializer(serializers.Serializer):
    requests = serializers.PrimaryKeyRelatedField(queryset=PurchaseRequest.objects.all(), many=True, allow_empty=False)
    valid_till = serializers.DateField(required=False, allow_null=True, default=None)
    expected_delivery_date = serializers.DateField(required=False, allow_null=True, default=None)
    hsn_codes = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False, default=dict)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DirectLineSerializer(serializers.Serializer):
    request = serializers.PrimaryKeyRelatedField(queryset=PurchaseRequest.objects.all(), required=False, allow_null=True, default=None)
    item_description = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    hsn_sac_code = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2)
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    unit_rate = serializers.DecimalField(max_digits=14, decimal_places=4)
    per_unit_basis = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=1)
    per_unit_basis_unit = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    discount_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, default=0)
    gst_tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, default=0)


class DirectPurchaseOrderSerializer(serializers.Serializer):
    vendor = serializers.PrimaryKeyRelatedField(queryset=Vendor.objects.all())
    site = serializers.PrimaryKeyRelatedField(queryset=Site.objects.all())
    items = DirectLineSerializer(many=True, allow_empty=False)
    valid_till = serializers.DateField(required=False, allow_null=True, default=None)
    expected_delivery_date = serializers.DateField(required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ResubmitPurchaseOrderSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
