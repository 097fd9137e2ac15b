from rest_framework import serializers

from inventory.models import InventoryItem, StockMove, Vendor


class VendorSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vendor
        fields = [
            "id",
            "company_name",
            "contact_name",
            "email",
            "phone",
            "gst_number",
            "address",
            "is_active",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "is_active", "created_by", "created_at", "updated_at"]

    def to_internal_value(self, data):
        # GSTINs are often typed in lower case; validate the canonical upper-case form.
        if hasattr(data, "get") and isinstance(data.get("gst_number"), str):
            data = data.copy()
            data["gst_number"] = data["gst_number"].strip().upper()
        return super().to_internal_value(data)

    def validate_company_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Company name is required.")
        return value

    def validate_email(self, value):
        return value.strip().lower()


class VendorSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Vendor
        fields = ["id", "company_name", "contact_name", "email", "phone", "gst_number", "address", "is_active"]
        read_only_fields = fields


class InventoryItemSerializer(serializers.ModelSerializer):
    vendors = serializers.PrimaryKeyRelatedField(many=True, queryset=Vendor.objects.all(), required=False)
    vendor_details = VendorSummarySerializer(source="vendors", many=True, read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            "id",
            "item_name",
            "description",
            "hsn_sac_code",
            "unit",
            "central_stock",
            "vendors",
            "vendor_details",
            "image_urls",
            "is_active",
            "created_by",
            "created_at",
            "updated_at",
        ]
        # Stock only moves through the ledger (adjust-stock / fulfilment).
        read_only_fields = ["id", "central_stock", "created_by", "created_at", "updated_at"]

    def validate_item_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Item name is required.")
        queryset = InventoryItem.objects.filter(item_name__iexact=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("An inventory item with this name already exists.")
        return value

    def validate_image_urls(self, value):
        if not isinstance(value, list) or not all(isinstance(url, str) for url in value):
            raise serializers.ValidationError("Image URLs must be a list of strings.")
        return value


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(max_length=255)


class LinkVendorSerializer(serializers.Serializer):
    vendor = serializers.PrimaryKeyRelatedField(queryset=Vendor.objects.all())


class StockMoveSerializer(serializers.ModelSerializer):
    item_name = serializers.CharField(source="item.item_name", read_only=True)
    actor_username = serializers.CharField(source="actor.username", read_only=True)

    class Meta:
        model = StockMove
        fields = [
            "id",
            "item",
            "item_name",
            "quantity",
            "balance_after",
            "reason",
            "note",
            "source_ref_type",
            "source_ref_id",
            "actor",
            "actor_username",
            "created_at",
        ]
        read_only_fields = fields
