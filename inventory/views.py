from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import AuditedMutationMixin
from common.permissions import RoleCapabilityPermission
from inventory.models import InventoryItem, StockMove, Vendor
from inventory.serializers import (
    InventoryItemSerializer,
    LinkVendorSerializer,
    StockAdjustmentSerializer,
    StockMoveSerializer,
    VendorSerializer,
)
from inventory.services import adjust_stock, find_item_by_name, remove_vendor


class VendorViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Vendor.objects.all()
    serializer_class = VendorSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "vendor.view",
        "retrieve": "vendor.view",
        "create": "vendor.manage",
        "update": "vendor.manage",
        "partial_update": "vendor.manage",
        "destroy": "vendor.manage",
        "toggle_status": "vendor.manage",
    }
    audit_entity = "vendor"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(
                Q(company_name__icontains=search)
                | Q(contact_name__icontains=search)
                | Q(email__icontains=search)
                | Q(gst_number__icontains=search)
            )
        is_active = self.request.query_params.get("is_active")
        if is_active in {"true", "false"}:
            qs = qs.filter(is_active=is_active == "true")
        return qs

    def destroy(self, request, *args, **kwargs):
        vendor = self.get_object()
        before_snapshot = self.get_serializer(vendor).data
        vendor_id = vendor.id
        outcome = remove_vendor(vendor)
        vendor.id = vendor_id
        self._audit(action=f"vendor.{'delete' if outcome == 'deleted' else 'deactivate'}", instance=vendor, before_snapshot=before_snapshot)
        if outcome == "deleted":
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response({"status": outcome, "vendor": self.get_serializer(vendor).data})

    @action(detail=True, methods=["post"], url_path="toggle-status")
    def toggle_status(self, request, pk=None):
        vendor = self.get_object()
        before_snapshot = self.get_serializer(vendor).data
        vendor.is_active = not vendor.is_active
        vendor.save(update_fields=["is_active", "updated_at"])
        self._audit(action="vendor.toggle_status", instance=vendor, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(vendor).data)
        return Response(self.get_serializer(vendor).data)


class InventoryItemViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = InventoryItem.objects.prefetch_related("vendors")
    serializer_class = InventoryItemSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "lookup": "inventory.view",
        "create": "inventory.manage",
        "update": "inventory.manage",
        "partial_update": "inventory.manage",
        "destroy": "inventory.manage",
        "adjust": "inventory.manage",
        "link_vendor": "inventory.manage",
    }
    audit_entity = "inventory_item"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(item_name__icontains=search) | Q(description__icontains=search) | Q(hsn_sac_code__icontains=search))
        if self.request.query_params.get("include_inactive") != "true":
            qs = qs.filter(is_active=True)
        return qs

    def perform_destroy(self, instance):
        # Items keep their stock ledger; removal only hides them from the catalog.
        before_snapshot = self.get_serializer(instance).data
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
        self._audit(action="inventory_item.deactivate", instance=instance, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(instance).data)

    @action(detail=False, methods=["get"], url_path="lookup")
    def lookup(self, request):
        name = request.query_params.get("name", "")
        if not name.strip():
            raise ValidationError({"name": "Item name is required."})
        return Response(self.get_serializer(find_item_by_name(name)).data)

    @action(detail=True, methods=["post"], url_path="adjust-stock")
    def adjust(self, request, pk=None):
        item = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = {"central_stock": str(item.central_stock)}
        new_stock = adjust_stock(
            item=item,
            delta=serializer.validated_data["delta"],
            reason=serializer.validated_data["reason"],
            actor=request.user,
        )
        self._audit(action="stock.adjustment", instance=item, before_snapshot=before_snapshot, after_snapshot={"central_stock": str(new_stock)})
        item.refresh_from_db()
        return Response(self.get_serializer(item).data)

    @action(detail=True, methods=["post"], url_path="link-vendor")
    def link_vendor(self, request, pk=None):
        item = self.get_object()
        serializer = LinkVendorSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vendor = serializer.validated_data["vendor"]
        if not vendor.is_active:
            raise ValidationError({"vendor": "Vendor is inactive."})
        item.vendors.add(vendor)
        self._audit(action="inventory_item.link_vendor", instance=item, after_snapshot={"vendor": str(vendor.id)})
        return Response(self.get_serializer(item).data)


class StockMoveViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockMove.objects.select_related("item", "actor").order_by("-created_at")
    serializer_class = StockMoveSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.manage", "retrieve": "inventory.manage"}

    def get_queryset(self):
        qs = super().get_queryset()
        item_id = self.request.query_params.get("item")
        if item_id:
            qs = qs.filter(item_id=item_id)
        return qs
