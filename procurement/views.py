from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import AuditedMutationMixin
from common.permissions import RoleCapabilityPermission, user_has_role
from core.models import User
from procurement import services
from procurement.models import CostComparison, PurchaseOrder, PurchaseRequest, RequestNote
from procurement.serializers import (
    ComparisonResubmitSerializer,
    ComparisonReviewSerializer,
    CostComparisonSerializer,
    DirectPurchaseOrderSerializer,
    DraftItemUpdateSerializer,
    FulfilmentSerializer,
    IssuePurchaseOrderSerializer,
    OpenComparisonSerializer,
    PurchaseOrderSerializer,
    PurchaseRequestSerializer,
    QuoteInputSerializer,
    ReasonSerializer,
    RemoveQuoteSerializer,
    RequestDetailsSerializer,
    RequestGroupCreateSerializer,
    RequestNoteSerializer,
    ResubmitPurchaseOrderSerializer,
    ReviewSerializer,
)


def _validated(serializer_class, request):
    serializer = serializer_class(data=request.data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class PurchaseRequestViewSet(AuditedMutationMixin, viewsets.ReadOnlyModelViewSet):
    queryset = PurchaseRequest.objects.select_related("site", "created_by", "approved_by", "cost_comparison")
    serializer_class = PurchaseRequestSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "request.view",
        "retrieve": "request.view",
        "create": "request.create",
        "partial_update": "request.create",
        "submit": "request.create",
        "review": "request.review",
        "cancel": "request.cancel",
        "update_details": "request.process",
        "direct_to_po": "request.process",
        "confirm_delivery": "request.deliver",
    }
    audit_entity = "purchase_request"

    def get_queryset(self):
        qs = super().get_queryset()
        # Site engineers only follow the requests they raised.
        if user_has_role(self.request.user, User.Role.SITE_ENGINEER):
            qs = qs.filter(created_by=self.request.user)

        params = self.request.query_params
        status_param = params.get("status")
        if status_param:
            qs = qs.filter(status__in=[value.strip() for value in status_param.split(",") if value.strip()])
        if params.get("request_number"):
            qs = qs.filter(request_number=params["request_number"])
        if params.get("site"):
            qs = qs.filter(site_id=params["site"])
        if params.get("is_urgent") in {"true", "false"}:
            qs = qs.filter(is_urgent=params["is_urgent"] == "true")
        search = params.get("search")
        if search:
            qs = qs.filter(Q(item_name__icontains=search) | Q(request_number__icontains=search) | Q(description__icontains=search))
        return qs

    def _respond(self, purchase_request, *, action_name, before_snapshot=None):
        purchase_request.refresh_from_db()
        data = self.get_serializer(purchase_request).data
        self._audit(action=f"purchase_request.{action_name}", instance=purchase_request, before_snapshot=before_snapshot, after_snapshot=data)
        return Response(data)

    def create(self, request, *args, **kwargs):
        data = _validated(RequestGroupCreateSerializer, request)
        created = services.create_request_group(actor=request.user, site=data["site"], items=data["items"], submit=data["submit"])
        payload = self.get_serializer(created, many=True).data
        for purchase_request, snapshot in zip(created, payload):
            self._audit(action="purchase_request.create", instance=purchase_request, after_snapshot=snapshot)
        return Response({"request_number": created[0].request_number, "items": payload}, status=status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        purchase_request = self.get_object()
        before_snapshot = self.get_serializer(purchase_request).data
        serializer = DraftItemUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        services.update_draft_item(actor=request.user, purchase_request=purchase_request, changes=dict(serializer.validated_data))
        return self._respond(purchase_request, action_name="update", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="submit")
    def submit(self, request, pk=None):
        purchase_request = self.get_object()
        submitted = services.submit_request_group(actor=request.user, request_number=purchase_request.request_number)
        for item in submitted:
            self._audit(action="purchase_request.submit", instance=item, after_snapshot={"status": item.status})
        return Response(self.get_serializer(submitted, many=True).data)

    @action(detail=True, methods=["post"], url_path="review")
    def review(self, request, pk=None):
        purchase_request = self.get_object()
        before_snapshot = self.get_serializer(purchase_request).data
        data = _validated(ReviewSerializer, request)
        services.review_request(actor=request.user, purchase_request=purchase_request, approve=data["approve"], reason=data["reason"])
        return self._respond(purchase_request, action_name="approve" if data["approve"] else "reject", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        purchase_request = self.get_object()
        before_snapshot = self.get_serializer(purchase_request).data
        data = _validated(ReasonSerializer, request)
        services.cancel_request(actor=request.user, purchase_request=purchase_request, reason=data["reason"])
        return self._respond(purchase_request, action_name="cancel", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="update-details")
    def update_details(self, request, pk=None):
        purchase_request = self.get_object()
        before_snapshot = self.get_serializer(purchase_request).data
        serializer = RequestDetailsSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        services.update_request_details(actor=request.user, purchase_request=purchase_request, changes=dict(serializer.validated_data))
        return self._respond(purchase_request, action_name="update_details", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="direct-to-po")
    def direct_to_po(self, request, pk=None):
        purchase_request = self.get_object()
        before_snapshot = self.get_serializer(purchase_request).data
        services.direct_to_po(actor=request.user, purchase_request=purchase_request)
        return self._respond(purchase_request, action_name="direct_to_po", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="confirm-delivery")
    def confirm_delivery(self, request, pk=None):
        purchase_request = self.get_object()
        before_snapshot = self.get_serializer(purchase_request).data
        services.confirm_delivery(actor=request.user, purchase_request=purchase_request)
        return self._respond(purchase_request, action_name="confirm_delivery", before_snapshot=before_snapshot)


class RequestNoteViewSet(mixins.ListModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = RequestNote.objects.select_related("author")
    serializer_class = RequestNoteSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "request.view", "create": "request.note"}
    pagination_class = None

    def get_queryset(self):
        request_number = self.request.query_params.get("request_number")
        if not request_number:
            raise ValidationError({"request_number": "This query parameter is required."})
        return super().get_queryset().filter(request_number=request_number)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = services.add_request_note(
            actor=request.user,
            request_number=serializer.validated_data["request_number"],
            content=serializer.validated_data["content"],
        )
        return Response(self.get_serializer(note).data, status=status.HTTP_201_CREATED)


class CostComparisonViewSet(AuditedMutationMixin, viewsets.ReadOnlyModelViewSet):
    queryset = CostComparison.objects.select_related("request__site", "request__created_by", "selected_vendor").prefetch_related("quotes__vendor")
    serializer_class = CostComparisonSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "comparison.view",
        "retrieve": "comparison.view",
        "pending": "comparison.review",
        "create": "comparison.edit",
        "quotes": "comparison.edit",
        "remove_quote": "comparison.edit",
        "fulfilment": "comparison.edit",
        "submit": "comparison.edit",
        "resubmit": "comparison.edit",
        "review": "comparison.review",
    }
    audit_entity = "cost_comparison"

    def get_queryset(self):
        qs = super().get_queryset()
        status_param = self.request.query_params.get("status")
        if status_param:
            qs = qs.filter(status=status_param)
        request_id = self.request.query_params.get("request")
        if request_id:
            qs = qs.filter(request_id=request_id)
        return qs.order_by("-updated_at")

    def _respond(self, comparison, *, action_name, before_snapshot=None, status_code=status.HTTP_200_OK):
        comparison = self.get_queryset().get(pk=comparison.pk)
        data = self.get_serializer(comparison).data
        self._audit(action=f"cost_comparison.{action_name}", instance=comparison, before_snapshot=before_snapshot, after_snapshot={"status": comparison.status})
        return Response(data, status=status_code)

    def create(self, request, *args, **kwargs):
        data = _validated(OpenComparisonSerializer, request)
        existed = CostComparison.objects.filter(request=data["request"]).exists()
        comparison = services.open_comparison(actor=request.user, purchase_request=data["request"])
        if existed:
            return Response(self.get_serializer(self.get_queryset().get(pk=comparison.pk)).data)
        return self._respond(comparison, action_name="create", status_code=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="pending")
    def pending(self, request):
        page = self.paginate_queryset(self.get_queryset().filter(status=CostComparison.Status.CC_PENDING))
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    @action(detail=True, methods=["post"], url_path="quotes")
    def quotes(self, request, pk=None):
        comparison = self.get_object()
        data = dict(_validated(QuoteInputSerializer, request))
        vendor = data.pop("vendor")
        services.add_or_update_quote(
            actor=request.user,
            purchase_request=comparison.request,
            vendor=vendor,
            unit_price=data.pop("unit_price"),
            **data,
        )
        return self._respond(comparison, action_name="quote_upsert")

    @action(detail=True, methods=["post"], url_path="remove-quote")
    def remove_quote(self, request, pk=None):
        comparison = self.get_object()
        data = _validated(RemoveQuoteSerializer, request)
        services.remove_quote(actor=request.user, purchase_request=comparison.request, vendor=data["vendor"])
        return self._respond(comparison, action_name="quote_remove")

    @action(detail=True, methods=["post"], url_path="fulfilment")
    def fulfilment(self, request, pk=None):
        comparison = self.get_object()
        data = _validated(FulfilmentSerializer, request)
        services.plan_fulfilment(
            actor=request.user,
            purchase_request=comparison.request,
            inventory_quantity=data["inventory_quantity"],
            purchase_quantity=data["purchase_quantity"],
        )
        return self._respond(comparison, action_name="fulfilment")

    @action(detail=True, methods=["post"], url_path="submit")
    def submit(self, request, pk=None):
        comparison = self.get_object()
        before_snapshot = {"status": comparison.status}
        services.submit_comparison(actor=request.user, purchase_request=comparison.request)
        return self._respond(comparison, action_name="submit", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="review")
    def review(self, request, pk=None):
        comparison = self.get_object()
        before_snapshot = {"status": comparison.status}
        data = _validated(ComparisonReviewSerializer, request)
        services.review_comparison(
            actor=request.user,
            purchase_request=comparison.request,
            approve=data["approve"],
            selected_vendor=data["selected_vendor"],
            notes=data["notes"],
        )
        return self._respond(comparison, action_name="approve" if data["approve"] else "reject", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="resubmit")
    def resubmit(self, request, pk=None):
        comparison = self.get_object()
        before_snapshot = {"status": comparison.status}
        data = _validated(ComparisonResubmitSerializer, request)
        services.resubmit_comparison(
            actor=request.user,
            purchase_request=comparison.request,
            quotes=[dict(quote) for quote in data["quotes"]],
            is_direct_delivery=data["is_direct_delivery"],
        )
        return self._respond(comparison, action_name="resubmit", before_snapshot=before_snapshot)


class PurchaseOrderViewSet(AuditedMutationMixin, viewsets.ReadOnlyModelViewSet):
    queryset = PurchaseOrder.objects.select_related("vendor", "site", "created_by", "approved_by").prefetch_related("lines__request")
    serializer_class = PurchaseOrderSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "po.view",
        "retrieve": "po.view",
        "document": "po.view",
        "create": "po.create",
        "direct": "po.create",
        "resubmit": "po.create",
        "approve": "po.approve",
        "reject": "po.approve",
        "deliver": "po.fulfil",
        "cancel": "po.fulfil",
    }
    audit_entity = "purchase_order"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("is_direct") in {"true", "false"}:
            qs = qs.filter(is_direct=params["is_direct"] == "true")
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("po_number"):
            qs = qs.filter(po_number__iexact=params["po_number"].strip())
        if params.get("vendor"):
            qs = qs.filter(vendor_id=params["vendor"])
        if params.get("site"):
            qs = qs.filter(site_id=params["site"])
        return qs

    def _respond(self, purchase_order, *, action_name, before_snapshot=None, status_code=status.HTTP_200_OK):
        purchase_order = self.get_queryset().get(pk=purchase_order.pk)
        data = self.get_serializer(purchase_order).data
        self._audit(action=f"purchase_order.{action_name}", instance=purchase_order, before_snapshot=before_snapshot, after_snapshot=data)
        return Response(data, status=status_code)

    def create(self, request, *args, **kwargs):
        data = _validated(IssuePurchaseOrderSerializer, request)
        purchase_order = services.issue_purchase_order(
            actor=request.user,
            requests=data["requests"],
            valid_till=data["valid_till"],
            expected_delivery_date=data["expected_delivery_date"],
            hsn_codes=data["hsn_codes"],
            notes=data["notes"],
        )
        return self._respond(purchase_order, action_name="create", status_code=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="direct")
    def direct(self, request):
        data = _validated(DirectPurchaseOrderSerializer, request)
        purchase_order = services.create_direct_po(
            actor=request.user,
            vendor=data["vendor"],
            site=data["site"],
            items=[dict(item) for item in data["items"]],
            valid_till=data["valid_till"],
            expected_delivery_date=data["expected_delivery_date"],
            notes=data["notes"],
        )
        return self._respond(purchase_order, action_name="create_direct", status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        purchase_order = self.get_object()
        before_snapshot = {"status": purchase_order.status}
        services.approve_po(actor=request.user, purchase_order=purchase_order)
        return self._respond(purchase_order, action_name="approve", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        purchase_order = self.get_object()
        before_snapshot = {"status": purchase_order.status}
        data = _validated(ReasonSerializer, request)
        services.reject_po(actor=request.user, purchase_order=purchase_order, reason=data["reason"])
        return self._respond(purchase_order, action_name="reject", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="resubmit")
    def resubmit(self, request, pk=None):
        purchase_order = self.get_object()
        data = _validated(ResubmitPurchaseOrderSerializer, request)
        replacement = services.resubmit_po(actor=request.user, purchase_order=purchase_order, notes=data["notes"])
        return self._respond(replacement, action_name="resubmit", status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="deliver")
    def deliver(self, request, pk=None):
        purchase_order = self.get_object()
        before_snapshot = {"status": purchase_order.status}
        services.mark_po_delivered(actor=request.user, purchase_order=purchase_order)
        return self._respond(purchase_order, action_name="deliver", before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        purchase_order = self.get_object()
        before_snapshot = {"status": purchase_order.status}
        data = _validated(ReasonSerializer, request)
        services.cancel_po(actor=request.user, purchase_order=purchase_order, reason=data["reason"])
        return self._respond(purchase_order, action_name="cancel", before_snapshot=before_snapshot)

    @action(detail=True, methods=["get"], url_path="document")
    def document(self, request, pk=None):
        return Response(services.po_document(self.get_object()))
