import csv
import logging

from django.contrib.auth import get_user_model
from django.db import connections
from django.db.models import Q
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from rest_framework import generics, status, viewsets
from rest_framework.decorators import action, api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.permissions import RoleCapabilityPermission, user_has_capability
from core.identity import build_jwks, build_openid_configuration
from core.models import AuditLog, Site
from core.serializers import (
    AuditLogSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    ProfileSerializer,
    SiteSerializer,
    UserSerializer,
)
from core.services import delete_site, set_user_active, site_usage, toggle_site_status

User = get_user_model()
logger = logging.getLogger(__name__)

DISCOVERY_CACHE_CONTROL = "public, max-age=3600"


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class ProfileView(generics.RetrieveUpdateAPIView):
    serializer_class = ProfileSerializer
    permission_classes = [IsAuthenticated]

    def get_object(self):
        return self.request.user

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        user = serializer.save()
        create_audit_log_from_request(
            self.request,
            action="user.profile_update",
            entity="user",
            entity_id=user.id,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(user).data,
        )


class UserViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = User.objects.prefetch_related("assigned_sites").order_by("username")
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        action: "user.manage"
        for action in ["list", "retrieve", "create", "update", "partial_update", "destroy", "disable", "enable"]
    }
    http_method_names = ["get", "post", "put", "patch", "head", "options"]
    audit_entity = "user"

    def get_queryset(self):
        qs = super().get_queryset()
        role = self.request.query_params.get("role")
        if role:
            qs = qs.filter(role=role)
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(username__icontains=search) | Q(full_name__icontains=search) | Q(email__icontains=search))
        return qs

    def perform_create(self, serializer):
        user = serializer.save()
        self._audit(action="user.create", instance=user, after_snapshot=self.get_serializer(user).data)

    def _set_active(self, is_active):
        user = self.get_object()
        before_snapshot = self.get_serializer(user).data
        set_user_active(actor=self.request.user, user=user, is_active=is_active)
        self._audit(
            action="user.enable" if is_active else "user.disable",
            instance=user,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(user).data,
        )
        return Response(self.get_serializer(user).data)

    @action(detail=True, methods=["post"], url_path="disable")
    def disable(self, request, pk=None):
        return self._set_active(False)

    @action(detail=True, methods=["post"], url_path="enable")
    def enable(self, request, pk=None):
        return self._set_active(True)


class SiteViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Site.objects.all()
    serializer_class = SiteSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "site.view",
        "retrieve": "site.view",
        "create": "site.manage",
        "update": "site.manage",
        "partial_update": "site.manage",
        "destroy": "site.manage",
        "usage": "site.manage",
        "toggle_status": "site.manage",
    }
    audit_entity = "site"

    def get_queryset(self):
        qs = super().get_queryset()
        user = self.request.user
        if not user_has_capability(user, "site.manage") and user.role == User.Role.SITE_ENGINEER:
            qs = qs.filter(assigned_users=user)

        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(code__icontains=search) | Q(address__icontains=search))
        is_active = self.request.query_params.get("is_active")
        if is_active in {"true", "false"}:
            qs = qs.filter(is_active=is_active == "true")
        site_type = self.request.query_params.get("type")
        if site_type:
            qs = qs.filter(type=site_type)
        return qs

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        site_id = instance.id
        delete_site(instance)
        instance.id = site_id
        self._audit(action="site.delete", instance=instance, before_snapshot=before_snapshot)

    @action(detail=True, methods=["get"], url_path="usage")
    def usage(self, request, pk=None):
        return Response(site_usage(self.get_object()))

    @action(detail=True, methods=["post"], url_path="toggle-status")
    def toggle_status(self, request, pk=None):
        site = self.get_object()
        before_snapshot = self.get_serializer(site).data
        toggle_site_status(site)
        self._audit(action="site.toggle_status", instance=site, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(site).data)
        return Response(self.get_serializer(site).data)


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "audit.view", "retrieve": "audit.view", "export": "audit.view"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")
        entity_id = self.request.query_params.get("entity_id")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action:
            qs = qs.filter(action=action)
        if entity:
            qs = qs.filter(entity=entity)
        if entity_id:
            qs = qs.filter(entity_id=entity_id)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        logs = self.get_queryset()
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "action", "entity", "entity_id", "request_id"])
        for log in logs:
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    getattr(log.actor, "username", ""),
                    log.action,
                    log.entity,
                    log.entity_id,
                    log.request_id,
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
@authentication_classes([])
@throttle_classes([])
def openid_configuration(request):
    response = Response(build_openid_configuration(request))
    response["Cache-Control"] = DISCOVERY_CACHE_CONTROL
    return response


@api_view(["GET"])
@permission_classes([AllowAny])
@authentication_classes([])
@throttle_classes([])
def jwks(request):
    response = Response(build_jwks())
    response["Cache-Control"] = DISCOVERY_CACHE_CONTROL
    return response
