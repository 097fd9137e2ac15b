from django.conf import settings
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import AuditedMutationMixin
from common.permissions import RoleCapabilityPermission
from notifications.models import Notification
from notifications.serializers import NotificationSerializer, StickyNoteSerializer
from notifications.services import (
    create_sticky_note,
    delete_sticky_note,
    due_reminders,
    mark_all_notifications_read,
    mark_all_sticky_notes_read,
    mark_notification_read,
    mark_reminder_triggered,
    set_sticky_note_completed,
    update_sticky_note,
    visible_sticky_notes,
)

NOTIFICATION_ACTIONS = ["list", "unread_count", "read", "read_all"]
STICKY_NOTE_ACTIONS = [
    "list",
    "retrieve",
    "create",
    "partial_update",
    "destroy",
    "complete",
    "uncomplete",
    "due_reminders",
    "reminder_triggered",
    "unread_count",
    "read_all",
]


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {action: "notification.self" for action in NOTIFICATION_ACTIONS}
    pagination_class = None

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user).order_by("-created_at")

    def list(self, request, *args, **kwargs):
        try:
            limit = int(request.query_params.get("limit", settings.NOTIFICATION_LIST_LIMIT))
        except ValueError:
            limit = settings.NOTIFICATION_LIST_LIMIT
        limit = min(max(limit, 1), 200)
        return Response(self.get_serializer(self.get_queryset()[:limit], many=True).data)

    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        return Response({"count": self.get_queryset().filter(is_read=False).count()})

    @action(detail=True, methods=["post"], url_path="read")
    def read(self, request, pk=None):
        notification = self.get_object()
        mark_notification_read(actor=request.user, notification=notification)
        return Response(self.get_serializer(notification).data)

    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request):
        return Response({"updated": mark_all_notifications_read(request.user)})


class StickyNoteViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    serializer_class = StickyNoteSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {action: "notification.self" for action in STICKY_NOTE_ACTIONS}
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]
    audit_entity = "sticky_note"

    def get_queryset(self):
        qs = visible_sticky_notes(self.request.user)
        if self.action == "list" and self.request.query_params.get("include_completed") != "true":
            qs = qs.filter(is_completed=False)
        return qs

    def perform_create(self, serializer):
        note = create_sticky_note(actor=self.request.user, **serializer.validated_data)
        serializer.instance = note
        self._audit(action="sticky_note.create", instance=note, after_snapshot=self.get_serializer(note).data)

    def perform_update(self, serializer):
        note = serializer.instance
        before_snapshot = self.get_serializer(note).data
        update_sticky_note(actor=self.request.user, note=note, changes=dict(serializer.validated_data))
        self._audit(action="sticky_note.update", instance=note, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(note).data)

    def perform_destroy(self, instance):
        delete_sticky_note(actor=self.request.user, note=instance)
        self._audit(action="sticky_note.delete", instance=instance)

    def _set_completed(self, completed):
        note = self.get_object()
        set_sticky_note_completed(actor=self.request.user, note=note, completed=completed)
        return Response(self.get_serializer(note).data)

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, pk=None):
        return self._set_completed(True)

    @action(detail=True, methods=["post"], url_path="uncomplete")
    def uncomplete(self, request, pk=None):
        return self._set_completed(False)

    @action(detail=False, methods=["get"], url_path="due-reminders")
    def due_reminders(self, request):
        return Response(self.get_serializer(due_reminders(request.user), many=True).data)

    @action(detail=True, methods=["post"], url_path="reminder-triggered")
    def reminder_triggered(self, request, pk=None):
        note = self.get_object()
        mark_reminder_triggered(actor=request.user, note=note)
        return Response(self.get_serializer(note).data)

    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request):
        count = visible_sticky_notes(request.user).filter(assigned_to=request.user, is_read=False).count()
        return Response({"count": count})

    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request):
        return Response({"updated": mark_all_sticky_notes_read(request.user)}, status=status.HTTP_200_OK)
