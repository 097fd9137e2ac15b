import uuid

from django.contrib.auth import get_user_model
from rest_framework import serializers

from notifications.models import Notification, StickyNote

User = get_user_model()


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "title", "message", "type", "link", "entity_type", "entity_id", "is_read", "created_at"]
        read_only_fields = fields


class ChecklistItemSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=64, required=False)
    text = serializers.CharField(max_length=500)
    completed = serializers.BooleanField(required=False, default=False)


class StickyNoteSerializer(serializers.ModelSerializer):
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True), required=False)
    assigned_to_name = serializers.CharField(source="assigned_to.display_name", read_only=True)
    created_by_name = serializers.CharField(source="created_by.display_name", read_only=True)
    checklist_items = ChecklistItemSerializer(many=True, required=False)

    class Meta:
        model = StickyNote
        fields = [
            "id",
            "title",
            "content",
            "color",
            "reminder_at",
            "reminder_triggered",
            "checklist_items",
            "is_completed",
            "completed_at",
            "is_read",
            "position_x",
            "position_y",
            "width",
            "height",
            "assigned_to",
            "assigned_to_name",
            "created_by",
            "created_by_name",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "reminder_triggered",
            "is_completed",
            "completed_at",
            "is_read",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def validate_title(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Title is required.")
        return value

    def validate_checklist_items(self, value):
        return [{**item, "id": item.get("id") or uuid.uuid4().hex} for item in value]

    def validate(self, attrs):
        if self.instance is not None and "assigned_to" in attrs:
            raise serializers.ValidationError({"assigned_to": "A sticky note cannot be reassigned."})
        return attrs
