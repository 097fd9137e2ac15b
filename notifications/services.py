import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from common.permissions import user_has_role
from notifications.models import Notification, StickyNote

User = get_user_model()
logger = logging.getLogger(__name__)

CONTENT_FIELDS = ("title", "content", "color", "reminder_at", "checklist_items")


def notify(*, user, title, message="", type=Notification.Type.INFO, link="", entity=None):
    notification = Notification.objects.create(
        user=user,
        title=title,
        message=message,
        type=type,
        link=link,
        entity_type=entity._meta.label_lower if entity is not None else "",
        entity_id=entity.id if entity is not None else None,
    )
    logger.debug("notification_created", extra={"user_id": str(user.id), "entity": notification.entity_type})
    return notification


def notify_role(*, role, title, message="", type=Notification.Type.INFO, link="", entity=None, exclude=None):
    recipients = User.objects.filter(role=role, is_active=True)
    if exclude is not None:
        recipients = recipients.exclude(pk=exclude.pk)
    return [notify(user=user, title=title, message=message, type=type, link=link, entity=entity) for user in recipients]


def mark_notification_read(*, actor, notification):
    if notification.user_id != actor.id:
        raise PermissionDenied("You can only update your own notifications.")
    if not notification.is_read:
        notification.is_read = True
        notification.save(update_fields=["is_read", "updated_at"])
    return notification


def mark_all_notifications_read(actor):
    return Notification.objects.filter(user=actor, is_read=False).update(is_read=True, updated_at=timezone.now())


def visible_sticky_notes(actor):
    qs = StickyNote.objects.filter(is_deleted=False).select_related("created_by", "assigned_to")
    if user_has_role(actor, User.Role.MANAGER):
        return qs
    return qs.filter(assigned_to=actor)


def _ensure_assignee(actor, note, message):
    if note.assigned_to_id != actor.id:
        raise PermissionDenied(message)


def create_sticky_note(*, actor, assigned_to=None, **fields):
    assigned_to = assigned_to or actor
    if assigned_to.pk != actor.pk and not user_has_role(actor, User.Role.MANAGER):
        raise PermissionDenied("Only managers can assign sticky notes to other users.")
    if not (fields.get("title") or "").strip():
        raise ValidationError({"title": "Title is required."})

    self_assigned = assigned_to.pk == actor.pk
    with transaction.atomic():
        note = StickyNote.objects.create(
            created_by=actor,
            assigned_to=assigned_to,
            is_read=self_assigned,
            **fields,
        )
        if not self_assigned:
            notify(
                user=assigned_to,
                title="New sticky note assigned",
                message=f"{actor.display_name} assigned you: {note.title}",
                type=Notification.Type.ASSIGNMENT,
                link="/dashboard",
                entity=note,
            )
    return note


def update_sticky_note(*, actor, note, changes):
    """Apply ``changes`` to a note.

    Layout-only changes (position/size) are allowed for anyone who can see
    the note; anything else is reserved for the assignee.
    """
    if note.is_deleted:
        raise ValidationError("This sticky note has been deleted.")
    if any(field in changes for field in CONTENT_FIELDS):
        _ensure_assignee(actor, note, "Only the assignee can edit this sticky note.")
    elif not visible_sticky_notes(actor).filter(pk=note.pk).exists():
        raise PermissionDenied("You cannot view this sticky note.")

    update_fields = []
    for field in (*CONTENT_FIELDS, *StickyNote.LAYOUT_FIELDS):
        if field in changes:
            setattr(note, field, changes[field])
            update_fields.append(field)

    if "reminder_at" in changes:
        note.reminder_triggered = False
        update_fields.append("reminder_triggered")

    if update_fields:
        note.save(update_fields=[*update_fields, "updated_at"])
    return note


def set_sticky_note_completed(*, actor, note, completed):
    _ensure_assignee(actor, note, "Only the assignee can complete this sticky note.")
    note.is_completed = completed
    note.completed_at = timezone.now() if completed else None
    note.save(update_fields=["is_completed", "completed_at", "updated_at"])
    return note


def delete_sticky_note(*, actor, note):
    _ensure_assignee(actor, note, "Only the assignee can delete this sticky note.")
    note.is_deleted = True
    note.deleted_at = timezone.now()
    note.save(update_fields=["is_deleted", "deleted_at", "updated_at"])
    return note


def due_reminders(actor, now=None):
    now = now or timezone.now()
    return StickyNote.objects.filter(
        assigned_to=actor,
        is_deleted=False,
        is_completed=False,
        reminder_triggered=False,
        reminder_at__isnull=False,
        reminder_at__lte=now,
    ).order_by("reminder_at")


def mark_reminder_triggered(*, actor, note):
    _ensure_assignee(actor, note, "Only the assignee can acknowledge this reminder.")
    note.reminder_triggered = True
    note.save(update_fields=["reminder_triggered", "updated_at"])
    return note


def mark_all_sticky_notes_read(actor):
    return StickyNote.objects.filter(assigned_to=actor, is_deleted=False, is_read=False).update(is_read=True, updated_at=timezone.now())


def send_due_reminders(now=None):
    """Turn every due, untriggered reminder into a notification for its assignee; returns the count."""
    now = now or timezone.now()
    sent = 0
    due = StickyNote.objects.filter(
        is_deleted=False,
        is_completed=False,
        reminder_triggered=False,
        reminder_at__isnull=False,
        reminder_at__lte=now,
    ).select_related("assigned_to")
    for note in due:
        with transaction.atomic():
            claimed = StickyNote.objects.filter(pk=note.pk, reminder_triggered=False).update(reminder_triggered=True, updated_at=now)
            if not claimed:
                continue
            notify(
                user=note.assigned_to,
                title=f"Reminder: {note.title}",
                message=note.content[:500],
                type=Notification.Type.WARNING,
                link="/dashboard",
                entity=note,
            )
            sent += 1
    logger.info("sticky_reminders_sent count=%s", sent)
    return sent
