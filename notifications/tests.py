from datetime import timedelta
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog
from notifications.models import Notification, StickyNote
from notifications.services import notify, notify_role, send_due_reminders


class NotificationTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.officer = User.objects.create_user(username="officer", password="pass1234", role=User.Role.PURCHASE_OFFICER)
        self.other = User.objects.create_user(username="other", password="pass1234", role=User.Role.PURCHASE_OFFICER)
        self.manager = User.objects.create_user(username="manager", password="pass1234", role=User.Role.MANAGER)

    def test_list_is_own_newest_first_and_limited(self):
        for index in range(3):
            notify(user=self.officer, title=f"Note {index}")
        notify(user=self.other, title="Not mine")
        self.client.force_authenticate(user=self.officer)

        response = self.client.get("/api/v1/notifications/?limit=2")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 2)
        self.assertNotIn("Not mine", {row["title"] for row in self.client.get("/api/v1/notifications/").json()})

    def test_unread_count_and_read(self):
        first = notify(user=self.officer, title="First")
        notify(user=self.officer, title="Second")
        self.client.force_authenticate(user=self.officer)

        self.assertEqual(self.client.get("/api/v1/notifications/unread-count/").json(), {"count": 2})
        response = self.client.post(f"/api/v1/notifications/{first.id}/read/")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_read"])
        self.assertEqual(self.client.get("/api/v1/notifications/unread-count/").json(), {"count": 1})

    def test_cannot_read_someone_elses_notification(self):
        theirs = notify(user=self.other, title="Theirs")
        self.client.force_authenticate(user=self.officer)

        response = self.client.post(f"/api/v1/notifications/{theirs.id}/read/")

        self.assertEqual(response.status_code, 404)
        theirs.refresh_from_db()
        self.assertFalse(theirs.is_read)

    def test_read_all_only_touches_own(self):
        notify(user=self.officer, title="A")
        notify(user=self.officer, title="B")
        theirs = notify(user=self.other, title="C")
        self.client.force_authenticate(user=self.officer)

        response = self.client.post("/api/v1/notifications/read-all/")

        self.assertEqual(response.json(), {"updated": 2})
        theirs.refresh_from_db()
        self.assertFalse(theirs.is_read)

    def test_notify_role_skips_inactive_and_excluded_users(self):
        get_user_model().objects.create_user(username="off", password="pass1234", role="purchase_officer", is_active=False)

        sent = notify_role(role="purchase_officer", title="New PO", exclude=self.other)

        self.assertEqual([notification.user for notification in sent], [self.officer])


class StickyNoteTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.engineer = User.objects.create_user(username="engineer", password="pass1234", role=User.Role.SITE_ENGINEER)
        self.officer = User.objects.create_user(username="officer", password="pass1234", role=User.Role.PURCHASE_OFFICER)
        self.manager = User.objects.create_user(username="manager", password="pass1234", role=User.Role.MANAGER, full_name="Plant Manager")

    def _note(self, assigned_to, **fields):
        return StickyNote.objects.create(created_by=assigned_to, assigned_to=assigned_to, title=fields.pop("title", "Call vendor"), **fields)

    def test_create_for_self_is_read(self):
        self.client.force_authenticate(user=self.engineer)

        response = self.client.post(
            "/api/v1/sticky-notes/",
            {"title": "  Check cable drums ", "color": "blue", "checklist_items": [{"text": "Count drums"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.content)
        payload = response.json()
        self.assertEqual(payload["title"], "Check cable drums")
        self.assertEqual(payload["assigned_to"], str(self.engineer.id))
        self.assertTrue(payload["is_read"])
        self.assertEqual(len(payload["checklist_items"][0]["id"]), 32)
        self.assertFalse(Notification.objects.exists())
        self.assertTrue(AuditLog.objects.filter(action="sticky_note.create", entity_id=payload["id"]).exists())

    def test_non_manager_cannot_assign_to_others(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.post("/api/v1/sticky-notes/", {"title": "Follow up", "assigned_to": str(self.engineer.id)}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertFalse(StickyNote.objects.exists())

    def test_manager_assignment_notifies_assignee(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post("/api/v1/sticky-notes/", {"title": "Site visit", "assigned_to": str(self.engineer.id)}, format="json")

        self.assertEqual(response.status_code, 201, response.content)
        self.assertFalse(response.json()["is_read"])
        notification = Notification.objects.get(user=self.engineer)
        self.assertEqual(notification.type, Notification.Type.ASSIGNMENT)
        self.assertEqual(notification.message, "Plant Manager assigned you: Site visit")
        self.assertEqual(str(notification.entity_id), response.json()["id"])

    def test_reassignment_is_rejected(self):
        note = self._note(self.engineer)
        self.client.force_authenticate(user=self.engineer)

        response = self.client.patch(f"/api/v1/sticky-notes/{note.id}/", {"assigned_to": str(self.officer.id)}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_manager_may_move_but_not_edit_others_notes(self):
        note = self._note(self.engineer)
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(f"/api/v1/sticky-notes/{note.id}/", {"position_x": 120, "position_y": 40}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        note.refresh_from_db()
        self.assertEqual((note.position_x, note.position_y), (120, 40))

        response = self.client.patch(f"/api/v1/sticky-notes/{note.id}/", {"content": "Changed"}, format="json")
        self.assertEqual(response.status_code, 403)

    def test_other_users_cannot_see_note(self):
        note = self._note(self.engineer)
        self.client.force_authenticate(user=self.officer)

        self.assertEqual(self.client.get(f"/api/v1/sticky-notes/{note.id}/").status_code, 404)

    def test_changing_reminder_resets_trigger(self):
        note = self._note(self.engineer, reminder_at=timezone.now() - timedelta(hours=1), reminder_triggered=True)
        self.client.force_authenticate(user=self.engineer)
        new_time = (timezone.now() + timedelta(days=1)).isoformat()

        response = self.client.patch(f"/api/v1/sticky-notes/{note.id}/", {"reminder_at": new_time}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["reminder_triggered"])

    def test_complete_and_uncomplete(self):
        note = self._note(self.engineer)
        self.client.force_authenticate(user=self.engineer)

        response = self.client.post(f"/api/v1/sticky-notes/{note.id}/complete/")
        self.assertTrue(response.json()["is_completed"])
        self.assertIsNotNone(response.json()["completed_at"])
        self.assertEqual(self.client.get("/api/v1/sticky-notes/").json()["count"], 0)
        self.assertEqual(self.client.get("/api/v1/sticky-notes/?include_completed=true").json()["count"], 1)

        response = self.client.post(f"/api/v1/sticky-notes/{note.id}/uncomplete/")
        self.assertFalse(response.json()["is_completed"])
        self.assertIsNone(response.json()["completed_at"])

    def test_delete_is_soft(self):
        note = self._note(self.engineer)
        self.client.force_authenticate(user=self.engineer)

        response = self.client.delete(f"/api/v1/sticky-notes/{note.id}/")

        self.assertEqual(response.status_code, 204)
        note.refresh_from_db()
        self.assertTrue(note.is_deleted)
        self.assertIsNotNone(note.deleted_at)
        self.assertEqual(self.client.get(f"/api/v1/sticky-notes/{note.id}/").status_code, 404)

    def test_manager_cannot_delete_others_note(self):
        note = self._note(self.engineer)
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/sticky-notes/{note.id}/")

        self.assertEqual(response.status_code, 403)
        note.refresh_from_db()
        self.assertFalse(note.is_deleted)

    def test_due_reminders_and_acknowledge(self):
        due = self._note(self.engineer, title="Due", reminder_at=timezone.now() - timedelta(minutes=5))
        self._note(self.engineer, title="Later", reminder_at=timezone.now() + timedelta(hours=2))
        self._note(self.engineer, title="Done", reminder_at=timezone.now() - timedelta(minutes=5), is_completed=True)
        self.client.force_authenticate(user=self.engineer)

        response = self.client.get("/api/v1/sticky-notes/due-reminders/")
        self.assertEqual([row["title"] for row in response.json()], ["Due"])

        response = self.client.post(f"/api/v1/sticky-notes/{due.id}/reminder-triggered/")
        self.assertTrue(response.json()["reminder_triggered"])
        self.assertEqual(self.client.get("/api/v1/sticky-notes/due-reminders/").json(), [])

    def test_unread_count_and_read_all(self):
        self._note(self.engineer, is_read=False)
        self._note(self.engineer, is_read=False)
        self.client.force_authenticate(user=self.engineer)

        self.assertEqual(self.client.get("/api/v1/sticky-notes/unread-count/").json(), {"count": 2})
        self.assertEqual(self.client.post("/api/v1/sticky-notes/read-all/").json(), {"updated": 2})
        self.assertEqual(self.client.get("/api/v1/sticky-notes/unread-count/").json(), {"count": 0})


class ReminderCommandTests(TestCase):
    def setUp(self):
        self.engineer = get_user_model().objects.create_user(username="engineer", password="pass1234", role="site_engineer")
        StickyNote.objects.create(
            created_by=self.engineer,
            assigned_to=self.engineer,
            title="Inspect transformer",
            content="Bring the IR tester.",
            reminder_at=timezone.now() - timedelta(minutes=1),
        )

    def test_command_sends_each_reminder_once(self):
        out = StringIO()

        call_command("send_sticky_note_reminders", stdout=out)
        call_command("send_sticky_note_reminders", stdout=out)

        notification = Notification.objects.get(user=self.engineer)
        self.assertEqual(notification.title, "Reminder: Inspect transformer")
        self.assertEqual(notification.type, Notification.Type.WARNING)
        self.assertIn("Sticky note reminders sent: 1.", out.getvalue())
        self.assertIn("Sticky note reminders sent: 0.", out.getvalue())
        self.assertEqual(send_due_reminders(), 0)
