from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from .models import Notification
from .services import create_notification, notify_users, try_notify_users


User = get_user_model()


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="u1", password="p1", role=User.ROLE_STUDENT)
        self.other = User.objects.create_user(username="u2", password="p1", role=User.ROLE_STUDENT)

    def test_notify_users_dedupes_recipients(self):
        created = notify_users(
            recipients=[self.user, self.user, None, self.other],
            type=Notification.Type.CERTIFICATE_ISSUED,
            title="Issued",
        )

        self.assertEqual(created, 2)
        self.assertEqual(Notification.objects.filter(recipient=self.user).count(), 1)

    def test_notify_nobody(self):
        self.assertEqual(notify_users(recipients=[], title="Nothing"), 0)

    def test_try_notify_swallows_failures(self):
        self.assertEqual(try_notify_users(recipients=[object()], title="Broken"), 0)
        self.assertEqual(Notification.objects.count(), 0)


class NotificationApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(username="u1", password="p1", role=User.ROLE_STUDENT)
        self.other = User.objects.create_user(username="u2", password="p1", role=User.ROLE_STUDENT)
        self.client.force_authenticate(user=self.user)

    def test_list_only_own_notifications(self):
        create_notification(recipient=self.user, title="Mine")
        create_notification(recipient=self.other, title="Theirs")

        res = self.client.get("/api/notifications/")

        self.assertEqual(res.status_code, 200)
        self.assertEqual([n["title"] for n in res.data], ["Mine"])

    def test_unread_count_and_mark_read(self):
        first = create_notification(recipient=self.user, title="One")
        create_notification(recipient=self.user, title="Two")

        self.assertEqual(self.client.get("/api/notifications/unread-count/").data["unread"], 2)

        res = self.client.post(f"/api/notifications/{first.pk}/mark-read/")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["is_read"])
        self.assertEqual(self.client.get("/api/notifications/unread-count/").data["unread"], 1)

        res = self.client.post("/api/notifications/mark-all-read/")
        self.assertEqual(res.data["updated"], 1)
        self.assertEqual(self.client.get("/api/notifications/unread-count/").data["unread"], 0)

    def test_cannot_mark_someone_elses_notification(self):
        theirs = create_notification(recipient=self.other, title="Theirs")
        res = self.client.post(f"/api/notifications/{theirs.pk}/mark-read/")
        self.assertEqual(res.status_code, 404)

    def test_unread_filter_and_topic(self):
        first = create_notification(recipient=self.user, title="Revoked", type=Notification.Type.CERTIFICATE_REVOKED)
        create_notification(recipient=self.user, title="Approved", type=Notification.Type.ACCOUNT_REVIEWED)
        self.client.post(f"/api/notifications/{first.pk}/mark-read/")

        res = self.client.get("/api/notifications/", {"unread": "1"})

        self.assertEqual([n["title"] for n in res.data], ["Approved"])
        self.assertEqual(res.data[0]["topic"], "account")
