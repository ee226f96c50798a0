from django.test import RequestFactory, TestCase
from rest_framework.test import APIClient

from users.models import User

from .models import AuditLog
from .services import log_event, try_log_event


class AuditServiceTests(TestCase):
	def setUp(self):
		self.factory = RequestFactory()
		self.admin = User.objects.create_user(username="admin", password="p1", role=User.ROLE_ADMIN)

	def test_log_event_records_request_context(self):
		request = self.factory.post("/api/certificates/1/revoke/", HTTP_X_FORWARDED_FOR="10.0.0.1, 10.0.0.2")
		request.user = self.admin

		entry = log_event(request, event_type="CERTIFICATE_REVOKED", object_type="certificates.Certificate", object_id=1)

		self.assertEqual(entry.actor, self.admin)
		self.assertEqual(entry.object_id, "1")
		self.assertEqual(entry.ip_address, "10.0.0.1")
		self.assertEqual(entry.method, "POST")

	def test_anonymous_requests_are_not_logged(self):
		request = self.factory.get("/")
		request.user = None
		self.assertIsNone(log_event(request, event_type="CERTIFICATE_REVOKED"))

	def test_try_log_event_never_raises(self):
		request = self.factory.post("/")
		request.user = self.admin
		self.assertIsNone(try_log_event(request, event_type="CERTIFICATE_REVOKED", unexpected="x"))
		self.assertEqual(AuditLog.objects.count(), 0)


class AuditApiTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.admin = User.objects.create_user(username="admin", password="p1", role=User.ROLE_ADMIN)
		self.student = User.objects.create_user(username="student", password="p1", role=User.ROLE_STUDENT)
		AuditLog.objects.create(actor=self.admin, event_type="CERTIFICATE_REVOKED", object_type="certificates.Certificate", object_id="7", metadata={"reason": "misconduct"})
		AuditLog.objects.create(actor=self.admin, event_type="WHITELIST_RESET", object_type="whitelist.StudentWhitelist", object_id="7")

	def test_certificate_history(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.get("/api/audit-logs/certificate/7/")
		self.assertEqual(res.status_code, 200)
		self.assertEqual([row["event_type"] for row in res.data], ["CERTIFICATE_REVOKED"])
		self.assertEqual(res.data[0]["reason"], "misconduct")
		self.assertEqual(res.data[0]["actor_username"], "admin")

	def test_admin_only(self):
		self.client.force_authenticate(user=self.student)
		self.assertEqual(self.client.get("/api/audit-logs/").status_code, 403)
