from django.test import TestCase
from rest_framework.test import APIClient

from core.models import Company, University
from users.models import User


class OrganizationApiTests(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.admin = User.objects.create_user(username="admin", password="p1", role=User.ROLE_ADMIN)
		self.student = User.objects.create_user(username="student", password="p1", role=User.ROLE_STUDENT)
		University.objects.create(code="UNI01", name="First University", is_verified=True)
		Company.objects.create(code="COMP01", name="Acme")

	def test_authenticated_users_can_list(self):
		self.client.force_authenticate(user=self.student)

		res = self.client.get("/api/organizations/companies/")

		self.assertEqual(res.status_code, 200)
		self.assertEqual([c["code"] for c in res.data], ["COMP01"])

	def test_anonymous_users_cannot_list(self):
		res = self.client.get("/api/organizations/universities/")
		self.assertEqual(res.status_code, 401)

	def test_only_admins_create(self):
		payload = {"code": "UNI02", "name": "Second University"}

		self.client.force_authenticate(user=self.student)
		self.assertEqual(self.client.post("/api/organizations/universities/", payload, format="json").status_code, 403)

		self.client.force_authenticate(user=self.admin)
		res = self.client.post("/api/organizations/universities/", payload, format="json")
		self.assertEqual(res.status_code, 201)
		self.assertTrue(University.objects.filter(code="UNI02").exists())

	def test_codes_are_unique(self):
		self.client.force_authenticate(user=self.admin)
		res = self.client.post("/api/organizations/companies/", {"code": "COMP01", "name": "Dup"}, format="json")
		self.assertEqual(res.status_code, 400)
