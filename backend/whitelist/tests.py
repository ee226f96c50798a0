from django.core.cache import cache
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from core.exceptions import Conflict
from core.models import University
from users.models import User

from .models import StudentWhitelist
from .services import add_entry, bulk_add_entries, check_student_number, consume_entry


class WhitelistServiceTests(TestCase):
    def setUp(self):
        self.university = University.objects.create(code="UNI01", name="First University")

    def test_unknown_number(self):
        self.assertEqual(
            check_student_number("S999"),
            {"exists": False, "is_used": False, "name": "", "university": None},
        )

    def test_available_entry_exposes_name_and_university(self):
        add_entry(student_number=" S001 ", name="Ana Lopez", university=self.university)

        result = check_student_number("S001")

        self.assertTrue(result["exists"])
        self.assertFalse(result["is_used"])
        self.assertEqual(result["name"], "Ana Lopez")
        self.assertEqual(result["university"]["code"], "UNI01")

    def test_used_entry_hides_holder(self):
        add_entry(student_number="S001", name="Ana Lopez", university=self.university)
        user = User.objects.create_user(username="ana", password="p1", role=User.ROLE_STUDENT)
        consume_entry(student_number="S001", user=user)

        result = check_student_number("S001")

        self.assertTrue(result["is_used"])
        self.assertEqual(result["name"], "")
        self.assertIsNone(result["university"])

    def test_entry_is_consumed_once(self):
        add_entry(student_number="S001", name="Ana Lopez")
        first = User.objects.create_user(username="ana", password="p1", role=User.ROLE_STUDENT)
        second = User.objects.create_user(username="other", password="p1", role=User.ROLE_STUDENT)

        self.assertIsNotNone(consume_entry(student_number="S001", user=first))
        self.assertIsNone(consume_entry(student_number="S001", user=second))
        self.assertEqual(StudentWhitelist.objects.get(student_number="S001").used_by, first)

    def test_duplicate_number_is_a_conflict(self):
        add_entry(student_number="S001", name="Ana Lopez")
        with self.assertRaises(Conflict):
            add_entry(student_number="S001", name="Someone Else")

    def test_bulk_add_reports_row_errors(self):
        add_entry(student_number="S001", name="Ana Lopez")

        result = bulk_add_entries(
            rows=[
                {"student_number": "S001", "name": "Duplicate"},
                {"student_number": "S002", "name": "Ben"},
                {"student_number": "S002", "name": "Ben again"},
                {"student_number": "", "name": "No number"},
                {"student_number": "S003", "name": "Cleo", "enrollment_year": "2021"},
            ],
            university=self.university,
        )

        self.assertEqual(result.created, 2)
        self.assertEqual(result.failed, 3)
        created = StudentWhitelist.objects.filter(batch_id=result.batch_id)
        self.assertEqual(sorted(created.values_list("student_number", flat=True)), ["S002", "S003"])
        self.assertEqual(created.get(student_number="S003").enrollment_year, 2021)


class WhitelistApiTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.university = University.objects.create(code="UNI01", name="First University")
        self.admin = User.objects.create_user(username="admin", password="p1", role=User.ROLE_ADMIN)

    def test_whitelist_then_register_student(self):
        res = self.client.get("/api/public/whitelist/check/S001/")
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.data["exists"])

        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/whitelist/",
            {"student_number": "S001", "name": "Ana Lopez", "university": self.university.pk},
            format="json",
        )
        self.assertEqual(res.status_code, 201)
        self.client.force_authenticate(user=None)

        res = self.client.post(
            "/api/auth/register/",
            {"username": "ana", "password": "secret-pass-1", "role": User.ROLE_STUDENT, "student_number": "S001"},
            format="json",
        )
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.data["university"], self.university.pk)

        res = self.client.get("/api/public/whitelist/check/S001/")
        self.assertTrue(res.data["exists"])
        self.assertTrue(res.data["is_used"])

        res = self.client.post(
            "/api/auth/register/",
            {"username": "ana2", "password": "secret-pass-1", "role": User.ROLE_STUDENT, "student_number": "S001"},
            format="json",
        )
        self.assertEqual(res.status_code, 409)
        self.assertFalse(User.objects.filter(username="ana2").exists())

    def test_bulk_and_delete_batch(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/whitelist/bulk/",
            {
                "university": self.university.pk,
                "students": [
                    {"student_number": "S010", "name": "One"},
                    {"student_number": "S011", "name": "Two"},
                ],
            },
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["created"], 2)

        res = self.client.post("/api/whitelist/delete-batch/", {"batch_id": res.data["batch_id"]}, format="json")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data, {"deleted": 2, "skipped_used": 0})
        self.assertEqual(StudentWhitelist.objects.count(), 0)

    def test_used_entry_cannot_be_deleted_but_can_be_reset(self):
        entry = add_entry(student_number="S001", name="Ana Lopez")
        student = User.objects.create_user(username="ana", password="p1", role=User.ROLE_STUDENT)
        consume_entry(student_number="S001", user=student)

        self.client.force_authenticate(user=self.admin)
        res = self.client.delete(f"/api/whitelist/{entry.pk}/")
        self.assertEqual(res.status_code, 409)

        res = self.client.post(f"/api/whitelist/{entry.pk}/reset/", {}, format="json")
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.data["is_used"])

        res = self.client.delete(f"/api/whitelist/{entry.pk}/")
        self.assertEqual(res.status_code, 204)

    def test_only_admins_manage_the_whitelist(self):
        student = User.objects.create_user(username="ana", password="p1", role=User.ROLE_STUDENT)
        self.client.force_authenticate(user=student)
        res = self.client.post("/api/whitelist/", {"student_number": "S001", "name": "Ana"}, format="json")
        self.assertEqual(res.status_code, 403)

    @override_settings(PUBLIC_WHITELIST_CHECK_THROTTLE_RATE="1/min")
    def test_public_check_is_throttled(self):
        cache.clear()
        self.assertEqual(self.client.get("/api/public/whitelist/check/S001/").status_code, 200)
        self.assertEqual(self.client.get("/api/public/whitelist/check/S002/").status_code, 429)
