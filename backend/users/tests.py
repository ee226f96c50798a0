from unittest.mock import patch

from django.db import IntegrityError
from django.test import TestCase
from rest_framework import serializers, status
from rest_framework.test import APIClient

from core.exceptions import Conflict
from core.models import Company, University
from notifications.models import Notification
from whitelist.models import StudentWhitelist
from whitelist.services import reset_entry

from .models import User
from .services import register_user, review_account_request


class RegistrationTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="password", role=User.ROLE_ADMIN)

    def test_student_requires_whitelisted_number(self):
        with self.assertRaises(serializers.ValidationError):
            register_user(username="ana", password="password1", role=User.ROLE_STUDENT, student_number="S404")
        self.assertFalse(User.objects.filter(username="ana").exists())

    def test_organization_account_waits_for_approval(self):
        user = register_user(
            username="acme",
            password="password1",
            role=User.ROLE_COMPANY,
            apply_org_name="Acme",
            apply_org_code="COMP01",
        )

        self.assertFalse(user.is_active)
        self.assertEqual(user.approval_status, User.ApprovalStatus.PENDING)
        self.assertIsNone(user.company)
        self.assertTrue(
            Notification.objects.filter(recipient=self.admin, type=Notification.Type.ACCOUNT_REQUEST).exists()
        )

    def test_organization_requires_name_and_code(self):
        with self.assertRaises(serializers.ValidationError):
            register_user(username="acme", password="password1", role=User.ROLE_COMPANY, apply_org_name="Acme")

    def test_users_without_email_do_not_collide(self):
        StudentWhitelist.objects.create(student_number="S001", name="Ana")
        StudentWhitelist.objects.create(student_number="S002", name="Ben")

        register_user(username="ana", password="password1", role=User.ROLE_STUDENT, student_number="S001")
        register_user(username="ben", password="password1", role=User.ROLE_STUDENT, student_number="S002", email="")

        self.assertEqual(User.objects.filter(email__isnull=True, role=User.ROLE_STUDENT).count(), 2)

    def test_reset_whitelist_entry_does_not_allow_a_second_account(self):
        entry = StudentWhitelist.objects.create(student_number="S001", name="Ana")
        register_user(username="ana", password="password1", role=User.ROLE_STUDENT, student_number="S001")
        reset_entry(entry)

        with self.assertRaises(Conflict):
            register_user(username="ana2", password="password1", role=User.ROLE_STUDENT, student_number="S001")

        self.assertFalse(User.objects.filter(username="ana2").exists())
        self.assertFalse(StudentWhitelist.objects.get(student_number="S001").is_used)

    def test_unique_violation_during_registration_is_a_conflict(self):
        StudentWhitelist.objects.create(student_number="S001", name="Ana")

        with patch("users.services.User.objects.create_user", side_effect=IntegrityError("unique")):
            with self.assertRaises(Conflict):
                register_user(username="ana", password="password1", role=User.ROLE_STUDENT, student_number="S001")

        self.assertFalse(StudentWhitelist.objects.get(student_number="S001").is_used)


class AccountReviewTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="password", role=User.ROLE_ADMIN)

    def _request(self, username: str, role: str, code: str) -> User:
        return register_user(
            username=username,
            password="password1",
            role=role,
            apply_org_name=f"Org {code}",
            apply_org_code=code,
        )

    def test_approval_creates_and_binds_organization(self):
        pending = self._request("uni", User.ROLE_UNIVERSITY, "UNI01")

        user = review_account_request(user_id=pending.pk, actor=self.admin, approved=True)

        self.assertTrue(user.is_active)
        self.assertEqual(user.approval_status, User.ApprovalStatus.APPROVED)
        self.assertEqual(user.university.code, "UNI01")
        self.assertTrue(user.university.is_verified)
        self.assertEqual(user.approved_by, self.admin)

    def test_approval_reuses_organization_with_same_code(self):
        existing = Company.objects.create(code="COMP01", name="Acme")
        first = self._request("acme1", User.ROLE_COMPANY, "COMP01")
        second = self._request("acme2", User.ROLE_COMPANY, "COMP01")

        review_account_request(user_id=first.pk, actor=self.admin, approved=True)
        review_account_request(user_id=second.pk, actor=self.admin, approved=True)

        self.assertEqual(Company.objects.filter(code="COMP01").count(), 1)
        self.assertEqual(User.objects.get(pk=first.pk).company, existing)
        self.assertEqual(User.objects.get(pk=second.pk).company, existing)

    def test_rejection_requires_reason(self):
        pending = self._request("uni", User.ROLE_UNIVERSITY, "UNI01")

        with self.assertRaises(serializers.ValidationError):
            review_account_request(user_id=pending.pk, actor=self.admin, approved=False)

        user = review_account_request(user_id=pending.pk, actor=self.admin, approved=False, reject_reason="Unknown org")
        self.assertEqual(user.approval_status, User.ApprovalStatus.REJECTED)
        self.assertFalse(user.is_active)
        self.assertFalse(University.objects.exists())


class UserPermissionTests(TestCase):
    def setUp(self):
        self.client = APIClient()

        self.admin = User.objects.create_user(username="admin", password="password", role=User.ROLE_ADMIN)
        self.student = User.objects.create_user(username="student", password="password", role=User.ROLE_STUDENT)
        self.pending = register_user(
            username="uni",
            password="password1",
            role=User.ROLE_UNIVERSITY,
            apply_org_name="First University",
            apply_org_code="UNI01",
        )

    def test_me_endpoint(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.get("/api/users/me/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["username"], "student")

    def test_student_cannot_list_users(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.get("/api/users/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_lists_pending_requests(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get("/api/users/", {"approval_status": User.ApprovalStatus.PENDING})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([u["username"] for u in response.data], ["uni"])

    def test_admin_reviews_through_the_api(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(f"/api/users/{self.pending.pk}/review/", {"approved": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_active"])
        self.assertEqual(response.data["university_name"], "First University")

        response = self.client.post(f"/api/users/{self.pending.pk}/review/", {"approved": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_student_cannot_review(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post(f"/api/users/{self.pending.pk}/review/", {"approved": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
