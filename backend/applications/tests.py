from __future__ import annotations

import re
from datetime import datetime, timezone as dt_timezone
from unittest.mock import patch

from django.test import TestCase, override_settings
from rest_framework import serializers
from rest_framework.exceptions import PermissionDenied
from rest_framework.test import APITestCase

from applications.models import ApplicationTransition, InternshipApplication
from applications.services import workflow
from applications.services.workflow import ALLOWED_TRANSITIONS, generate_application_no, verify_company_seal
from certificates.models import Certificate
from core.exceptions import Conflict
from core.models import Company, University
from notifications.models import Notification
from users.models import User
from whitelist.models import StudentWhitelist

UTC = dt_timezone.utc
Status = InternshipApplication.Status


class WorkflowTestMixin:
    def setUp(self):
        self.university = University.objects.create(code="UNI01", name="First University")
        self.company = Company.objects.create(code="COMP01", name="Acme")
        self.student = User.objects.create_user(
            username="student1",
            password="p1",
            role=User.ROLE_STUDENT,
            student_number="S001",
            university=self.university,
        )
        self.company_user = User.objects.create_user(
            username="comp1", password="p1", role=User.ROLE_COMPANY, company=self.company
        )
        self.uni_user = User.objects.create_user(
            username="uni1", password="p1", role=User.ROLE_UNIVERSITY, university=self.university
        )

    def create_draft(self, **overrides) -> InternshipApplication:
        data = {
            "student": self.student,
            "company": self.company,
            "position": "Intern",
            "department": "R&D",
            "start_date": datetime(2024, 6, 1, tzinfo=UTC),
            "end_date": datetime(2024, 8, 1, tzinfo=UTC),
            "description": "Backend work",
        }
        data.update(overrides)
        return workflow.create_application(**data)

    def submitted(self) -> InternshipApplication:
        return workflow.submit(application=self.create_draft(), actor=self.student)

    def company_approved(self) -> InternshipApplication:
        return workflow.company_review(
            application=self.submitted(),
            actor=self.company_user,
            approved=True,
            score=90,
            evaluation="Excellent",
        )


class TransitionTableTests(TestCase):
    def test_terminal_states_have_no_outgoing_edges(self):
        for status in InternshipApplication.TERMINAL_STATUSES:
            with self.subTest(status=status):
                self.assertEqual(ALLOWED_TRANSITIONS[status], set())

    def test_every_status_is_covered(self):
        self.assertEqual(set(ALLOWED_TRANSITIONS), set(Status.values))

    def test_application_number_format(self):
        number = generate_application_no(datetime(2024, 6, 1, tzinfo=UTC))
        self.assertTrue(re.fullmatch(r"APP20240601[A-Z0-9]{4}", number), number)


class ApplicationWorkflowTests(WorkflowTestMixin, TestCase):
    def test_full_approval_issues_a_pending_certificate(self):
        application = self.company_approved()

        with patch("certificates.tasks.anchor_certificate.delay", return_value=None) as delay:
            with self.captureOnCommitCallbacks(execute=True):
                application = workflow.university_review(
                    application=application,
                    actor=self.uni_user,
                    approved=True,
                    approval_note="Well done",
                    auto_anchor=True,
                )

        self.assertEqual(application.status, Status.APPROVED)
        certificate = application.certificate
        self.assertIsNotNone(certificate)
        self.assertEqual(certificate.status, Certificate.Status.PENDING)
        self.assertIsNone(certificate.cert_hash)
        self.assertEqual(certificate.evaluation, "Excellent")
        delay.assert_called_once_with(certificate.pk)

        path = list(
            ApplicationTransition.objects.filter(application=application).values_list("from_status", "to_status")
        )
        self.assertEqual(
            path,
            [
                (Status.DRAFT, Status.SUBMITTED),
                (Status.SUBMITTED, Status.COMPANY_REVIEWING),
                (Status.COMPANY_REVIEWING, Status.COMPANY_APPROVED),
                (Status.COMPANY_APPROVED, Status.UNIVERSITY_REVIEWING),
                (Status.UNIVERSITY_REVIEWING, Status.APPROVED),
            ],
        )
        self.assertTrue(
            Notification.objects.filter(recipient=self.student, type=Notification.Type.CERTIFICATE_ISSUED).exists()
        )

    def test_approval_without_auto_anchor_does_not_enqueue(self):
        application = self.company_approved()

        with patch("certificates.tasks.anchor_certificate.delay", return_value=None) as delay:
            with self.captureOnCommitCallbacks(execute=True):
                workflow.university_review(
                    application=application, actor=self.uni_user, approved=True, auto_anchor=False
                )

        delay.assert_not_called()

    @override_settings(ANCHORING_AUTO_ON_APPROVAL=False)
    def test_auto_anchor_defaults_to_setting(self):
        application = self.company_approved()

        with patch("certificates.tasks.anchor_certificate.delay", return_value=None) as delay:
            with self.captureOnCommitCallbacks(execute=True):
                workflow.university_review(application=application, actor=self.uni_user, approved=True)

        delay.assert_not_called()

    def test_new_application_is_a_numbered_draft(self):
        application = self.create_draft()
        self.assertEqual(application.status, Status.DRAFT)
        self.assertEqual(application.university, self.university)
        self.assertTrue(re.fullmatch(r"APP\d{8}[A-Z0-9]{4}", application.application_no))

    def test_university_comes_from_whitelist_entry(self):
        other = University.objects.create(code="UNI02", name="Second University")
        StudentWhitelist.objects.create(student_number="S001", name="Student One", university=other)

        application = self.create_draft()

        self.assertEqual(application.university, other)

    def test_only_students_create_applications(self):
        with self.assertRaises(PermissionDenied):
            self.create_draft(student=self.company_user)

    def test_end_date_must_follow_start_date(self):
        with self.assertRaises(serializers.ValidationError):
            self.create_draft(end_date=datetime(2024, 5, 1, tzinfo=UTC))

    def test_draft_update_only_while_draft(self):
        application = self.create_draft()
        application = workflow.update_draft(
            application=application,
            actor=self.student,
            changes=workflow.ApplicationDraftUpdate(position="Data Intern"),
        )
        self.assertEqual(application.position, "Data Intern")

        workflow.submit(application=application, actor=self.student)
        with self.assertRaises(Conflict):
            workflow.update_draft(
                application=application,
                actor=self.student,
                changes=workflow.ApplicationDraftUpdate(position="Changed"),
            )

    def test_submit_notifies_company_members(self):
        self.submitted()
        self.assertTrue(
            Notification.objects.filter(
                recipient=self.company_user, type=Notification.Type.APPLICATION_SUBMITTED
            ).exists()
        )

    def test_submitting_twice_is_a_conflict(self):
        application = self.submitted()
        with self.assertRaises(Conflict):
            workflow.submit(application=application, actor=self.student)

    def test_withdraw_before_company_decision(self):
        application = self.submitted()
        application = workflow.withdraw(application=application, actor=self.student, comment="changed plans")
        self.assertEqual(application.status, Status.WITHDRAWN)
        self.assertTrue(application.is_terminal)

    def test_cannot_withdraw_after_company_approval(self):
        application = self.company_approved()
        with self.assertRaises(Conflict):
            workflow.withdraw(application=application, actor=self.student)

    def test_company_approval_seals_the_evaluation(self):
        application = self.company_approved()

        self.assertEqual(application.status, Status.COMPANY_APPROVED)
        self.assertEqual(application.company_score, 90)
        self.assertEqual(application.company_signed_by, self.company_user)
        self.assertRegex(application.company_seal, r"^[0-9a-f]{64}$")
        self.assertTrue(verify_company_seal(application))

        application.company_score = 100
        self.assertFalse(verify_company_seal(application))

    def test_company_review_requires_score_and_evaluation(self):
        application = self.submitted()
        with self.assertRaises(serializers.ValidationError):
            workflow.company_review(application=application, actor=self.company_user, approved=True, score=0, evaluation="ok")
        with self.assertRaises(serializers.ValidationError):
            workflow.company_review(application=application, actor=self.company_user, approved=True, score=80, evaluation=" ")
        application.refresh_from_db()
        self.assertEqual(application.status, Status.SUBMITTED)

    def test_company_rejection_requires_reason(self):
        application = self.submitted()
        with self.assertRaises(serializers.ValidationError):
            workflow.company_review(application=application, actor=self.company_user, approved=False)

        application = workflow.company_review(
            application=application, actor=self.company_user, approved=False, reject_reason="No positions left"
        )
        self.assertEqual(application.status, Status.REJECTED)
        self.assertEqual(application.company_reject_reason, "No positions left")

    def test_other_company_cannot_review(self):
        other = Company.objects.create(code="COMP02", name="Other")
        outsider = User.objects.create_user(username="comp2", password="p1", role=User.ROLE_COMPANY, company=other)
        application = self.submitted()

        with self.assertRaises(PermissionDenied):
            workflow.company_review(application=application, actor=outsider, approved=True, score=80, evaluation="ok")

    def test_university_cannot_review_before_company(self):
        application = self.submitted()
        with self.assertRaises(Conflict):
            workflow.university_review(application=application, actor=self.uni_user, approved=True, auto_anchor=False)

    def test_university_rejection(self):
        application = self.company_approved()
        application = workflow.university_review(
            application=application, actor=self.uni_user, approved=False, reject_reason="Missing report"
        )
        self.assertEqual(application.status, Status.REJECTED)
        self.assertIsNone(application.certificate)
        self.assertEqual(Certificate.objects.count(), 0)

    def test_rejected_application_cannot_be_reviewed_again(self):
        application = self.company_approved()
        workflow.university_review(application=application, actor=self.uni_user, approved=False, reject_reason="No")
        with self.assertRaises(Conflict):
            workflow.university_review(application=application, actor=self.uni_user, approved=True, auto_anchor=False)


class ApplicationApiTests(WorkflowTestMixin, APITestCase):
    def test_student_to_university_through_the_api(self):
        self.client.force_authenticate(user=self.student)
        res = self.client.post(
            "/api/applications/",
            {
                "company": self.company.pk,
                "position": "Intern",
                "start_date": "2024-06-01T00:00:00Z",
                "end_date": "2024-08-01T00:00:00Z",
            },
            format="json",
        )
        self.assertEqual(res.status_code, 201)
        app_id = res.data["id"]
        self.assertEqual(res.data["status"], Status.DRAFT)

        # Organizations never see drafts.
        self.client.force_authenticate(user=self.company_user)
        self.assertEqual(self.client.get(f"/api/applications/{app_id}/").status_code, 404)

        self.client.force_authenticate(user=self.student)
        res = self.client.post(f"/api/applications/{app_id}/submit/", {}, format="json")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], Status.SUBMITTED)

        self.client.force_authenticate(user=self.company_user)
        res = self.client.post(
            f"/api/applications/{app_id}/company-review/",
            {"approved": True, "score": 85, "evaluation": "Reliable"},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], Status.COMPANY_APPROVED)
        self.assertTrue(res.data["company_seal_valid"])

        self.client.force_authenticate(user=self.uni_user)
        res = self.client.post(
            f"/api/applications/{app_id}/university-review/",
            {"approved": True, "auto_anchor": False},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], Status.APPROVED)
        self.assertTrue(res.data["certificate_number"].startswith("CERT"))
        self.assertEqual(len(res.data["transitions"]), 5)

    def test_company_review_score_out_of_range_is_400(self):
        application = self.submitted()
        self.client.force_authenticate(user=self.company_user)
        res = self.client.post(
            f"/api/applications/{application.pk}/company-review/",
            {"approved": True, "score": 101, "evaluation": "ok"},
            format="json",
        )
        self.assertEqual(res.status_code, 400)

    def test_illegal_transition_is_409(self):
        application = self.submitted()
        self.client.force_authenticate(user=self.uni_user)
        res = self.client.post(
            f"/api/applications/{application.pk}/university-review/",
            {"approved": True},
            format="json",
        )
        self.assertEqual(res.status_code, 409)

    def test_company_users_cannot_create_applications(self):
        self.client.force_authenticate(user=self.company_user)
        res = self.client.post(
            "/api/applications/",
            {
                "company": self.company.pk,
                "position": "Intern",
                "start_date": "2024-06-01T00:00:00Z",
                "end_date": "2024-08-01T00:00:00Z",
            },
            format="json",
        )
        self.assertEqual(res.status_code, 403)
