from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone as dt_timezone

from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase
from eth_abi import encode
from eth_utils import keccak

from certificates.models import Certificate
from certificates.services.hashing import (
    CERTIFICATE_HASH_TYPES,
    compute_certificate_hash,
    encode_certificate_facts,
    to_unix_seconds,
)
from certificates.services.issuance import generate_cert_number, generate_verify_code, issue_certificate
from core.models import Company, University

UTC = dt_timezone.utc


FACTS = {
    "student_id": "S001",
    "university_code": "UNI01",
    "company_code": "COMP01",
    "position": "Intern",
    "start_date": datetime(2024, 6, 1, tzinfo=UTC),
    "end_date": datetime(2024, 8, 1, tzinfo=UTC),
    "cert_number": "CERT202406XYZ",
}


class CertificateHashTests(SimpleTestCase):
    def test_hash_is_deterministic(self):
        self.assertEqual(compute_certificate_hash(**FACTS), compute_certificate_hash(**FACTS))

    def test_hash_format(self):
        digest = compute_certificate_hash(**FACTS)
        self.assertRegex(digest, r"^0x[0-9a-f]{64}$")

    def test_changing_any_field_changes_the_hash(self):
        base = compute_certificate_hash(**FACTS)
        changes = {
            "student_id": "S002",
            "university_code": "UNI02",
            "company_code": "COMP02",
            "position": "Senior Intern",
            "start_date": datetime(2024, 6, 2, tzinfo=UTC),
            "end_date": datetime(2024, 8, 2, tzinfo=UTC),
            "cert_number": "CERT202406XYA",
        }
        for field, value in changes.items():
            with self.subTest(field=field):
                self.assertNotEqual(compute_certificate_hash(**{**FACTS, field: value}), base)

    def test_matches_keccak_of_abi_encoding(self):
        expected = keccak(
            encode(
                CERTIFICATE_HASH_TYPES,
                ["S001", "UNI01", "COMP01", "Intern", 1717200000, 1722470400, "CERT202406XYZ"],
            )
        )
        self.assertEqual(compute_certificate_hash(**FACTS), "0x" + expected.hex())

    def test_sub_second_precision_is_ignored(self):
        with_micro = {**FACTS, "start_date": FACTS["start_date"] + timedelta(microseconds=750_000)}
        self.assertEqual(compute_certificate_hash(**with_micro), compute_certificate_hash(**FACTS))

    def test_same_instant_in_another_timezone_hashes_the_same(self):
        bogota = dt_timezone(timedelta(hours=-5))
        shifted = {**FACTS, "start_date": datetime(2024, 5, 31, 19, 0, tzinfo=bogota)}
        self.assertEqual(compute_certificate_hash(**shifted), compute_certificate_hash(**FACTS))

    def test_unix_seconds(self):
        self.assertEqual(to_unix_seconds(datetime(2024, 6, 1, tzinfo=UTC)), 1717200000)
        self.assertEqual(to_unix_seconds(datetime(2024, 6, 1)), 1717200000)
        self.assertEqual(to_unix_seconds(1717200000), 1717200000)
        with self.assertRaises(TypeError):
            to_unix_seconds(True)

    def test_dates_before_epoch_are_rejected(self):
        with self.assertRaises(ValueError):
            encode_certificate_facts(**{**FACTS, "start_date": datetime(1969, 12, 31, tzinfo=UTC)})


class IdentifierTests(SimpleTestCase):
    def test_cert_number_format(self):
        number = generate_cert_number(datetime(2024, 6, 15, tzinfo=UTC))
        self.assertTrue(re.fullmatch(r"CERT202406[A-Z0-9]{6}", number), number)

    def test_verify_code_format(self):
        code = generate_verify_code()
        self.assertTrue(re.fullmatch(r"[0-9A-F]{16}", code), code)
        self.assertNotEqual(code, generate_verify_code())


class CertificateModelTests(TestCase):
    def setUp(self):
        from users.models import User

        self.university = University.objects.create(code="UNI01", name="First University")
        self.company = Company.objects.create(code="COMP01", name="Acme")
        self.student = User.objects.create_user(
            username="student1",
            password="p1",
            role=User.ROLE_STUDENT,
            student_number="S001",
            university=self.university,
        )

    def _create(self, **overrides):
        data = {
            "cert_number": "CERT202406XYZ",
            "student": self.student,
            "university": self.university,
            "company": self.company,
            "student_number": "S001",
            "university_code": "UNI01",
            "company_code": "COMP01",
            "position": "Intern",
            "start_date": FACTS["start_date"],
            "end_date": FACTS["end_date"],
            "verify_code": "ABCDEF0123456789",
        }
        data.update(overrides)
        return Certificate.objects.create(**data)

    def test_pending_certificate_has_no_hash(self):
        certificate = self._create()
        self.assertEqual(certificate.status, Certificate.Status.PENDING)
        self.assertIsNone(certificate.cert_hash)

    def test_database_rejects_hash_while_pending(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            self._create(cert_hash="0x" + "1" * 64)

    def test_database_rejects_missing_hash_once_anchoring_started(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            self._create(status=Certificate.Status.PROCESSING)

    def test_compute_hash_uses_the_snapshot(self):
        certificate = self._create()
        self.assertEqual(certificate.compute_hash(), compute_certificate_hash(**FACTS))

        # Renaming the organization does not change what was certified.
        self.university.code = "RENAMED"
        self.university.save()
        certificate.refresh_from_db()
        self.assertEqual(certificate.compute_hash(), compute_certificate_hash(**FACTS))


class IssueCertificateTests(TestCase):
    def test_issue_copies_application_facts(self):
        from applications.models import InternshipApplication
        from users.models import User

        university = University.objects.create(code="UNI01", name="First University")
        company = Company.objects.create(code="COMP01", name="Acme")
        student = User.objects.create_user(
            username="student1", password="p1", role=User.ROLE_STUDENT, student_number="S001"
        )
        approver = User.objects.create_user(
            username="uni1", password="p1", role=User.ROLE_UNIVERSITY, university=university
        )
        application = InternshipApplication.objects.create(
            application_no="APP20240601ABCD",
            student=student,
            university=university,
            company=company,
            position="Intern",
            department="R&D",
            start_date=FACTS["start_date"],
            end_date=FACTS["end_date"],
            description="Backend work",
            company_evaluation="Excellent",
            status=InternshipApplication.Status.UNIVERSITY_REVIEWING,
        )

        certificate = issue_certificate(application=application, issuer=approver)

        self.assertEqual(certificate.status, Certificate.Status.PENDING)
        self.assertIsNone(certificate.cert_hash)
        self.assertEqual(certificate.student_number, "S001")
        self.assertEqual(certificate.university_code, "UNI01")
        self.assertEqual(certificate.company_code, "COMP01")
        self.assertEqual(certificate.position, "Intern")
        self.assertEqual(certificate.department, "R&D")
        self.assertEqual(certificate.evaluation, "Excellent")
        self.assertEqual(certificate.issuer, approver)
        self.assertTrue(certificate.verify_url.endswith(f"/verify/{certificate.verify_code}"))
        self.assertTrue(certificate.qr_code.startswith("data:image/png;base64,"))


class CertificateAdminTests(SimpleTestCase):
    def setUp(self):
        from django.contrib import admin
        from django.test import RequestFactory

        self.model_admin = admin.site._registry[Certificate]
        self.request = RequestFactory().get("/admin/certificates/certificate/")

    def test_status_is_never_editable(self):
        self.assertIn("status", self.model_admin.get_readonly_fields(self.request, None))
        pending = Certificate(status=Certificate.Status.PENDING)
        self.assertIn("status", self.model_admin.get_readonly_fields(self.request, pending))

    def test_pending_certificate_facts_stay_editable(self):
        readonly = self.model_admin.get_readonly_fields(self.request, Certificate(status=Certificate.Status.PENDING))
        for field in ("position", "start_date", "end_date", "student_number", "university_code"):
            self.assertNotIn(field, readonly)

    def test_hashed_facts_freeze_after_pending(self):
        hashed = set(Certificate().hash_facts())
        for status in (
            Certificate.Status.PROCESSING,
            Certificate.Status.ACTIVE,
            Certificate.Status.FAILED,
            Certificate.Status.REVOKED,
        ):
            readonly = set(self.model_admin.get_readonly_fields(self.request, Certificate(status=status)))
            self.assertEqual(hashed - readonly - {"student_id"}, set(), status)
            self.assertIn("student_number", readonly)
