from datetime import datetime, timezone as dt_timezone
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone

from certificates.models import Certificate
from certificates.services.anchoring import AnchoringCoordinator
from core.models import Company, University
from ledger.gateway import LedgerErrorKind
from ledger.memory import InMemoryLedgerGateway
from users.models import User

from .models import VerificationEvent
from .services import LOOKUP_CODE, build_public_verify_url, normalize_hash, verify_certificate


UTC = dt_timezone.utc


class PublicVerifyTests(TestCase):
    def setUp(self):
        cache.clear()
        self.university = University.objects.create(code="UNI01", name="First University")
        self.company = Company.objects.create(code="COMP01", name="Acme")
        self.student = User.objects.create_user(
            username="student1",
            password="p1",
            first_name="Ana",
            last_name="Lopez",
            role=User.ROLE_STUDENT,
            student_number="S001",
            university=self.university,
        )
        self.gateway = InMemoryLedgerGateway()
        gateway_patch = patch("verification.views_public.build_ledger_gateway", return_value=self.gateway)
        gateway_patch.start()
        self.addCleanup(gateway_patch.stop)

        self.certificate = Certificate.objects.create(
            cert_number="CERT202406XYZ",
            student=self.student,
            university=self.university,
            company=self.company,
            student_number="S001",
            university_code="UNI01",
            company_code="COMP01",
            position="Intern",
            start_date=datetime(2024, 6, 1, tzinfo=UTC),
            end_date=datetime(2024, 8, 1, tzinfo=UTC),
            verify_code="ABCDEF0123456789",
        )

    def _anchor(self):
        AnchoringCoordinator(self.gateway).anchor(self.certificate.pk)
        self.certificate.refresh_from_db()
        self.gateway.calls.clear()

    def test_active_certificate_is_valid_on_both_sides(self):
        self._anchor()

        res = self.client.get("/api/public/verify/code/ABCDEF0123456789/")

        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertTrue(data["valid"])
        self.assertEqual(data["source"], "local+ledger")
        self.assertEqual(data["status"], Certificate.Status.ACTIVE)
        self.assertEqual(data["certificate"]["student_name"], "Ana Lopez")
        self.assertEqual(data["certificate"]["company"]["code"], "COMP01")
        self.assertEqual(data["blockchain"]["cert_hash"], self.certificate.cert_hash)
        self.assertTrue(data["ledger"]["valid"])
        self.assertIsNone(data["revocation"])

    def test_code_lookup_is_case_insensitive(self):
        res = self.client.get("/api/public/verify/code/abcdef0123456789/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["certificate"]["cert_number"], "CERT202406XYZ")

    def test_lookup_by_number(self):
        res = self.client.get("/api/public/verify/number/CERT202406XYZ/")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json()["valid"])

    def test_pending_certificate_is_valid_locally_without_ledger_query(self):
        res = self.client.get("/api/public/verify/code/ABCDEF0123456789/")

        data = res.json()
        self.assertTrue(data["valid"])
        self.assertEqual(data["source"], "local")
        self.assertIsNone(data["blockchain"])
        self.assertEqual(self.gateway.calls_to("query"), [])

    def test_revoked_certificate_is_invalid_and_ledger_is_not_consulted(self):
        self._anchor()
        Certificate.objects.filter(pk=self.certificate.pk).update(
            status=Certificate.Status.REVOKED,
            revoked_at=timezone.now(),
            revoke_reason="misconduct",
        )

        res = self.client.get("/api/public/verify/code/ABCDEF0123456789/")

        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertFalse(data["valid"])
        self.assertEqual(data["status"], Certificate.Status.REVOKED)
        self.assertEqual(data["revocation"]["reason"], "misconduct")
        self.assertEqual(self.gateway.calls_to("query"), [])

    def test_unknown_code_is_404(self):
        res = self.client.get("/api/public/verify/code/0000000000000000/")
        self.assertEqual(res.status_code, 404)
        self.assertFalse(res.json()["found"])

    def test_processing_certificate_confirmed_on_ledger_is_valid(self):
        self._anchor()
        # The confirmation has not been written back yet.
        Certificate.objects.filter(pk=self.certificate.pk).update(status=Certificate.Status.PROCESSING)

        data = self.client.get("/api/public/verify/code/ABCDEF0123456789/").json()

        self.assertTrue(data["valid"])
        self.assertEqual(data["source"], "local+ledger")

    def test_failed_certificate_missing_on_ledger_is_invalid(self):
        self.gateway.fail_next("submit", LedgerErrorKind.REVERTED, "Not authorized")
        self._anchor()

        data = self.client.get("/api/public/verify/code/ABCDEF0123456789/").json()

        self.assertFalse(data["valid"])
        self.assertFalse(data["ledger"]["exists"])

    def test_ledger_down_still_answers_from_local_state(self):
        self._anchor()
        self.gateway.available = False

        data = self.client.get("/api/public/verify/code/ABCDEF0123456789/").json()

        self.assertTrue(data["valid"])
        self.assertEqual(data["source"], "local")
        self.assertFalse(data["ledger"]["checked"])

    def test_hash_lookup_without_local_row_uses_the_ledger(self):
        self._anchor()
        cert_hash = self.certificate.cert_hash
        Certificate.objects.filter(pk=self.certificate.pk).update(cert_hash=None, status=Certificate.Status.PENDING)

        res = self.client.get(f"/api/public/verify/hash/{cert_hash.upper().replace('0X', '')}/")

        self.assertEqual(res.status_code, 200)
        data = res.json()
        self.assertTrue(data["valid"])
        self.assertEqual(data["source"], "ledger")
        self.assertEqual(data["ledger"]["record"]["student_id"], "S001")

    def test_malformed_hash_is_not_sent_to_the_ledger(self):
        res = self.client.get("/api/public/verify/hash/not-a-hash/")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self.gateway.calls_to("query"), [])

    def test_verification_event_stores_hashed_key(self):
        self.client.get("/api/public/verify/code/ABCDEF0123456789/", HTTP_USER_AGENT="pytest")

        event = VerificationEvent.objects.get()
        self.assertEqual(event.lookup_kind, VerificationEvent.LookupKind.CODE)
        self.assertEqual(event.lookup_hash, VerificationEvent.hash_key("ABCDEF0123456789"))
        self.assertEqual(event.certificate, self.certificate)
        self.assertEqual(event.outcome, VerificationEvent.Outcome.VALID)
        self.assertEqual(event.user_agent, "pytest")

    def test_event_failure_does_not_break_verification(self):
        with patch("verification.services.VerificationEvent.objects.create", side_effect=RuntimeError("db")):
            verdict = verify_certificate(lookup_kind=LOOKUP_CODE, key="ABCDEF0123456789", gateway=None)
        self.assertTrue(verdict.valid)

    @override_settings(PUBLIC_VERIFY_THROTTLE_RATE="2/min")
    def test_public_verify_throttles(self):
        cache.clear()

        r1 = self.client.get("/api/public/verify/code/ABCDEF0123456789/")
        self.assertEqual(r1.status_code, 200)
        r2 = self.client.get("/api/public/verify/code/ABCDEF0123456789/")
        self.assertEqual(r2.status_code, 200)
        r3 = self.client.get("/api/public/verify/code/ABCDEF0123456789/")
        self.assertEqual(r3.status_code, 429)

    def test_ledger_info(self):
        self._anchor()

        data = self.client.get("/api/public/ledger/info/").json()

        self.assertTrue(data["available"])
        self.assertEqual(data["chain_id"], 31337)
        self.assertEqual(data["statistics"], {"total": 1, "active": 1, "revoked": 0})

    def test_ledger_info_when_down(self):
        self.gateway.available = False
        data = self.client.get("/api/public/ledger/info/").json()
        self.assertFalse(data["available"])
        self.assertIsNone(data["statistics"])


class VerifyHelpersTests(TestCase):
    def test_normalize_hash(self):
        self.assertEqual(normalize_hash(" ABCD "), "0xabcd")
        self.assertEqual(normalize_hash("0xABCD"), "0xabcd")
        self.assertEqual(normalize_hash(""), "")

    @override_settings(PUBLIC_SITE_URL="https://certs.example.edu/")
    def test_public_verify_url(self):
        self.assertEqual(build_public_verify_url("ABC"), "https://certs.example.edu/verify/ABC")
