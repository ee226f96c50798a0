from __future__ import annotations

import tempfile
from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import pytest
from celery.exceptions import Retry
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import override_settings
from django.utils import timezone
from rest_framework.test import APITestCase

from audit.models import AuditLog
from certificates.models import Certificate
from certificates.tasks import anchor_certificate, anchor_certificate_batch, reconcile_stuck_anchoring
from core.models import Company, University
from ledger.gateway import LedgerErrorKind
from ledger.memory import InMemoryLedgerGateway
from users.models import User
from verification.models import VerificationEvent

UTC = dt_timezone.utc


def _make_parties():
    university = University.objects.create(code="UNI01", name="First University")
    company = Company.objects.create(code="COMP01", name="Acme")
    student = User.objects.create_user(
        username="student1",
        password="p1",
        role=User.ROLE_STUDENT,
        student_number="S001",
        university=university,
    )
    return university, company, student


def _make_certificate(university, company, student, suffix: str = "A1", **overrides) -> Certificate:
    data = {
        "cert_number": f"CERT202406XY{suffix}",
        "student": student,
        "university": university,
        "company": company,
        "student_number": student.student_number or "",
        "university_code": university.code,
        "company_code": company.code,
        "position": "Intern",
        "start_date": datetime(2024, 6, 1, tzinfo=UTC),
        "end_date": datetime(2024, 8, 1, tzinfo=UTC),
        "verify_code": f"ABCDEF01234567{suffix}",
    }
    data.update(overrides)
    return Certificate.objects.create(**data)


class _NoPdf:
    def render(self, certificate):
        raise RuntimeError("no renderer in tests")


@pytest.mark.django_db
def test_anchor_task_activates_certificate():
    university, company, student = _make_parties()
    certificate = _make_certificate(university, company, student)
    gateway = InMemoryLedgerGateway()

    with patch("certificates.tasks.build_ledger_gateway", return_value=gateway), patch(
        "certificates.tasks.CertificatePdfRenderer", return_value=_NoPdf()
    ):
        result = anchor_certificate.apply(args=[certificate.pk]).get()

    certificate.refresh_from_db()
    assert result["status"] == Certificate.Status.ACTIVE
    assert certificate.status == Certificate.Status.ACTIVE
    assert certificate.tx_hash == result["tx_hash"]


@pytest.mark.django_db
def test_anchor_task_retries_transient_failures():
    university, company, student = _make_parties()
    certificate = _make_certificate(university, company, student)
    gateway = InMemoryLedgerGateway()
    gateway.fail_next("submit", LedgerErrorKind.NETWORK, "connection reset")

    with patch("certificates.tasks.build_ledger_gateway", return_value=gateway), patch(
        "certificates.tasks.CertificatePdfRenderer", return_value=_NoPdf()
    ):
        with patch.object(anchor_certificate, "retry", side_effect=Retry("scheduled")) as retry:
            first = anchor_certificate.apply(args=[certificate.pk], throw=False)

        retry.assert_called_once_with(countdown=30)
        assert first.state == "RETRY"
        certificate.refresh_from_db()
        assert certificate.status == Certificate.Status.FAILED
        assert certificate.anchor_attempts == 1

        # The rescheduled run claims the FAILED certificate again.
        result = anchor_certificate.apply(args=[certificate.pk], retries=1).get()

    certificate.refresh_from_db()
    assert result["status"] == Certificate.Status.ACTIVE
    assert certificate.status == Certificate.Status.ACTIVE
    assert certificate.anchor_attempts == 2
    assert len(gateway.calls_to("submit")) == 2


@pytest.mark.django_db
def test_anchor_task_backoff_grows_and_stops_after_max_retries():
    university, company, student = _make_parties()
    certificate = _make_certificate(university, company, student)
    gateway = InMemoryLedgerGateway()
    gateway.available = False

    with patch("certificates.tasks.build_ledger_gateway", return_value=gateway), patch(
        "certificates.tasks.CertificatePdfRenderer", return_value=_NoPdf()
    ):
        with patch.object(anchor_certificate, "retry", side_effect=Retry("scheduled")) as retry:
            anchor_certificate.apply(args=[certificate.pk], retries=2, throw=False)
            retry.assert_called_once_with(countdown=120)

            result = anchor_certificate.apply(args=[certificate.pk], retries=3).get()
            retry.assert_called_once()

    certificate.refresh_from_db()
    assert result["status"] == Certificate.Status.FAILED
    assert certificate.status == Certificate.Status.FAILED
    assert "not available" in certificate.last_anchor_error


@pytest.mark.django_db
def test_anchor_task_does_not_retry_reverts():
    university, company, student = _make_parties()
    certificate = _make_certificate(university, company, student)
    gateway = InMemoryLedgerGateway()
    gateway.fail_next("submit", LedgerErrorKind.REVERTED, "Not authorized")

    with patch("certificates.tasks.build_ledger_gateway", return_value=gateway), patch(
        "certificates.tasks.CertificatePdfRenderer", return_value=_NoPdf()
    ):
        result = anchor_certificate.apply(args=[certificate.pk]).get()

    certificate.refresh_from_db()
    assert result["status"] == Certificate.Status.FAILED
    assert certificate.status == Certificate.Status.FAILED
    assert certificate.anchor_attempts == 1


@pytest.mark.django_db
def test_batch_task_anchors_all_members():
    university, company, student = _make_parties()
    other = User.objects.create_user(
        username="student2", password="p1", role=User.ROLE_STUDENT, student_number="S002"
    )
    first = _make_certificate(university, company, student, suffix="B1")
    second = _make_certificate(university, company, other, suffix="B2")
    gateway = InMemoryLedgerGateway()

    with patch("certificates.tasks.build_ledger_gateway", return_value=gateway), patch(
        "certificates.tasks.CertificatePdfRenderer", return_value=_NoPdf()
    ):
        result = anchor_certificate_batch.apply(args=[[first.pk, second.pk]]).get()

    assert sorted(result["anchored_ids"]) == sorted([first.pk, second.pk])
    statuses = set(Certificate.objects.values_list("status", flat=True))
    assert statuses == {Certificate.Status.ACTIVE}


@pytest.mark.django_db
def test_reconcile_task_fails_stuck_certificates():
    university, company, student = _make_parties()
    certificate = _make_certificate(university, company, student)
    Certificate.objects.filter(pk=certificate.pk).update(
        status=Certificate.Status.PROCESSING,
        cert_hash=certificate.compute_hash(),
        anchoring_started_at=timezone.now() - timedelta(hours=1),
    )

    failed = reconcile_stuck_anchoring.apply(kwargs={"older_than_minutes": 15}).get()

    certificate.refresh_from_db()
    assert failed == [certificate.pk]
    assert certificate.status == Certificate.Status.FAILED


class CertificateApiTests(APITestCase):
    def setUp(self):
        self.university, self.company, self.student = _make_parties()
        self.uni_user = User.objects.create_user(
            username="uni1", password="p1", role=User.ROLE_UNIVERSITY, university=self.university
        )
        self.company_user = User.objects.create_user(
            username="comp1", password="p1", role=User.ROLE_COMPANY, company=self.company
        )
        self.admin = User.objects.create_user(
            username="admin1", password="p1", role=User.ROLE_ADMIN, is_staff=True
        )
        self.certificate = _make_certificate(self.university, self.company, self.student)
        self.gateway = InMemoryLedgerGateway()
        gateway_patch = patch("certificates.views.build_ledger_gateway", return_value=self.gateway)
        gateway_patch.start()
        self.addCleanup(gateway_patch.stop)

    def _activate(self, certificate: Certificate) -> None:
        Certificate.objects.filter(pk=certificate.pk).update(
            status=Certificate.Status.ACTIVE,
            cert_hash=certificate.compute_hash(),
            tx_hash="0xabc",
            block_number=1000,
            issued_at=timezone.now(),
        )

    def test_anchor_request_is_accepted_and_enqueued(self):
        self.client.force_authenticate(user=self.uni_user)

        with patch("certificates.tasks.anchor_certificate.delay", return_value=None) as delay:
            with self.captureOnCommitCallbacks(execute=True):
                res = self.client.post(f"/api/certificates/{self.certificate.pk}/anchor/", {}, format="json")

        self.assertEqual(res.status_code, 202)
        self.assertEqual(res.data["status"], Certificate.Status.PENDING)
        delay.assert_called_once_with(self.certificate.pk)
        self.assertTrue(
            AuditLog.objects.filter(event_type="CERTIFICATE_ANCHOR_REQUESTED", object_id=str(self.certificate.pk)).exists()
        )

    def test_anchor_request_with_ledger_down_is_503(self):
        self.client.force_authenticate(user=self.uni_user)
        self.gateway.available = False

        res = self.client.post(f"/api/certificates/{self.certificate.pk}/anchor/", {}, format="json")

        self.assertEqual(res.status_code, 503)

    def test_anchor_request_for_active_certificate_is_409(self):
        self._activate(self.certificate)
        self.client.force_authenticate(user=self.uni_user)

        res = self.client.post(f"/api/certificates/{self.certificate.pk}/anchor/", {}, format="json")

        self.assertEqual(res.status_code, 409)

    def test_students_cannot_anchor(self):
        self.client.force_authenticate(user=self.student)
        res = self.client.post(f"/api/certificates/{self.certificate.pk}/anchor/", {}, format="json")
        self.assertEqual(res.status_code, 403)

    def test_batch_anchor_validates_size(self):
        self.client.force_authenticate(user=self.uni_user)
        res = self.client.post(
            "/api/certificates/batch-anchor/",
            {"certificate_ids": list(range(1, 60))},
            format="json",
        )
        self.assertEqual(res.status_code, 400)
        self.assertIn("certificate_ids", res.data)

    @override_settings(ANCHORING_BATCH_LIMIT=2)
    def test_batch_size_is_checked_before_visibility(self):
        self.client.force_authenticate(user=self.uni_user)
        res = self.client.post(
            "/api/certificates/batch-anchor/",
            {"certificate_ids": [self.certificate.pk, 9998, 9999]},
            format="json",
        )
        self.assertEqual(res.status_code, 400)

    def test_batch_anchor_enqueues_one_job(self):
        other = User.objects.create_user(
            username="student2", password="p1", role=User.ROLE_STUDENT, student_number="S002"
        )
        second = _make_certificate(self.university, self.company, other, suffix="B2")
        self.client.force_authenticate(user=self.uni_user)

        with patch("certificates.tasks.anchor_certificate_batch.delay", return_value=None) as delay:
            with self.captureOnCommitCallbacks(execute=True):
                res = self.client.post(
                    "/api/certificates/batch-anchor/",
                    {"certificate_ids": [self.certificate.pk, second.pk]},
                    format="json",
                )

        self.assertEqual(res.status_code, 202)
        self.assertEqual(res.data["queued"], 2)
        delay.assert_called_once_with([self.certificate.pk, second.pk])

    def test_batch_anchor_rejects_other_universities_certificates(self):
        other_uni = University.objects.create(code="UNI02", name="Second University")
        foreign = _make_certificate(other_uni, self.company, self.student, suffix="F1", university_code="UNI02")
        self.client.force_authenticate(user=self.uni_user)

        res = self.client.post(
            "/api/certificates/batch-anchor/",
            {"certificate_ids": [self.certificate.pk, foreign.pk]},
            format="json",
        )

        self.assertEqual(res.status_code, 403)

    def test_revoke_active_certificate(self):
        self._activate(self.certificate)
        self.client.force_authenticate(user=self.uni_user)

        res = self.client.post(
            f"/api/certificates/{self.certificate.pk}/revoke/",
            {"reason": "misconduct"},
            format="json",
        )

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], Certificate.Status.REVOKED)
        self.assertEqual(res.data["revoke_reason"], "misconduct")
        # The in-memory ledger never saw this hash, so the ledger side is recorded as a discrepancy.
        self.assertIn("does not exist", res.data["revoke_ledger_error"])

    def test_revoke_requires_reason(self):
        self._activate(self.certificate)
        self.client.force_authenticate(user=self.uni_user)

        res = self.client.post(f"/api/certificates/{self.certificate.pk}/revoke/", {}, format="json")

        self.assertEqual(res.status_code, 400)

    def test_revoke_pending_is_409(self):
        self.client.force_authenticate(user=self.uni_user)
        res = self.client.post(
            f"/api/certificates/{self.certificate.pk}/revoke/",
            {"reason": "misconduct"},
            format="json",
        )
        self.assertEqual(res.status_code, 409)

    def test_remarks_editable_only_while_pending(self):
        self.client.force_authenticate(user=self.uni_user)
        res = self.client.patch(
            f"/api/certificates/{self.certificate.pk}/remarks/",
            {"evaluation": "Outstanding"},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["evaluation"], "Outstanding")

        self._activate(self.certificate)
        res = self.client.patch(
            f"/api/certificates/{self.certificate.pk}/remarks/",
            {"evaluation": "Changed"},
            format="json",
        )
        self.assertEqual(res.status_code, 409)

    def test_force_fail_is_admin_only(self):
        Certificate.objects.filter(pk=self.certificate.pk).update(
            status=Certificate.Status.PROCESSING,
            cert_hash=self.certificate.compute_hash(),
            anchoring_started_at=timezone.now(),
        )

        self.client.force_authenticate(user=self.uni_user)
        res = self.client.post(f"/api/certificates/{self.certificate.pk}/force-fail/", {}, format="json")
        self.assertEqual(res.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            f"/api/certificates/{self.certificate.pk}/force-fail/",
            {"reason": "node restarted"},
            format="json",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], Certificate.Status.FAILED)
        self.assertEqual(res.data["last_anchor_error"], "node restarted")

        res = self.client.post(f"/api/certificates/{self.certificate.pk}/force-fail/", {}, format="json")
        self.assertEqual(res.status_code, 409)

    def test_list_is_scoped_by_role(self):
        other_uni = University.objects.create(code="UNI02", name="Second University")
        _make_certificate(other_uni, self.company, self.student, suffix="F1", university_code="UNI02")

        self.client.force_authenticate(user=self.uni_user)
        res = self.client.get("/api/certificates/")
        self.assertEqual(res.status_code, 200)
        self.assertEqual([row["id"] for row in res.data], [self.certificate.pk])

        self.client.force_authenticate(user=self.company_user)
        res = self.client.get("/api/certificates/")
        self.assertEqual(len(res.data), 2)

        outsider = User.objects.create_user(username="student9", password="p1", role=User.ROLE_STUDENT)
        self.client.force_authenticate(user=outsider)
        res = self.client.get(f"/api/certificates/{self.certificate.pk}/")
        self.assertEqual(res.status_code, 404)

    def test_download_before_pdf_is_409(self):
        self.client.force_authenticate(user=self.student)
        res = self.client.get(f"/api/certificates/{self.certificate.pk}/download/")
        self.assertEqual(res.status_code, 409)

    def test_download_returns_stored_pdf(self):
        self._activate(self.certificate)
        with tempfile.TemporaryDirectory() as tmp:
            with override_settings(PRIVATE_STORAGE_ROOT=Path(tmp)):
                relpath = f"certificates/{self.certificate.cert_number}.pdf"
                out = Path(tmp) / relpath
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_bytes(b"%PDF-1.4 test")
                Certificate.objects.filter(pk=self.certificate.pk).update(pdf_relpath=relpath)

                self.client.force_authenticate(user=self.student)
                res = self.client.get(f"/api/certificates/{self.certificate.pk}/download/")

                self.assertEqual(res.status_code, 200)
                self.assertEqual(res["Content-Type"], "application/pdf")
                self.assertIn(f"{self.certificate.cert_number}.pdf", res["Content-Disposition"])
                self.assertEqual(b"".join(res.streaming_content), b"%PDF-1.4 test")

    def test_download_rejects_path_traversal(self):
        Certificate.objects.filter(pk=self.certificate.pk).update(pdf_relpath="../../etc/passwd")
        self.client.force_authenticate(user=self.student)
        with tempfile.TemporaryDirectory() as tmp:
            with override_settings(PRIVATE_STORAGE_ROOT=Path(tmp)):
                res = self.client.get(f"/api/certificates/{self.certificate.pk}/download/")
        self.assertEqual(res.status_code, 400)


@pytest.mark.django_db
def test_reconcile_command_dry_run_lists_without_changing():
    university, company, student = _make_parties()
    certificate = _make_certificate(university, company, student)
    Certificate.objects.filter(pk=certificate.pk).update(
        status=Certificate.Status.PROCESSING,
        cert_hash=certificate.compute_hash(),
        anchoring_started_at=timezone.now() - timedelta(hours=1),
    )

    out = StringIO()
    call_command("reconcile_anchoring", "--older-than-minutes", "15", "--dry-run", stdout=out)

    assert "Would mark 1" in out.getvalue()
    certificate.refresh_from_db()
    assert certificate.status == Certificate.Status.PROCESSING

    call_command("reconcile_anchoring", "--older-than-minutes", "15", stdout=StringIO())
    certificate.refresh_from_db()
    assert certificate.status == Certificate.Status.FAILED


@pytest.mark.django_db
def test_anchor_pending_command_batches_per_party_pair():
    university, company, student = _make_parties()
    other_company = Company.objects.create(code="COMP02", name="Other")
    first = _make_certificate(university, company, student, suffix="C1")
    second = _make_certificate(university, company, student, suffix="C2")
    third = _make_certificate(university, other_company, student, suffix="C3", company_code="COMP02")

    with patch("certificates.management.commands.anchor_pending_certificates.anchor_certificate_batch.delay") as delay:
        call_command("anchor_pending_certificates", "--limit", "1", stdout=StringIO())

    queued = [call.args[0] for call in delay.call_args_list]
    assert queued == [[first.pk], [second.pk], [third.pk]]


@pytest.mark.django_db
def test_anchor_pending_command_rejects_oversized_limit():
    with pytest.raises(CommandError):
        call_command("anchor_pending_certificates", "--limit", "51", stdout=StringIO())


@pytest.mark.django_db
def test_anchor_pending_command_groups_on_issued_codes():
    university, company, student = _make_parties()
    before = _make_certificate(university, company, student, suffix="D1")
    university.code = "UNI01-NEW"
    university.save(update_fields=["code"])
    after = _make_certificate(university, company, student, suffix="D2")

    with patch("certificates.management.commands.anchor_pending_certificates.anchor_certificate_batch.delay") as delay:
        call_command("anchor_pending_certificates", stdout=StringIO())

    queued = [call.args[0] for call in delay.call_args_list]
    assert queued == [[before.pk], [after.pk]]


class CertificateStatsApiTests(APITestCase):
    def setUp(self):
        self.university, self.company, self.student = _make_parties()
        self.other_university = University.objects.create(code="UNI02", name="Second University")
        self.uni_user = User.objects.create_user(
            username="uni1", password="p1", role=User.ROLE_UNIVERSITY, university=self.university
        )
        self.admin = User.objects.create_user(username="admin1", password="p1", role=User.ROLE_ADMIN)

        self.pending = _make_certificate(self.university, self.company, self.student, suffix="S1")
        self.active = _make_certificate(self.university, self.company, self.student, suffix="S2")
        Certificate.objects.filter(pk=self.active.pk).update(
            status=Certificate.Status.ACTIVE,
            cert_hash=self.active.compute_hash(),
            tx_hash="0xabc",
            block_number=1000,
            issued_at=timezone.now(),
        )
        self.foreign = _make_certificate(self.other_university, self.company, self.student, suffix="S3")

        VerificationEvent.objects.create(
            lookup_kind=VerificationEvent.LookupKind.CODE,
            lookup_hash=VerificationEvent.hash_key("a"),
            certificate=self.active,
            outcome=VerificationEvent.Outcome.VALID,
        )
        VerificationEvent.objects.create(
            lookup_kind=VerificationEvent.LookupKind.CODE,
            lookup_hash=VerificationEvent.hash_key("b"),
            outcome=VerificationEvent.Outcome.NOT_FOUND,
        )
        old = VerificationEvent.objects.create(
            lookup_kind=VerificationEvent.LookupKind.NUMBER,
            lookup_hash=VerificationEvent.hash_key("c"),
            certificate=self.pending,
            outcome=VerificationEvent.Outcome.VALID,
        )
        VerificationEvent.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=3))

    def test_dashboard_is_scoped_to_the_university(self):
        self.client.force_authenticate(user=self.uni_user)

        res = self.client.get("/api/certificates/stats/")

        self.assertEqual(res.status_code, 200)
        counts = res.data["certificates"]
        self.assertEqual(counts["total"], 2)
        self.assertEqual(counts[Certificate.Status.PENDING], 1)
        self.assertEqual(counts[Certificate.Status.ACTIVE], 1)
        self.assertEqual(counts[Certificate.Status.REVOKED], 0)
        self.assertEqual(res.data["verifications_24h"]["total"], 1)
        self.assertEqual(res.data["verifications_24h"]["valid"], 1)
        self.assertEqual(len(res.data["trend"]), 7)
        self.assertEqual(res.data["trend"][-1], {"date": timezone.localdate().isoformat(), "created": 2, "active": 1})
        self.assertNotIn("rankings", res.data)

    def test_admin_dashboard_counts_everything_and_ranks_organizations(self):
        self.client.force_authenticate(user=self.admin)

        res = self.client.get("/api/certificates/stats/")

        self.assertEqual(res.data["certificates"]["total"], 3)
        self.assertEqual(res.data["verifications_24h"]["total"], 2)
        self.assertEqual(res.data["verifications_24h"]["not_found"], 1)
        ranking = res.data["rankings"]["universities"]
        self.assertEqual([(row["code"], row["count"]) for row in ranking], [("UNI01", 2), ("UNI02", 1)])
        self.assertEqual(res.data["rankings"]["companies"][0]["count"], 3)

    def test_student_dashboard_only_counts_own_certificates(self):
        other = User.objects.create_user(username="student2", password="p1", role=User.ROLE_STUDENT)
        self.client.force_authenticate(user=other)

        res = self.client.get("/api/certificates/stats/")

        self.assertEqual(res.data["certificates"]["total"], 0)
        self.assertEqual(res.data["verifications_24h"]["total"], 0)

    def test_verification_stats_over_a_window(self):
        self.client.force_authenticate(user=self.uni_user)

        res = self.client.get("/api/certificates/stats/verifications/", {"days": 7})

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["totals"]["total"], 2)
        self.assertEqual(len(res.data["trend"]), 7)
        self.assertEqual(sum(day["total"] for day in res.data["trend"]), 2)

    def test_verification_stats_validates_days_and_role(self):
        self.client.force_authenticate(user=self.uni_user)
        self.assertEqual(self.client.get("/api/certificates/stats/verifications/", {"days": 0}).status_code, 400)
        self.assertEqual(self.client.get("/api/certificates/stats/verifications/", {"days": "x"}).status_code, 400)

        self.client.force_authenticate(user=self.student)
        self.assertEqual(self.client.get("/api/certificates/stats/verifications/").status_code, 403)
