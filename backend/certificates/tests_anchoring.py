from __future__ import annotations

import hashlib
import tempfile
from datetime import datetime, timedelta, timezone as dt_timezone
from pathlib import Path
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import NotFound

from certificates.models import Certificate
from certificates.pdf import RenderedPdf
from certificates.services.anchoring import AnchorOutcome, AnchoringCoordinator, CertificateRemarksUpdate
from core.exceptions import Conflict, LedgerUnavailable
from core.models import Company, University
from ledger.gateway import LedgerErrorKind, SubmitReceipt
from ledger.memory import InMemoryLedgerGateway
from notifications.models import Notification
from users.models import User

UTC = dt_timezone.utc


class _FakeRenderer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.rendered: list[int] = []

    def render(self, certificate):
        if self.fail:
            raise RuntimeError("renderer exploded")
        self.rendered.append(certificate.pk)
        content = f"%PDF-1.4 {certificate.cert_number}".encode("utf-8")
        return RenderedPdf(content=content, sha256=hashlib.sha256(content).hexdigest())


class AnchoringTestMixin:
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
        self.issuer = User.objects.create_user(
            username="uni1",
            password="p1",
            role=User.ROLE_UNIVERSITY,
            university=self.university,
        )
        self.gateway = InMemoryLedgerGateway()
        self.coordinator = AnchoringCoordinator(self.gateway)
        self._seq = 0

    def make_certificate(self, **overrides) -> Certificate:
        self._seq += 1
        data = {
            "cert_number": f"CERT202406T{self._seq:05d}",
            "student": self.student,
            "university": self.university,
            "company": self.company,
            "issuer": self.issuer,
            "student_number": "S001",
            "university_code": self.university.code,
            "company_code": self.company.code,
            "position": "Intern",
            "start_date": datetime(2024, 6, 1, tzinfo=UTC),
            "end_date": datetime(2024, 8, 1, tzinfo=UTC),
            "verify_code": f"{self._seq:016X}",
        }
        data.update(overrides)
        return Certificate.objects.create(**data)


class AnchorTests(AnchoringTestMixin, TestCase):
    def test_pending_certificate_becomes_active_with_ledger_receipt(self):
        certificate = self.make_certificate(cert_number="CERT202406XYZ")
        self.gateway.respond_next("submit", SubmitReceipt(tx_hash="0xabc", block_number=1000))

        outcome = self.coordinator.anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(outcome.status, Certificate.Status.ACTIVE)
        self.assertEqual(certificate.status, Certificate.Status.ACTIVE)
        self.assertEqual(certificate.tx_hash, "0xabc")
        self.assertEqual(certificate.block_number, 1000)
        self.assertEqual(certificate.chain_id, 31337)
        self.assertIsNotNone(certificate.issued_at)
        self.assertEqual(certificate.cert_hash, certificate.compute_hash())
        self.assertEqual(certificate.anchor_attempts, 1)
        self.assertIn(certificate.cert_hash, self.gateway.records)

    def test_submit_receives_unix_seconds(self):
        certificate = self.make_certificate()
        self.coordinator.anchor(certificate.pk)

        record = self.gateway.records[Certificate.objects.get(pk=certificate.pk).cert_hash]
        self.assertEqual(record.start_date, 1717200000)
        self.assertEqual(record.end_date, 1722470400)
        self.assertEqual(record.student_id, "S001")

    def test_claim_is_won_only_once(self):
        certificate = self.make_certificate()
        cert_hash = certificate.compute_hash()

        self.assertTrue(self.coordinator.claim_for_anchoring(certificate.pk, cert_hash))
        self.assertFalse(self.coordinator.claim_for_anchoring(certificate.pk, cert_hash))

        certificate.refresh_from_db()
        self.assertEqual(certificate.status, Certificate.Status.PROCESSING)
        self.assertEqual(certificate.anchor_attempts, 1)
        self.assertIsNotNone(certificate.anchoring_started_at)

    def test_second_trigger_while_processing_does_not_submit(self):
        certificate = self.make_certificate()
        self.assertTrue(self.coordinator.claim_for_anchoring(certificate.pk, certificate.compute_hash()))

        # A second trigger arrives while the first attempt is in flight.
        outcome = self.coordinator.anchor(certificate.pk)

        self.assertEqual(outcome.status, AnchorOutcome.SKIPPED)
        self.assertEqual(self.gateway.calls_to("submit"), [])

    def test_two_triggers_result_in_one_submit(self):
        certificate = self.make_certificate()

        first = self.coordinator.anchor(certificate.pk)
        second = AnchoringCoordinator(self.gateway).anchor(certificate.pk)

        self.assertEqual(first.status, Certificate.Status.ACTIVE)
        self.assertEqual(second.status, AnchorOutcome.SKIPPED)
        self.assertEqual(len(self.gateway.calls_to("submit")), 1)

    def test_ledger_failure_marks_failed_and_keeps_hash(self):
        certificate = self.make_certificate()
        self.gateway.fail_next("submit", LedgerErrorKind.REVERTED, "Not authorized")

        outcome = self.coordinator.anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(outcome.status, Certificate.Status.FAILED)
        self.assertFalse(outcome.retryable)
        self.assertEqual(certificate.status, Certificate.Status.FAILED)
        self.assertIn("Not authorized", certificate.last_anchor_error)
        self.assertEqual(certificate.cert_hash, certificate.compute_hash())
        self.assertTrue(
            Notification.objects.filter(recipient=self.issuer, type=Notification.Type.CERTIFICATE_ANCHOR_FAILED).exists()
        )

    def test_failed_certificate_can_be_retried_with_the_same_hash(self):
        certificate = self.make_certificate()
        self.gateway.fail_next("submit", LedgerErrorKind.NETWORK, "connection reset")
        self.coordinator.anchor(certificate.pk)
        first_hash = Certificate.objects.get(pk=certificate.pk).cert_hash

        outcome = self.coordinator.anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(outcome.status, Certificate.Status.ACTIVE)
        self.assertEqual(certificate.cert_hash, first_hash)
        self.assertEqual(certificate.anchor_attempts, 2)
        self.assertEqual(certificate.last_anchor_error, "")

    def test_unavailable_ledger_marks_failed_without_submitting(self):
        certificate = self.make_certificate()
        self.gateway.available = False

        outcome = self.coordinator.anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(certificate.status, Certificate.Status.FAILED)
        self.assertTrue(outcome.retryable)
        self.assertEqual(outcome.error.kind, LedgerErrorKind.UNAVAILABLE)
        self.assertEqual(self.gateway.calls_to("submit"), [])

    def test_duplicate_hash_on_ledger_is_a_ledger_failure(self):
        certificate = self.make_certificate()
        cert_hash = certificate.compute_hash()
        self.gateway.submit(
            cert_hash=cert_hash,
            student_address="",
            student_id="S001",
            university_code="UNI01",
            company_code="COMP01",
            start_unix=1717200000,
            end_unix=1722470400,
        )

        outcome = self.coordinator.anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(certificate.status, Certificate.Status.FAILED)
        self.assertEqual(outcome.error.kind, LedgerErrorKind.DUPLICATE)
        self.assertIn("already exists", certificate.last_anchor_error)

    def test_active_and_revoked_are_never_reanchored(self):
        for status in (Certificate.Status.ACTIVE, Certificate.Status.REVOKED):
            with self.subTest(status=status):
                certificate = self.make_certificate()
                Certificate.objects.filter(pk=certificate.pk).update(status=status, cert_hash=certificate.compute_hash())
                outcome = self.coordinator.anchor(certificate.pk)
                self.assertEqual(outcome.status, AnchorOutcome.SKIPPED)
        self.assertEqual(self.gateway.calls_to("submit"), [])

    def test_unknown_certificate_is_skipped(self):
        outcome = self.coordinator.anchor(999999)
        self.assertEqual(outcome.status, AnchorOutcome.SKIPPED)

    def test_owner_is_notified_and_pdf_stored(self):
        certificate = self.make_certificate()
        renderer = _FakeRenderer()

        with tempfile.TemporaryDirectory() as tmp:
            with override_settings(PRIVATE_STORAGE_ROOT=Path(tmp), PRIVATE_CERTIFICATES_DIR="certificates"):
                AnchoringCoordinator(self.gateway, renderer=renderer).anchor(certificate.pk)

                certificate.refresh_from_db()
                self.assertEqual(certificate.pdf_relpath, f"certificates/{certificate.cert_number}.pdf")
                stored = Path(tmp) / certificate.pdf_relpath
                self.assertTrue(stored.exists())
                self.assertEqual(hashlib.sha256(stored.read_bytes()).hexdigest(), certificate.pdf_sha256)

        self.assertTrue(
            Notification.objects.filter(recipient=self.student, type=Notification.Type.CERTIFICATE_ANCHORED).exists()
        )

    def test_pdf_failure_does_not_affect_status(self):
        certificate = self.make_certificate()

        with tempfile.TemporaryDirectory() as tmp:
            with override_settings(PRIVATE_STORAGE_ROOT=Path(tmp)):
                outcome = AnchoringCoordinator(self.gateway, renderer=_FakeRenderer(fail=True)).anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(outcome.status, Certificate.Status.ACTIVE)
        self.assertEqual(certificate.status, Certificate.Status.ACTIVE)
        self.assertEqual(certificate.pdf_relpath, "")


class _SweepingGateway(InMemoryLedgerGateway):
    """Confirms the transaction only after the stuck sweep has already given up."""

    def submit(self, **kwargs):
        receipt = super().submit(**kwargs)
        AnchoringCoordinator(None).sweep_stuck(older_than=timedelta(0))
        return receipt


class StuckAnchoringTests(AnchoringTestMixin, TestCase):
    def _processing(self, started_minutes_ago: int) -> Certificate:
        certificate = self.make_certificate()
        Certificate.objects.filter(pk=certificate.pk).update(
            status=Certificate.Status.PROCESSING,
            cert_hash=certificate.compute_hash(),
            anchoring_started_at=timezone.now() - timedelta(minutes=started_minutes_ago),
            anchor_attempts=1,
        )
        return certificate

    def test_sweep_fails_only_old_processing_rows(self):
        stuck = self._processing(started_minutes_ago=20)
        recent = self._processing(started_minutes_ago=1)
        pending = self.make_certificate()

        failed = self.coordinator.sweep_stuck(older_than=timedelta(minutes=15))

        self.assertEqual(failed, [stuck.pk])
        stuck.refresh_from_db()
        recent.refresh_from_db()
        pending.refresh_from_db()
        self.assertEqual(stuck.status, Certificate.Status.FAILED)
        self.assertIn("TIMEOUT", stuck.last_anchor_error)
        self.assertEqual(recent.status, Certificate.Status.PROCESSING)
        self.assertEqual(pending.status, Certificate.Status.PENDING)

    def test_sweep_dry_run_changes_nothing(self):
        stuck = self._processing(started_minutes_ago=20)

        ids = self.coordinator.sweep_stuck(older_than=timedelta(minutes=15), dry_run=True)

        self.assertEqual(ids, [stuck.pk])
        stuck.refresh_from_db()
        self.assertEqual(stuck.status, Certificate.Status.PROCESSING)

    @override_settings(ANCHORING_STUCK_AFTER_MINUTES=30)
    def test_sweep_window_defaults_to_setting(self):
        self._processing(started_minutes_ago=20)
        self.assertEqual(self.coordinator.sweep_stuck(), [])

    def test_swept_certificate_can_be_retried(self):
        stuck = self._processing(started_minutes_ago=20)
        self.coordinator.sweep_stuck(older_than=timedelta(minutes=15))

        outcome = self.coordinator.anchor(stuck.pk)

        stuck.refresh_from_db()
        self.assertEqual(outcome.status, Certificate.Status.ACTIVE)
        self.assertEqual(stuck.anchor_attempts, 2)

    def test_late_confirmation_does_not_override_the_sweep(self):
        certificate = self.make_certificate()
        gateway = _SweepingGateway()

        outcome = AnchoringCoordinator(gateway).anchor(certificate.pk)

        certificate.refresh_from_db()
        self.assertEqual(outcome.status, AnchorOutcome.LATE_CONFIRMATION)
        self.assertEqual(certificate.status, Certificate.Status.FAILED)
        self.assertEqual(certificate.tx_hash, "")
        self.assertIn(outcome.tx_hash, certificate.last_anchor_error)

    def test_force_fail_only_applies_to_processing(self):
        processing = self._processing(started_minutes_ago=1)
        pending = self.make_certificate()

        self.assertTrue(self.coordinator.force_fail(processing.pk, reason="operator"))
        self.assertFalse(self.coordinator.force_fail(pending.pk, reason="operator"))

        processing.refresh_from_db()
        self.assertEqual(processing.status, Certificate.Status.FAILED)
        self.assertEqual(processing.last_anchor_error, "operator")


class BatchAnchorTests(AnchoringTestMixin, TestCase):
    def test_batch_success_shares_one_transaction(self):
        certificates = [self.make_certificate() for _ in range(3)]

        outcome = self.coordinator.anchor_batch([c.pk for c in certificates])

        self.assertEqual(sorted(outcome.anchored_ids), sorted(c.pk for c in certificates))
        self.assertEqual(len(self.gateway.calls_to("submit_batch")), 1)
        rows = Certificate.objects.filter(pk__in=outcome.anchored_ids)
        self.assertEqual({r.status for r in rows}, {Certificate.Status.ACTIVE})
        self.assertEqual({r.tx_hash for r in rows}, {outcome.tx_hash})
        self.assertEqual({r.block_number for r in rows}, {outcome.block_number})

    def test_batch_failure_is_uniform(self):
        certificates = [self.make_certificate() for _ in range(4)]
        self.gateway.fail_next("submit_batch", LedgerErrorKind.REVERTED, "out of gas")

        outcome = self.coordinator.anchor_batch([c.pk for c in certificates])

        self.assertEqual(outcome.anchored_ids, [])
        self.assertEqual(sorted(outcome.failed_ids), sorted(c.pk for c in certificates))
        statuses = set(Certificate.objects.filter(pk__in=outcome.failed_ids).values_list("status", flat=True))
        self.assertEqual(statuses, {Certificate.Status.FAILED})
        self.assertFalse(Certificate.objects.filter(status=Certificate.Status.ACTIVE).exists())

    def test_one_duplicate_fails_the_whole_batch(self):
        certificates = [self.make_certificate() for _ in range(2)]
        self.coordinator.anchor(certificates[0].pk)
        Certificate.objects.filter(pk=certificates[0].pk).update(status=Certificate.Status.FAILED)

        outcome = self.coordinator.anchor_batch([c.pk for c in certificates])

        self.assertEqual(outcome.error.kind, LedgerErrorKind.DUPLICATE)
        self.assertEqual(sorted(outcome.failed_ids), sorted(c.pk for c in certificates))

    def test_ineligible_members_are_skipped(self):
        eligible = self.make_certificate()
        active = self.make_certificate()
        self.coordinator.anchor(active.pk)

        outcome = self.coordinator.anchor_batch([eligible.pk, active.pk])

        self.assertEqual(outcome.anchored_ids, [eligible.pk])
        self.assertEqual(outcome.skipped_ids, [active.pk])

    def test_batch_over_fifty_is_rejected(self):
        with self.assertRaises(serializers.ValidationError):
            self.coordinator.anchor_batch(list(range(1, 52)))
        self.assertEqual(self.gateway.calls_to("submit_batch"), [])

    def test_empty_batch_is_rejected(self):
        with self.assertRaises(serializers.ValidationError):
            self.coordinator.anchor_batch([])

    def test_batch_must_share_parties(self):
        other_company = Company.objects.create(code="COMP02", name="Other")
        a = self.make_certificate()
        b = self.make_certificate(company=other_company, company_code="COMP02")

        with self.assertRaises(serializers.ValidationError):
            self.coordinator.anchor_batch([a.pk, b.pk])
        self.assertEqual(Certificate.objects.filter(status=Certificate.Status.PENDING).count(), 2)

    def test_batch_groups_on_issued_codes(self):
        # Same university row, but it was renamed between the two issuances.
        first = self.make_certificate()
        renamed = self.make_certificate(university_code="UNI01-RENAMED")

        with self.assertRaises(serializers.ValidationError):
            self.coordinator.anchor_batch([first.pk, renamed.pk])
        self.assertEqual(self.gateway.calls_to("submit_batch"), [])

    def test_batch_submits_the_codes_each_hash_was_built_from(self):
        self.university.code = "UNI01-NEW"
        self.university.save(update_fields=["code"])
        certificates = [self.make_certificate(university_code="UNI01") for _ in range(2)]

        outcome = self.coordinator.anchor_batch([c.pk for c in certificates])

        self.assertEqual(outcome.anchored_ids, [c.pk for c in certificates])
        for certificate in Certificate.objects.filter(pk__in=outcome.anchored_ids):
            record = self.gateway.records[certificate.cert_hash]
            self.assertEqual(record.university_code, "UNI01")
            self.assertEqual(certificate.compute_hash(), certificate.cert_hash)


class RevokeTests(AnchoringTestMixin, TestCase):
    def test_revoke_active_certificate(self):
        certificate = self.make_certificate()
        self.coordinator.anchor(certificate.pk)

        revoked = self.coordinator.revoke(certificate.pk, reason="misconduct", actor=self.issuer)

        self.assertEqual(revoked.status, Certificate.Status.REVOKED)
        self.assertIsNotNone(revoked.revoked_at)
        self.assertEqual(revoked.revoke_reason, "misconduct")
        self.assertEqual(revoked.revoked_by, self.issuer)
        self.assertTrue(revoked.revoke_tx_hash)
        self.assertTrue(self.gateway.records[revoked.cert_hash].is_revoked)

    def test_ledger_revoke_failure_keeps_local_revocation(self):
        certificate = self.make_certificate()
        self.coordinator.anchor(certificate.pk)
        self.gateway.fail_next("revoke", LedgerErrorKind.TIMEOUT, "no receipt")

        revoked = self.coordinator.revoke(certificate.pk, reason="misconduct", actor=self.issuer)

        self.assertEqual(revoked.status, Certificate.Status.REVOKED)
        self.assertIn("TIMEOUT", revoked.revoke_ledger_error)
        self.assertEqual(revoked.revoke_tx_hash, "")

    def test_only_active_can_be_revoked(self):
        certificate = self.make_certificate()
        with self.assertRaises(Conflict):
            self.coordinator.revoke(certificate.pk, reason="misconduct", actor=self.issuer)
        certificate.refresh_from_db()
        self.assertEqual(certificate.status, Certificate.Status.PENDING)

    def test_revoke_requires_reason(self):
        certificate = self.make_certificate()
        self.coordinator.anchor(certificate.pk)
        with self.assertRaises(serializers.ValidationError):
            self.coordinator.revoke(certificate.pk, reason="  ", actor=self.issuer)

    def test_revoke_unknown_certificate(self):
        with self.assertRaises(NotFound):
            self.coordinator.revoke(424242, reason="misconduct", actor=self.issuer)


class RequestAnchoringTests(AnchoringTestMixin, TestCase):
    def test_request_enqueues_on_commit(self):
        certificate = self.make_certificate()
        with patch("certificates.tasks.anchor_certificate.delay") as delay:
            with self.captureOnCommitCallbacks(execute=True):
                self.coordinator.request_anchoring(certificate.pk)

        delay.assert_called_once_with(certificate.pk)
        certificate.refresh_from_db()
        self.assertEqual(certificate.status, Certificate.Status.PENDING)

    def test_request_rejects_active(self):
        certificate = self.make_certificate()
        self.coordinator.anchor(certificate.pk)
        with self.assertRaises(Conflict):
            self.coordinator.request_anchoring(certificate.pk)

    def test_request_requires_available_ledger(self):
        certificate = self.make_certificate()
        self.gateway.available = False
        with self.assertRaises(LedgerUnavailable):
            self.coordinator.request_anchoring(certificate.pk)

    def test_batch_request_rejects_non_anchorable_members(self):
        pending = self.make_certificate()
        active = self.make_certificate()
        self.coordinator.anchor(active.pk)
        with self.assertRaises(Conflict):
            self.coordinator.request_batch_anchoring([pending.pk, active.pk])


class RemarksTests(AnchoringTestMixin, TestCase):
    def test_remarks_editable_while_pending(self):
        certificate = self.make_certificate(description="old")

        updated = self.coordinator.update_remarks(certificate.pk, CertificateRemarksUpdate(evaluation="Great work"))

        self.assertEqual(updated.evaluation, "Great work")
        self.assertEqual(updated.description, "old")

    def test_remarks_locked_after_anchoring(self):
        certificate = self.make_certificate()
        self.coordinator.anchor(certificate.pk)
        with self.assertRaises(Conflict):
            self.coordinator.update_remarks(certificate.pk, CertificateRemarksUpdate(description="changed"))
