"""Drives certificates from PENDING to confirmed on the ledger.

State machine per certificate::

    PENDING -> PROCESSING -> ACTIVE | FAILED
    FAILED  -> PROCESSING            (retry)
    ACTIVE  -> REVOKED               (terminal)

Entering PROCESSING is the only concurrency guard: it is a single conditional
UPDATE (`status IN (PENDING, FAILED)`), so of two concurrent triggers exactly one
wins and submits. Every later write is conditional on the status the attempt
expects to find, which keeps a late ledger confirmation from overwriting a
decision taken by the stuck-anchoring sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q, Value
from django.db.models.functions import Coalesce
from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import NotFound

from core.exceptions import Conflict, LedgerUnavailable
from core.updates import UNSET, apply_present_fields
from ledger.gateway import LedgerError, LedgerErrorKind, LedgerGateway, SubmitReceipt
from notifications.models import Notification
from notifications.services import try_notify_users

from ..models import Certificate
from .hashing import to_unix_seconds


logger = logging.getLogger(__name__)

# Transient failures worth an automatic retry; reverts and duplicates are not.
RETRYABLE_ERROR_KINDS = {LedgerErrorKind.UNAVAILABLE, LedgerErrorKind.NETWORK, LedgerErrorKind.TIMEOUT}


def batch_limit() -> int:
    return int(getattr(settings, "ANCHORING_BATCH_LIMIT", 50))


@dataclass
class AnchorOutcome:
    certificate_id: int
    status: str
    tx_hash: str = ""
    block_number: int | None = None
    error: LedgerError | None = None

    SKIPPED = "SKIPPED"
    # Confirmed by the ledger after the attempt had already been forced to FAILED.
    LATE_CONFIRMATION = "LATE_CONFIRMATION"

    @property
    def retryable(self) -> bool:
        return self.status == Certificate.Status.FAILED and self.error is not None and self.error.kind in RETRYABLE_ERROR_KINDS

    def as_dict(self) -> dict[str, Any]:
        return {
            "certificate_id": self.certificate_id,
            "status": self.status,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "error": str(self.error) if self.error else "",
        }


@dataclass
class BatchAnchorOutcome:
    anchored_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)
    tx_hash: str = ""
    block_number: int | None = None
    error: LedgerError | None = None

    @property
    def retryable(self) -> bool:
        return bool(self.failed_ids) and self.error is not None and self.error.kind in RETRYABLE_ERROR_KINDS

    def as_dict(self) -> dict[str, Any]:
        return {
            "anchored_ids": self.anchored_ids,
            "failed_ids": self.failed_ids,
            "skipped_ids": self.skipped_ids,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "error": str(self.error) if self.error else "",
        }


@dataclass
class CertificateRemarksUpdate:
    description: Any = UNSET
    evaluation: Any = UNSET


def normalize_batch_ids(certificate_ids: Iterable[Any]) -> list[int]:
    try:
        ids = list(dict.fromkeys(int(i) for i in certificate_ids))
    except (TypeError, ValueError) as exc:
        raise serializers.ValidationError({"certificate_ids": "Certificate ids must be integers."}) from exc
    if not ids:
        raise serializers.ValidationError({"certificate_ids": "Select at least one certificate."})
    limit = batch_limit()
    if len(ids) > limit:
        # Reject outright; silently truncating would leave the caller guessing.
        raise serializers.ValidationError(
            {"certificate_ids": f"At most {limit} certificates can be anchored in one batch (got {len(ids)})."}
        )
    return ids



def require_single_party(certificates: list[Certificate]) -> tuple[str, str]:
    """One ledger transaction carries a single university/company code pair.

    Members are compared on the codes captured at issuance, which are the codes
    their hashes were computed from, not on the live organizations.
    """

    parties = {(c.university_code, c.company_code) for c in certificates}
    if len(parties) > 1:
        raise serializers.ValidationError(
            {"certificate_ids": "All certificates in a batch must share the same university and company codes."}
        )
    return next(iter(parties))

class AnchoringCoordinator:
    def __init__(self, gateway: LedgerGateway, *, renderer=None):
        self.gateway = gateway
        self.renderer = renderer

    # Gate

    def claim_for_anchoring(self, certificate_id: int, cert_hash: str) -> bool:
        """PENDING/FAILED -> PROCESSING as one conditional UPDATE.

        The hash is written in the same statement, only if none was stored yet,
        so it is assigned exactly once and always together with the first
        PROCESSING.
        """

        now = timezone.now()
        updated = Certificate.objects.filter(
            pk=certificate_id,
            status__in=Certificate.ANCHORABLE_STATUSES,
        ).update(
            status=Certificate.Status.PROCESSING,
            cert_hash=Coalesce(F("cert_hash"), Value(cert_hash)),
            anchoring_started_at=now,
            anchor_attempts=F("anchor_attempts") + 1,
            last_anchor_error="",
            updated_at=now,
        )
        return updated == 1

    def _mark_active(self, certificate_ids: list[int], receipt: SubmitReceipt) -> list[int]:
        now = timezone.now()
        with transaction.atomic():
            activated = list(
                Certificate.objects.filter(pk__in=certificate_ids, status=Certificate.Status.PROCESSING)
                .order_by("pk")
                .values_list("pk", flat=True)
            )
            Certificate.objects.filter(pk__in=activated, status=Certificate.Status.PROCESSING).update(
                status=Certificate.Status.ACTIVE,
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
                chain_id=self.gateway.chain_id,
                issued_at=now,
                last_anchor_error="",
                updated_at=now,
            )

        late = sorted(set(certificate_ids) - set(activated))
        if late:
            # The sweep already gave up on these attempts. Keep the FAILED decision
            # but leave the confirmation on record for reconciliation.
            Certificate.objects.filter(pk__in=late).update(
                last_anchor_error=(
                    f"Ledger confirmed tx {receipt.tx_hash} in block {receipt.block_number} "
                    "after this attempt was marked failed"
                ),
                updated_at=now,
            )
            logger.warning(
                "anchoring.late_confirmation",
                extra={"certificate_ids": late, "tx_hash": receipt.tx_hash, "block_number": receipt.block_number},
            )
        return activated

    def _mark_failed(self, certificate_ids: list[int], error: LedgerError) -> int:
        now = timezone.now()
        return Certificate.objects.filter(pk__in=certificate_ids, status=Certificate.Status.PROCESSING).update(
            status=Certificate.Status.FAILED,
            last_anchor_error=str(error)[:2000],
            updated_at=now,
        )

    # Side effects after ACTIVE (best-effort)

    def _store_pdf(self, certificate: Certificate) -> None:
        if self.renderer is None:
            return
        from ..pdf import certificate_pdf_relpath, safe_join_private  # noqa: PLC0415

        try:
            rendered = self.renderer.render(certificate)
            relpath = certificate_pdf_relpath(certificate)
            out_path = safe_join_private(Path(settings.PRIVATE_STORAGE_ROOT), relpath)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_bytes(rendered.content)
            Certificate.objects.filter(pk=certificate.pk).update(pdf_relpath=relpath, pdf_sha256=rendered.sha256)
        except Exception:  # noqa: BLE001
            # The certificate is valid on the ledger whether or not its PDF renders.
            logger.exception("certificate_pdf.failed", extra={"certificate_id": certificate.pk})

    def _after_active(self, certificate_ids: list[int]) -> None:
        for certificate in Certificate.objects.select_related("student", "university", "company").filter(
            pk__in=certificate_ids
        ):
            self._store_pdf(certificate)
            try_notify_users(
                recipients=[certificate.student],
                type=Notification.Type.CERTIFICATE_ANCHORED,
                title="Your internship certificate is on the ledger",
                body=f"Certificate {certificate.cert_number} can now be verified publicly.",
                url=f"/certificates/{certificate.pk}",
            )

    def _notify_failed(self, certificate_ids: list[int], error: LedgerError) -> None:
        for certificate in Certificate.objects.select_related("issuer").filter(pk__in=certificate_ids):
            if certificate.issuer_id is None:
                continue
            try_notify_users(
                recipients=[certificate.issuer],
                type=Notification.Type.CERTIFICATE_ANCHOR_FAILED,
                title=f"Anchoring failed for {certificate.cert_number}",
                body=str(error),
                url=f"/certificates/{certificate.pk}",
            )

    # Operations

    def anchor(self, certificate_id: int) -> AnchorOutcome:
        certificate = Certificate.objects.select_related("student").filter(pk=certificate_id).first()
        if certificate is None:
            logger.warning("anchoring.not_found", extra={"certificate_id": certificate_id})
            return AnchorOutcome(certificate_id=certificate_id, status=AnchorOutcome.SKIPPED)

        cert_hash = certificate.cert_hash or certificate.compute_hash()
        if not self.claim_for_anchoring(certificate.pk, cert_hash):
            logger.info("anchoring.skip", extra={"certificate_id": certificate.pk, "status": certificate.status})
            return AnchorOutcome(certificate_id=certificate.pk, status=AnchorOutcome.SKIPPED)

        certificate.refresh_from_db(fields=["status", "cert_hash", "anchor_attempts"])
        logger.info(
            "anchoring.started",
            extra={"certificate_id": certificate.pk, "cert_hash": certificate.cert_hash, "attempt": certificate.anchor_attempts},
        )

        if not self.gateway.is_available():
            result: SubmitReceipt | LedgerError = LedgerError(
                LedgerErrorKind.UNAVAILABLE, "Ledger is not available"
            )
        else:
            result = self.gateway.submit(
                cert_hash=certificate.cert_hash,
                student_address=certificate.student.wallet_address,
                student_id=certificate.student_number,
                university_code=certificate.university_code,
                company_code=certificate.company_code,
                start_unix=to_unix_seconds(certificate.start_date),
                end_unix=to_unix_seconds(certificate.end_date),
            )

        if isinstance(result, LedgerError):
            self._mark_failed([certificate.pk], result)
            logger.warning(
                "anchoring.failed",
                extra={"certificate_id": certificate.pk, "kind": result.kind.value, "reason": result.reason},
            )
            self._notify_failed([certificate.pk], result)
            return AnchorOutcome(certificate_id=certificate.pk, status=Certificate.Status.FAILED, error=result)

        activated = self._mark_active([certificate.pk], result)
        if not activated:
            return AnchorOutcome(
                certificate_id=certificate.pk,
                status=AnchorOutcome.LATE_CONFIRMATION,
                tx_hash=result.tx_hash,
                block_number=result.block_number,
            )

        logger.info(
            "anchoring.succeeded",
            extra={"certificate_id": certificate.pk, "tx_hash": result.tx_hash, "block_number": result.block_number},
        )
        self._after_active(activated)
        return AnchorOutcome(
            certificate_id=certificate.pk,
            status=Certificate.Status.ACTIVE,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
        )

    def anchor_batch(self, certificate_ids: Iterable[Any]) -> BatchAnchorOutcome:
        ids = normalize_batch_ids(certificate_ids)
        certificates = list(Certificate.objects.filter(pk__in=ids).order_by("pk"))
        if len(certificates) != len(ids):
            missing = sorted(set(ids) - {c.pk for c in certificates})
            raise serializers.ValidationError({"certificate_ids": f"Unknown certificates: {missing}"})

        university_code, company_code = require_single_party(certificates)

        outcome = BatchAnchorOutcome()
        claimed: list[int] = []
        for certificate in certificates:
            cert_hash = certificate.cert_hash or certificate.compute_hash()
            if self.claim_for_anchoring(certificate.pk, cert_hash):
                claimed.append(certificate.pk)
            else:
                outcome.skipped_ids.append(certificate.pk)

        if not claimed:
            logger.info("anchoring.batch_skip", extra={"certificate_ids": ids})
            return outcome

        members = list(Certificate.objects.select_related("student").filter(pk__in=claimed).order_by("pk"))
        if not self.gateway.is_available():
            result: SubmitReceipt | LedgerError = LedgerError(LedgerErrorKind.UNAVAILABLE, "Ledger is not available")
        else:
            result = self.gateway.submit_batch(
                cert_hashes=[m.cert_hash for m in members],
                student_addresses=[m.student.wallet_address for m in members],
                student_ids=[m.student_number for m in members],
                university_code=university_code,
                company_code=company_code,
                start_unixes=[to_unix_seconds(m.start_date) for m in members],
                end_unixes=[to_unix_seconds(m.end_date) for m in members],
            )

        if isinstance(result, LedgerError):
            self._mark_failed(claimed, result)
            outcome.failed_ids = claimed
            outcome.error = result
            logger.warning(
                "anchoring.batch_failed",
                extra={"certificate_ids": claimed, "kind": result.kind.value, "reason": result.reason},
            )
            self._notify_failed(claimed, result)
            return outcome

        activated = self._mark_active(claimed, result)
        outcome.anchored_ids = activated
        outcome.tx_hash = result.tx_hash
        outcome.block_number = result.block_number
        logger.info(
            "anchoring.batch_succeeded",
            extra={"certificate_ids": activated, "tx_hash": result.tx_hash, "block_number": result.block_number},
        )
        self._after_active(activated)
        return outcome

    def revoke(self, certificate_id: int, *, reason: str, actor=None) -> Certificate:
        """ACTIVE -> REVOKED.

        The local state changes first and always stands. The ledger revoke is
        attempted afterwards; if it fails the discrepancy is stored on the
        certificate and logged for reconciliation.
        """

        reason = str(reason or "").strip()
        if not reason:
            raise serializers.ValidationError({"reason": "A revocation reason is required."})

        now = timezone.now()
        updated = Certificate.objects.filter(pk=certificate_id, status=Certificate.Status.ACTIVE).update(
            status=Certificate.Status.REVOKED,
            revoked_at=now,
            revoke_reason=reason,
            revoked_by=actor,
            updated_at=now,
        )
        if updated != 1:
            if not Certificate.objects.filter(pk=certificate_id).exists():
                raise NotFound("Certificate not found.")
            raise Conflict("Only active certificates can be revoked.")

        certificate = Certificate.objects.select_related("student").get(pk=certificate_id)
        if self.gateway.is_available():
            result = self.gateway.revoke(cert_hash=certificate.cert_hash, reason=reason)
        else:
            result = LedgerError(LedgerErrorKind.UNAVAILABLE, "Ledger is not available")

        if isinstance(result, LedgerError):
            Certificate.objects.filter(pk=certificate.pk).update(revoke_ledger_error=str(result)[:2000])
            logger.warning(
                "revocation.ledger_discrepancy",
                extra={"certificate_id": certificate.pk, "kind": result.kind.value, "reason": result.reason},
            )
        else:
            Certificate.objects.filter(pk=certificate.pk).update(revoke_tx_hash=result.tx_hash)
            logger.info("revocation.succeeded", extra={"certificate_id": certificate.pk, "tx_hash": result.tx_hash})

        try_notify_users(
            recipients=[certificate.student],
            type=Notification.Type.CERTIFICATE_REVOKED,
            title=f"Certificate {certificate.cert_number} was revoked",
            body=reason,
            url=f"/certificates/{certificate.pk}",
        )
        certificate.refresh_from_db()
        return certificate

    def force_fail(self, certificate_id: int, *, reason: str) -> bool:
        """Manual override: PROCESSING -> FAILED through the same conditional write."""

        now = timezone.now()
        updated = Certificate.objects.filter(pk=certificate_id, status=Certificate.Status.PROCESSING).update(
            status=Certificate.Status.FAILED,
            last_anchor_error=str(reason or "Forced to failed")[:2000],
            updated_at=now,
        )
        if updated:
            logger.warning("anchoring.forced_failed", extra={"certificate_id": certificate_id, "reason": reason})
        return updated == 1

    def sweep_stuck(self, *, older_than: timedelta | None = None, dry_run: bool = False) -> list[int]:
        """Forces PROCESSING certificates older than the window back to FAILED."""

        if older_than is None:
            older_than = timedelta(minutes=int(getattr(settings, "ANCHORING_STUCK_AFTER_MINUTES", 15)))
        cutoff = timezone.now() - older_than

        stuck = list(
            Certificate.objects.filter(status=Certificate.Status.PROCESSING)
            .filter(Q(anchoring_started_at__lt=cutoff) | Q(anchoring_started_at__isnull=True))
            .order_by("pk")
            .values_list("pk", flat=True)
        )
        if dry_run:
            return stuck

        minutes = int(older_than.total_seconds() // 60)
        reason = f"TIMEOUT: no ledger confirmation within {minutes} minutes"
        return [pk for pk in stuck if self.force_fail(pk, reason=reason)]

    # Synchronous request path: validate, then hand off to a worker.

    def request_anchoring(self, certificate_id: int) -> Certificate:
        certificate = Certificate.objects.filter(pk=certificate_id).first()
        if certificate is None:
            raise NotFound("Certificate not found.")
        if certificate.status not in Certificate.ANCHORABLE_STATUSES:
            raise Conflict(f"A {certificate.status} certificate cannot be anchored.")
        if not self.gateway.is_available():
            raise LedgerUnavailable()

        from ..tasks import anchor_certificate  # noqa: PLC0415

        transaction.on_commit(lambda: anchor_certificate.delay(certificate.pk))
        logger.info("anchoring.enqueued", extra={"certificate_id": certificate.pk})
        return certificate

    def request_batch_anchoring(self, certificate_ids: Iterable[Any]) -> list[int]:
        ids = normalize_batch_ids(certificate_ids)
        certificates = list(Certificate.objects.filter(pk__in=ids))
        if len(certificates) != len(ids):
            missing = sorted(set(ids) - {c.pk for c in certificates})
            raise NotFound(f"Unknown certificates: {missing}")
        require_single_party(certificates)
        not_anchorable = sorted(c.pk for c in certificates if c.status not in Certificate.ANCHORABLE_STATUSES)
        if not_anchorable:
            raise Conflict(f"Only pending or failed certificates can be anchored: {not_anchorable}")
        if not self.gateway.is_available():
            raise LedgerUnavailable()

        from ..tasks import anchor_certificate_batch  # noqa: PLC0415

        transaction.on_commit(lambda: anchor_certificate_batch.delay(ids))
        logger.info("anchoring.batch_enqueued", extra={"certificate_ids": ids})
        return ids

    def update_remarks(self, certificate_id: int, changes: CertificateRemarksUpdate) -> Certificate:
        with transaction.atomic():
            certificate = Certificate.objects.select_for_update().filter(pk=certificate_id).first()
            if certificate is None:
                raise NotFound("Certificate not found.")
            if certificate.status != Certificate.Status.PENDING:
                raise Conflict("Remarks can only be edited before the certificate is anchored.")
            changed = apply_present_fields(certificate, changes)
            if changed:
                certificate.save(update_fields=[*changed, "updated_at"])
        return certificate
