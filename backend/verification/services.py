"""Public certificate verification.

A verdict merges the local certificate row with a live ledger query. The two
stores can disagree (a confirmation that has not been written back yet, a
ledger that is down); the verdict reports both sides and never lets a locally
revoked certificate come back as valid.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

from django.conf import settings
from django.db.utils import OperationalError, ProgrammingError

from certificates.models import Certificate
from ledger.gateway import LedgerError, LedgerGateway, LedgerRecord

from .models import VerificationEvent


logger = logging.getLogger(__name__)

LOOKUP_CODE = VerificationEvent.LookupKind.CODE
LOOKUP_NUMBER = VerificationEvent.LookupKind.NUMBER
LOOKUP_HASH = VerificationEvent.LookupKind.HASH

_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")

# Local states that count as valid on their own (issued, anchored or about to be).
LOCALLY_VALID_STATUSES = (Certificate.Status.ACTIVE, Certificate.Status.PENDING)


def build_public_absolute_url(path: str) -> str:
    """Builds a public absolute URL using PUBLIC_SITE_URL when available.

    This is safe for Celery tasks where no request object exists.
    If PUBLIC_SITE_URL is not configured, returns the path as-is.
    """

    base = str(getattr(settings, "PUBLIC_SITE_URL", "") or "").strip()
    if not base:
        return path
    return urljoin(base.rstrip("/") + "/", path.lstrip("/"))


def build_public_verify_url(verify_code: str) -> str:
    return build_public_absolute_url(f"/verify/{verify_code}")


def normalize_hash(value: str) -> str:
    value = str(value or "").strip().lower()
    if value and not value.startswith("0x"):
        value = "0x" + value
    return value


@dataclass
class LedgerCheck:
    checked: bool
    exists: bool = False
    valid: bool = False
    record: LedgerRecord | None = None
    error: str = ""

    def as_dict(self) -> dict[str, Any]:
        record = self.record
        return {
            "checked": self.checked,
            "exists": self.exists,
            "valid": self.valid,
            "error": self.error,
            "record": (
                {
                    "cert_hash": record.cert_hash,
                    "issuer": record.issuer,
                    "student_id": record.student_id,
                    "university_code": record.university_code,
                    "company_code": record.company_code,
                    "issue_date": record.issue_date,
                    "start_date": record.start_date,
                    "end_date": record.end_date,
                    "status": record.status,
                }
                if record
                else None
            ),
        }


@dataclass
class VerificationVerdict:
    found: bool
    valid: bool
    source: str
    certificate: Certificate | None = None
    ledger: LedgerCheck | None = None
    message: str = ""

    @property
    def status(self) -> str:
        return self.certificate.status if self.certificate else ""

    @property
    def outcome(self) -> str:
        if not self.found:
            return VerificationEvent.Outcome.NOT_FOUND
        if self.certificate is not None and self.certificate.status == Certificate.Status.REVOKED:
            return VerificationEvent.Outcome.REVOKED
        return VerificationEvent.Outcome.VALID if self.valid else VerificationEvent.Outcome.INVALID

    def as_dict(self) -> dict[str, Any]:
        cert = self.certificate
        data: dict[str, Any] = {
            "found": self.found,
            "valid": self.valid,
            "source": self.source,
            "status": self.status,
            "message": self.message,
            "certificate": None,
            "blockchain": None,
            "revocation": None,
        }
        if cert is not None:
            data["certificate"] = {
                "cert_number": cert.cert_number,
                "student_name": cert.student.get_full_name() or cert.student.username,
                "student_number": cert.student_number,
                "university": {"code": cert.university.code, "name": cert.university.name},
                "company": {"code": cert.company.code, "name": cert.company.name},
                "position": cert.position,
                "department": cert.department,
                "start_date": cert.start_date.isoformat(),
                "end_date": cert.end_date.isoformat(),
                "description": cert.description,
                "evaluation": cert.evaluation,
                "issued_at": cert.issued_at.isoformat() if cert.issued_at else None,
            }
            if cert.cert_hash:
                data["blockchain"] = {
                    "cert_hash": cert.cert_hash,
                    "tx_hash": cert.tx_hash,
                    "block_number": cert.block_number,
                    "chain_id": cert.chain_id,
                }
            if cert.status == Certificate.Status.REVOKED:
                data["revocation"] = {
                    "revoked_at": cert.revoked_at.isoformat() if cert.revoked_at else None,
                    "reason": cert.revoke_reason,
                }
        if self.ledger is not None:
            data["ledger"] = self.ledger.as_dict()
        return data


def _find_local(lookup_kind: str, key: str) -> Certificate | None:
    qs = Certificate.objects.select_related("student", "university", "company")
    if lookup_kind == LOOKUP_CODE:
        return qs.filter(verify_code__iexact=key).first()
    if lookup_kind == LOOKUP_NUMBER:
        return qs.filter(cert_number__iexact=key).first()
    if lookup_kind == LOOKUP_HASH:
        return qs.filter(cert_hash=key).first()
    raise ValueError(f"Unknown lookup kind: {lookup_kind}")


def _query_ledger(gateway: LedgerGateway | None, cert_hash: str) -> LedgerCheck:
    if gateway is None or not gateway.is_available():
        return LedgerCheck(checked=False, error="Ledger is not available")

    result = gateway.query(cert_hash)
    if isinstance(result, LedgerError):
        logger.warning("verification.ledger_query_failed", extra={"kind": result.kind.value, "reason": result.reason})
        return LedgerCheck(checked=False, error=str(result))
    return LedgerCheck(checked=True, exists=result.exists, valid=result.valid, record=result.record)


def _get_client_ip(request) -> str:
    xff = request.META.get("HTTP_X_FORWARDED_FOR")
    if xff:
        return xff.split(",")[0].strip()
    return str(request.META.get("REMOTE_ADDR") or "").strip()


def _try_log_verification_event(*, request, lookup_kind: str, key: str, verdict: VerificationVerdict) -> None:
    try:
        ledger = verdict.ledger
        VerificationEvent.objects.create(
            lookup_kind=lookup_kind,
            lookup_hash=VerificationEvent.hash_key(key),
            lookup_prefix=key[:12],
            certificate=verdict.certificate,
            certificate_status=verdict.status,
            outcome=verdict.outcome,
            ledger_checked=bool(ledger and ledger.checked),
            ledger_valid=ledger.valid if ledger and ledger.checked else None,
            ip_address=_get_client_ip(request) if request is not None else "",
            user_agent=str(request.META.get("HTTP_USER_AGENT") or "")[:255] if request is not None else "",
            path=str(getattr(request, "path", "") or "")[:255],
        )
    except (OperationalError, ProgrammingError):
        # DB not migrated yet (deploy); do not break verification.
        logger.warning("verification.event_not_recorded", exc_info=True)
    except Exception:  # noqa: BLE001
        logger.exception("verification.event_failed")


def verify_certificate(
    *,
    lookup_kind: str,
    key: str,
    gateway: LedgerGateway | None,
    request=None,
) -> VerificationVerdict:
    key = str(key or "").strip()
    if lookup_kind == LOOKUP_HASH:
        key = normalize_hash(key)

    verdict = _resolve(lookup_kind=lookup_kind, key=key, gateway=gateway)
    _try_log_verification_event(request=request, lookup_kind=lookup_kind, key=key, verdict=verdict)
    logger.info(
        "verification.completed",
        extra={"lookup_kind": lookup_kind, "outcome": verdict.outcome, "source": verdict.source},
    )
    return verdict


def _resolve(*, lookup_kind: str, key: str, gateway: LedgerGateway | None) -> VerificationVerdict:
    if not key:
        return VerificationVerdict(found=False, valid=False, source="none", message="Certificate not found")

    certificate = _find_local(lookup_kind, key)

    if certificate is None:
        if lookup_kind == LOOKUP_HASH and _HASH_RE.match(key):
            ledger = _query_ledger(gateway, key)
            if ledger.checked and ledger.exists:
                return VerificationVerdict(
                    found=True,
                    valid=ledger.valid,
                    source="ledger",
                    ledger=ledger,
                    message="Found on the ledger only",
                )
            return VerificationVerdict(found=False, valid=False, source="none", ledger=ledger, message="Certificate not found")
        return VerificationVerdict(found=False, valid=False, source="none", message="Certificate not found")

    if certificate.status == Certificate.Status.REVOKED:
        return VerificationVerdict(
            found=True,
            valid=False,
            source="local",
            certificate=certificate,
            message="This certificate has been revoked",
        )

    ledger = None
    if certificate.cert_hash:
        ledger = _query_ledger(gateway, certificate.cert_hash)

    locally_valid = certificate.status in LOCALLY_VALID_STATUSES
    ledger_valid = bool(ledger and ledger.checked and ledger.valid)
    valid = locally_valid or ledger_valid
    return VerificationVerdict(
        found=True,
        valid=valid,
        source="local+ledger" if ledger and ledger.checked else "local",
        certificate=certificate,
        ledger=ledger,
        message="Certificate is valid" if valid else "Certificate is not valid",
    )
