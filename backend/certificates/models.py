from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q


class Certificate(models.Model):
    """An issued internship certificate.

    The descriptive facts are copied from the approved application at issuance
    time, so later edits to the application or to the parties never change what
    was certified. `cert_hash` is derived once, on the first anchoring attempt,
    from the immutable facts only.
    """

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending anchoring"
        PROCESSING = "PROCESSING", "Anchoring"
        ACTIVE = "ACTIVE", "Active"
        FAILED = "FAILED", "Anchoring failed"
        REVOKED = "REVOKED", "Revoked"

    # Only these may enter PROCESSING.
    ANCHORABLE_STATUSES = (Status.PENDING, Status.FAILED)

    cert_number = models.CharField(max_length=32, unique=True, db_index=True)

    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="certificates")
    university = models.ForeignKey("core.University", on_delete=models.PROTECT, related_name="certificates")
    company = models.ForeignKey("core.Company", on_delete=models.PROTECT, related_name="certificates")
    issuer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="issued_certificates",
    )

    # Point-in-time snapshot of the hashed identifiers.
    student_number = models.CharField(max_length=50)
    university_code = models.CharField(max_length=50)
    company_code = models.CharField(max_length=50)

    position = models.CharField(max_length=200)
    department = models.CharField(max_length=200, blank=True, default="")
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    description = models.TextField(blank=True, default="")
    evaluation = models.TextField(blank=True, default="")

    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING, db_index=True)

    verify_code = models.CharField(max_length=32, unique=True, db_index=True)
    verify_url = models.CharField(max_length=500, blank=True, default="")
    qr_code = models.TextField(blank=True, default="")

    cert_hash = models.CharField(max_length=66, unique=True, null=True, blank=True)
    tx_hash = models.CharField(max_length=66, blank=True, default="")
    block_number = models.PositiveBigIntegerField(null=True, blank=True)
    chain_id = models.PositiveIntegerField(null=True, blank=True)
    issued_at = models.DateTimeField(null=True, blank=True)

    anchoring_started_at = models.DateTimeField(null=True, blank=True, db_index=True)
    anchor_attempts = models.PositiveIntegerField(default=0)
    last_anchor_error = models.TextField(blank=True, default="")

    revoked_at = models.DateTimeField(null=True, blank=True)
    revoke_reason = models.TextField(blank=True, default="")
    revoked_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="revoked_certificates",
    )
    revoke_tx_hash = models.CharField(max_length=66, blank=True, default="")
    revoke_ledger_error = models.TextField(blank=True, default="")

    pdf_relpath = models.CharField(max_length=500, blank=True, default="")
    pdf_sha256 = models.CharField(max_length=64, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["university", "company", "status"], name="cert_parties_status_idx"),
            models.Index(fields=["status", "anchoring_started_at"], name="cert_status_started_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(Q(status="PENDING") & Q(cert_hash__isnull=True))
                | (~Q(status="PENDING") & Q(cert_hash__isnull=False)),
                name="cert_hash_iff_anchoring_attempted",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.cert_number} ({self.status})"

    def hash_facts(self) -> dict:
        return {
            "student_id": self.student_number,
            "university_code": self.university_code,
            "company_code": self.company_code,
            "position": self.position,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "cert_number": self.cert_number,
        }

    def compute_hash(self) -> str:
        from .services.hashing import compute_certificate_hash  # noqa: PLC0415

        return compute_certificate_hash(**self.hash_facts())
