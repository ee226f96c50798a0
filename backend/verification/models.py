from __future__ import annotations

import hashlib

from django.db import models


class VerificationEvent(models.Model):
    """One public verification attempt. The lookup key itself is never stored."""

    class LookupKind(models.TextChoices):
        CODE = "CODE", "Verify code"
        NUMBER = "NUMBER", "Certificate number"
        HASH = "HASH", "Certificate hash"

    class Outcome(models.TextChoices):
        NOT_FOUND = "NOT_FOUND", "Not found"
        VALID = "VALID", "Valid"
        REVOKED = "REVOKED", "Revoked"
        INVALID = "INVALID", "Invalid"

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    lookup_kind = models.CharField(max_length=8, choices=LookupKind.choices)
    lookup_hash = models.CharField(max_length=64, db_index=True)
    lookup_prefix = models.CharField(max_length=16, blank=True, default="")

    certificate = models.ForeignKey(
        "certificates.Certificate",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="verification_events",
    )
    certificate_status = models.CharField(max_length=12, blank=True, default="", db_index=True)
    outcome = models.CharField(max_length=12, choices=Outcome.choices, db_index=True)

    ledger_checked = models.BooleanField(default=False)
    ledger_valid = models.BooleanField(null=True, blank=True)

    ip_address = models.CharField(max_length=64, blank=True, default="", db_index=True)
    user_agent = models.CharField(max_length=255, blank=True, default="")
    path = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.created_at:%Y-%m-%d %H:%M:%S} {self.lookup_kind} {self.outcome}"

    @staticmethod
    def hash_key(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()
