from django.conf import settings
from django.db import models


class Notification(models.Model):
    class Type(models.TextChoices):
        ACCOUNT_REQUEST = "ACCOUNT_REQUEST", "Account request"
        ACCOUNT_REVIEWED = "ACCOUNT_REVIEWED", "Account reviewed"
        APPLICATION_SUBMITTED = "APPLICATION_SUBMITTED", "Application submitted"
        APPLICATION_COMPANY_APPROVED = "APPLICATION_COMPANY_APPROVED", "Approved by company"
        APPLICATION_REJECTED = "APPLICATION_REJECTED", "Application rejected"
        CERTIFICATE_ISSUED = "CERTIFICATE_ISSUED", "Certificate issued"
        CERTIFICATE_ANCHORED = "CERTIFICATE_ANCHORED", "Certificate anchored"
        CERTIFICATE_ANCHOR_FAILED = "CERTIFICATE_ANCHOR_FAILED", "Anchoring failed"
        CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED", "Certificate revoked"

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )

    type = models.CharField(max_length=50, choices=Type.choices, blank=True, default="")
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default="")
    url = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    read_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["recipient", "read_at", "created_at"], name="notif_recipient_read_idx"),
        ]

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def __str__(self) -> str:
        return f"{self.recipient_id}: {self.title}"
