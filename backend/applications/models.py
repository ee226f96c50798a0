from __future__ import annotations

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class InternshipApplication(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        SUBMITTED = "SUBMITTED", "Submitted"
        COMPANY_REVIEWING = "COMPANY_REVIEWING", "Company reviewing"
        COMPANY_APPROVED = "COMPANY_APPROVED", "Company approved"
        UNIVERSITY_REVIEWING = "UNIVERSITY_REVIEWING", "University reviewing"
        APPROVED = "APPROVED", "Approved"
        REJECTED = "REJECTED", "Rejected"
        WITHDRAWN = "WITHDRAWN", "Withdrawn"

    TERMINAL_STATUSES = (Status.APPROVED, Status.REJECTED, Status.WITHDRAWN)

    application_no = models.CharField(max_length=20, unique=True, db_index=True)

    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="applications")
    university = models.ForeignKey("core.University", on_delete=models.PROTECT, related_name="applications")
    company = models.ForeignKey("core.Company", on_delete=models.PROTECT, related_name="applications")

    position = models.CharField(max_length=200)
    department = models.CharField(max_length=200, blank=True, default="")
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    description = models.TextField(blank=True, default="")

    status = models.CharField(max_length=24, choices=Status.choices, default=Status.DRAFT, db_index=True)
    submitted_at = models.DateTimeField(null=True, blank=True)

    # Company review
    company_score = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(100)],
    )
    company_evaluation = models.TextField(blank=True, default="")
    company_seal = models.CharField(max_length=64, blank=True, default="")
    company_seal_payload = models.JSONField(default=dict, blank=True)
    company_signed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="company_signed_applications",
    )
    company_signed_at = models.DateTimeField(null=True, blank=True)
    company_reject_reason = models.TextField(blank=True, default="")

    # University review
    university_approval_note = models.TextField(blank=True, default="")
    university_approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="university_reviewed_applications",
    )
    university_approved_at = models.DateTimeField(null=True, blank=True)
    university_reject_reason = models.TextField(blank=True, default="")

    certificate = models.OneToOneField(
        "certificates.Certificate",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="application",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["student", "status"], name="app_student_status_idx"),
            models.Index(fields=["company", "status"], name="app_company_status_idx"),
            models.Index(fields=["university", "status"], name="app_university_status_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.application_no} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class ApplicationTransition(models.Model):
    application = models.ForeignKey(InternshipApplication, on_delete=models.CASCADE, related_name="transitions")

    from_status = models.CharField(max_length=24, choices=InternshipApplication.Status.choices)
    to_status = models.CharField(max_length=24, choices=InternshipApplication.Status.choices)

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="application_transitions",
        null=True,
        blank=True,
    )
    actor_role = models.CharField(max_length=24, blank=True, default="")

    comment = models.TextField(blank=True, default="")
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.application_id}: {self.from_status} -> {self.to_status}"
