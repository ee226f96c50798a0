from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    ROLE_STUDENT = "STUDENT"
    ROLE_COMPANY = "COMPANY"
    ROLE_UNIVERSITY = "UNIVERSITY"
    ROLE_ADMIN = "ADMIN"

    ROLES = (
        (ROLE_STUDENT, "Student"),
        (ROLE_COMPANY, "Company"),
        (ROLE_UNIVERSITY, "University"),
        (ROLE_ADMIN, "Administrator"),
    )

    # Roles whose accounts need an administrator to approve the organization request.
    ORGANIZATION_ROLES = (ROLE_COMPANY, ROLE_UNIVERSITY)

    class ApprovalStatus(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        REJECTED = "REJECTED", "Rejected"

    role = models.CharField(max_length=20, choices=ROLES)
    email = models.EmailField(unique=True, blank=True, null=True, verbose_name="Email")

    university = models.ForeignKey(
        "core.University",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="members",
    )
    company = models.ForeignKey(
        "core.Company",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="members",
    )

    student_number = models.CharField(max_length=50, unique=True, blank=True, null=True)
    wallet_address = models.CharField(max_length=42, blank=True, default="")

    approval_status = models.CharField(
        max_length=10,
        choices=ApprovalStatus.choices,
        default=ApprovalStatus.APPROVED,
        db_index=True,
    )
    apply_org_name = models.CharField(max_length=200, blank=True, default="")
    apply_org_code = models.CharField(max_length=50, blank=True, default="")
    apply_reason = models.TextField(blank=True, default="")
    reject_reason = models.TextField(blank=True, default="")
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="approved_users",
    )

    REQUIRED_FIELDS = ["email", "role"]

    def __str__(self) -> str:
        return f"{self.username} ({self.get_role_display()})"

    def save(self, *args, **kwargs):
        # Unique but optional: store blanks as NULL.
        if not self.email:
            self.email = None
        if not self.student_number:
            self.student_number = None
        super().save(*args, **kwargs)

    @property
    def is_admin_role(self) -> bool:
        return self.role == self.ROLE_ADMIN or self.is_superuser

    def belongs_to_company(self, company_id) -> bool:
        return self.role == self.ROLE_COMPANY and company_id is not None and self.company_id == company_id

    def belongs_to_university(self, university_id) -> bool:
        return (
            self.role == self.ROLE_UNIVERSITY
            and university_id is not None
            and self.university_id == university_id
        )
