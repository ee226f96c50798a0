from __future__ import annotations

from django.conf import settings
from django.db import models


class StudentWhitelist(models.Model):
    """Pre-authorization of a student number for self-registration.

    An entry is consumed once, when the student registers. Only an administrative
    reset makes it usable again.
    """

    student_number = models.CharField(max_length=50, unique=True, db_index=True)
    name = models.CharField(max_length=200)
    major = models.CharField(max_length=200, blank=True, default="")
    department = models.CharField(max_length=200, blank=True, default="")
    enrollment_year = models.PositiveSmallIntegerField(null=True, blank=True)
    graduation_year = models.PositiveSmallIntegerField(null=True, blank=True)

    university = models.ForeignKey(
        "core.University",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="whitelist_entries",
    )

    is_used = models.BooleanField(default=False, db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)
    used_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="whitelist_entries_used",
    )

    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="whitelist_entries_uploaded",
    )
    batch_id = models.CharField(max_length=36, blank=True, default="", db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["university", "is_used"], name="whitelist_univ_used_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.student_number} - {self.name}"
