from __future__ import annotations

from django.conf import settings
from django.db import models


class AuditLog(models.Model):
	"""Operator audit trail for sensitive certificate and account operations.

	Note: keep payload small; store details in `metadata`.
	"""

	class EventType(models.TextChoices):
		ACCOUNT_APPROVED = "ACCOUNT_APPROVED", "Account approved"
		ACCOUNT_REJECTED = "ACCOUNT_REJECTED", "Account rejected"
		APPLICATION_COMPANY_REVIEWED = "APPLICATION_COMPANY_REVIEWED", "Company review"
		APPLICATION_UNIVERSITY_REVIEWED = "APPLICATION_UNIVERSITY_REVIEWED", "University review"
		CERTIFICATE_ANCHOR_REQUESTED = "CERTIFICATE_ANCHOR_REQUESTED", "Anchoring requested"
		CERTIFICATE_BATCH_ANCHOR_REQUESTED = "CERTIFICATE_BATCH_ANCHOR_REQUESTED", "Batch anchoring requested"
		CERTIFICATE_REVOKED = "CERTIFICATE_REVOKED", "Certificate revoked"
		CERTIFICATE_FORCE_FAILED = "CERTIFICATE_FORCE_FAILED", "Stuck anchoring forced to failed"
		CERTIFICATE_REMARKS_UPDATED = "CERTIFICATE_REMARKS_UPDATED", "Certificate remarks updated"
		WHITELIST_BULK_ADDED = "WHITELIST_BULK_ADDED", "Whitelist bulk import"
		WHITELIST_RESET = "WHITELIST_RESET", "Whitelist entry reset"

	actor = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		on_delete=models.SET_NULL,
		null=True,
		blank=True,
		related_name="audit_logs",
	)

	event_type = models.CharField(max_length=80, choices=EventType.choices)
	object_type = models.CharField(max_length=80, blank=True, default="")
	object_id = models.CharField(max_length=80, blank=True, default="")

	path = models.CharField(max_length=300, blank=True, default="")
	method = models.CharField(max_length=10, blank=True, default="")
	status_code = models.PositiveSmallIntegerField(null=True, blank=True)

	ip_address = models.CharField(max_length=64, blank=True, default="")
	user_agent = models.TextField(blank=True, default="")

	metadata = models.JSONField(default=dict, blank=True)

	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ["-created_at", "-id"]
		indexes = [
			models.Index(fields=["event_type", "created_at"], name="audit_event_created_idx"),
			models.Index(fields=["object_type", "object_id", "created_at"], name="audit_object_created_idx"),
			models.Index(fields=["actor", "created_at"], name="audit_actor_created_idx"),
		]

	def __str__(self) -> str:
		obj = f"{self.object_type}:{self.object_id}" if self.object_type or self.object_id else "-"
		return f"{self.created_at:%Y-%m-%d %H:%M:%S} {self.event_type} {obj}"
