import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

	initial = True

	dependencies = [
		migrations.swappable_dependency(settings.AUTH_USER_MODEL),
	]

	operations = [
		migrations.CreateModel(
			name="AuditLog",
			fields=[
				("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
				(
					"event_type",
					models.CharField(
						choices=[
							("ACCOUNT_APPROVED", "Account approved"),
							("ACCOUNT_REJECTED", "Account rejected"),
							("APPLICATION_COMPANY_REVIEWED", "Company review"),
							("APPLICATION_UNIVERSITY_REVIEWED", "University review"),
							("CERTIFICATE_ANCHOR_REQUESTED", "Anchoring requested"),
							("CERTIFICATE_BATCH_ANCHOR_REQUESTED", "Batch anchoring requested"),
							("CERTIFICATE_REVOKED", "Certificate revoked"),
							("CERTIFICATE_FORCE_FAILED", "Stuck anchoring forced to failed"),
							("CERTIFICATE_REMARKS_UPDATED", "Certificate remarks updated"),
							("WHITELIST_BULK_ADDED", "Whitelist bulk import"),
							("WHITELIST_RESET", "Whitelist entry reset"),
						],
						max_length=80,
					),
				),
				("object_type", models.CharField(blank=True, default="", max_length=80)),
				("object_id", models.CharField(blank=True, default="", max_length=80)),
				("path", models.CharField(blank=True, default="", max_length=300)),
				("method", models.CharField(blank=True, default="", max_length=10)),
				("status_code", models.PositiveSmallIntegerField(blank=True, null=True)),
				("ip_address", models.CharField(blank=True, default="", max_length=64)),
				("user_agent", models.TextField(blank=True, default="")),
				("metadata", models.JSONField(blank=True, default=dict)),
				("created_at", models.DateTimeField(auto_now_add=True)),
				(
					"actor",
					models.ForeignKey(
						blank=True,
						null=True,
						on_delete=django.db.models.deletion.SET_NULL,
						related_name="audit_logs",
						to=settings.AUTH_USER_MODEL,
					),
				),
			],
			options={
				"ordering": ["-created_at", "-id"],
				"indexes": [
					models.Index(fields=["event_type", "created_at"], name="audit_event_created_idx"),
					models.Index(fields=["object_type", "object_id", "created_at"], name="audit_object_created_idx"),
					models.Index(fields=["actor", "created_at"], name="audit_actor_created_idx"),
				],
			},
		),
	]
