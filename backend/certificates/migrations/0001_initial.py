import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Certificate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("cert_number", models.CharField(db_index=True, max_length=32, unique=True)),
                ("student_number", models.CharField(max_length=50)),
                ("university_code", models.CharField(max_length=50)),
                ("company_code", models.CharField(max_length=50)),
                ("position", models.CharField(max_length=200)),
                ("department", models.CharField(blank=True, default="", max_length=200)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField()),
                ("description", models.TextField(blank=True, default="")),
                ("evaluation", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending anchoring"),
                            ("PROCESSING", "Anchoring"),
                            ("ACTIVE", "Active"),
                            ("FAILED", "Anchoring failed"),
                            ("REVOKED", "Revoked"),
                        ],
                        db_index=True,
                        default="PENDING",
                        max_length=12,
                    ),
                ),
                ("verify_code", models.CharField(db_index=True, max_length=32, unique=True)),
                ("verify_url", models.CharField(blank=True, default="", max_length=500)),
                ("qr_code", models.TextField(blank=True, default="")),
                ("cert_hash", models.CharField(blank=True, max_length=66, null=True, unique=True)),
                ("tx_hash", models.CharField(blank=True, default="", max_length=66)),
                ("block_number", models.PositiveBigIntegerField(blank=True, null=True)),
                ("chain_id", models.PositiveIntegerField(blank=True, null=True)),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("anchoring_started_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("anchor_attempts", models.PositiveIntegerField(default=0)),
                ("last_anchor_error", models.TextField(blank=True, default="")),
                ("revoked_at", models.DateTimeField(blank=True, null=True)),
                ("revoke_reason", models.TextField(blank=True, default="")),
                ("revoke_tx_hash", models.CharField(blank=True, default="", max_length=66)),
                ("revoke_ledger_error", models.TextField(blank=True, default="")),
                ("pdf_relpath", models.CharField(blank=True, default="", max_length=500)),
                ("pdf_sha256", models.CharField(blank=True, default="", max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="certificates",
                        to="core.company",
                    ),
                ),
                (
                    "issuer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="issued_certificates",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "revoked_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="revoked_certificates",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "student",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="certificates",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "university",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="certificates",
                        to="core.university",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["university", "company", "status"], name="cert_parties_status_idx"),
                    models.Index(fields=["status", "anchoring_started_at"], name="cert_status_started_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("status", "PENDING"), ("cert_hash__isnull", True))
                        | models.Q(models.Q(("status", "PENDING"), _negated=True), ("cert_hash__isnull", False)),
                        name="cert_hash_iff_anchoring_attempted",
                    ),
                ],
            },
        ),
    ]
