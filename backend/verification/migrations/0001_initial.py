import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("certificates", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="VerificationEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "lookup_kind",
                    models.CharField(
                        choices=[("CODE", "Verify code"), ("NUMBER", "Certificate number"), ("HASH", "Certificate hash")],
                        max_length=8,
                    ),
                ),
                ("lookup_hash", models.CharField(db_index=True, max_length=64)),
                ("lookup_prefix", models.CharField(blank=True, default="", max_length=16)),
                ("certificate_status", models.CharField(blank=True, db_index=True, default="", max_length=12)),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("NOT_FOUND", "Not found"),
                            ("VALID", "Valid"),
                            ("REVOKED", "Revoked"),
                            ("INVALID", "Invalid"),
                        ],
                        db_index=True,
                        max_length=12,
                    ),
                ),
                ("ledger_checked", models.BooleanField(default=False)),
                ("ledger_valid", models.BooleanField(blank=True, null=True)),
                ("ip_address", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("user_agent", models.CharField(blank=True, default="", max_length=255)),
                ("path", models.CharField(blank=True, default="", max_length=255)),
                (
                    "certificate",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="verification_events",
                        to="certificates.certificate",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
