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
            name="Notification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("ACCOUNT_REQUEST", "Account request"),
                            ("ACCOUNT_REVIEWED", "Account reviewed"),
                            ("APPLICATION_SUBMITTED", "Application submitted"),
                            ("APPLICATION_COMPANY_APPROVED", "Approved by company"),
                            ("APPLICATION_REJECTED", "Application rejected"),
                            ("CERTIFICATE_ISSUED", "Certificate issued"),
                            ("CERTIFICATE_ANCHORED", "Certificate anchored"),
                            ("CERTIFICATE_ANCHOR_FAILED", "Anchoring failed"),
                            ("CERTIFICATE_REVOKED", "Certificate revoked"),
                        ],
                        default="",
                        max_length=50,
                    ),
                ),
                ("title", models.CharField(max_length=255)),
                ("body", models.TextField(blank=True, default="")),
                ("url", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                (
                    "recipient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["recipient", "read_at", "created_at"], name="notif_recipient_read_idx"),
                ],
            },
        ),
    ]
