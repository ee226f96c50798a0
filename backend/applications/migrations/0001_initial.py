import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


STATUS_CHOICES = [
    ("DRAFT", "Draft"),
    ("SUBMITTED", "Submitted"),
    ("COMPANY_REVIEWING", "Company reviewing"),
    ("COMPANY_APPROVED", "Company approved"),
    ("UNIVERSITY_REVIEWING", "University reviewing"),
    ("APPROVED", "Approved"),
    ("REJECTED", "Rejected"),
    ("WITHDRAWN", "Withdrawn"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("certificates", "0001_initial"),
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="InternshipApplication",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("application_no", models.CharField(db_index=True, max_length=20, unique=True)),
                ("position", models.CharField(max_length=200)),
                ("department", models.CharField(blank=True, default="", max_length=200)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField()),
                ("description", models.TextField(blank=True, default="")),
                ("status", models.CharField(choices=STATUS_CHOICES, db_index=True, default="DRAFT", max_length=24)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "company_score",
                    models.PositiveSmallIntegerField(
                        blank=True,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("company_evaluation", models.TextField(blank=True, default="")),
                ("company_seal", models.CharField(blank=True, default="", max_length=64)),
                ("company_seal_payload", models.JSONField(blank=True, default=dict)),
                ("company_signed_at", models.DateTimeField(blank=True, null=True)),
                ("company_reject_reason", models.TextField(blank=True, default="")),
                ("university_approval_note", models.TextField(blank=True, default="")),
                ("university_approved_at", models.DateTimeField(blank=True, null=True)),
                ("university_reject_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "certificate",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="application",
                        to="certificates.certificate",
                    ),
                ),
                (
                    "company",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="applications",
                        to="core.company",
                    ),
                ),
                (
                    "company_signed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="company_signed_applications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "student",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="applications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "university",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="applications",
                        to="core.university",
                    ),
                ),
                (
                    "university_approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="university_reviewed_applications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["student", "status"], name="app_student_status_idx"),
                    models.Index(fields=["company", "status"], name="app_company_status_idx"),
                    models.Index(fields=["university", "status"], name="app_university_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ApplicationTransition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(choices=STATUS_CHOICES, max_length=24)),
                ("to_status", models.CharField(choices=STATUS_CHOICES, max_length=24)),
                ("actor_role", models.CharField(blank=True, default="", max_length=24)),
                ("comment", models.TextField(blank=True, default="")),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="application_transitions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "application",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transitions",
                        to="applications.internshipapplication",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
    ]
