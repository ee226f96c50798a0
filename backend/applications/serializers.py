from __future__ import annotations

from rest_framework import serializers

from core.models import Company

from .models import ApplicationTransition, InternshipApplication
from .services.workflow import verify_company_seal


class ApplicationTransitionSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)

    class Meta:
        model = ApplicationTransition
        fields = [
            "id",
            "from_status",
            "to_status",
            "actor",
            "actor_username",
            "actor_role",
            "comment",
            "created_at",
        ]
        read_only_fields = fields


class InternshipApplicationSerializer(serializers.ModelSerializer):
    student_name = serializers.SerializerMethodField()
    university_name = serializers.CharField(source="university.name", read_only=True)
    company_name = serializers.CharField(source="company.name", read_only=True)
    status_label = serializers.CharField(source="get_status_display", read_only=True)
    certificate_number = serializers.CharField(source="certificate.cert_number", read_only=True, default=None)
    company_seal_valid = serializers.SerializerMethodField()
    transitions = ApplicationTransitionSerializer(many=True, read_only=True)

    class Meta:
        model = InternshipApplication
        fields = [
            "id",
            "application_no",
            "student",
            "student_name",
            "university",
            "university_name",
            "company",
            "company_name",
            "position",
            "department",
            "start_date",
            "end_date",
            "description",
            "status",
            "status_label",
            "submitted_at",
            "company_score",
            "company_evaluation",
            "company_seal",
            "company_seal_valid",
            "company_signed_by",
            "company_signed_at",
            "company_reject_reason",
            "university_approval_note",
            "university_approved_by",
            "university_approved_at",
            "university_reject_reason",
            "certificate",
            "certificate_number",
            "transitions",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_student_name(self, obj: InternshipApplication) -> str:
        return obj.student.get_full_name() or obj.student.username

    def get_company_seal_valid(self, obj: InternshipApplication) -> bool | None:
        if not obj.company_seal:
            return None
        return verify_company_seal(obj)


class ApplicationCreateSerializer(serializers.Serializer):
    company = serializers.PrimaryKeyRelatedField(queryset=Company.objects.all())
    position = serializers.CharField(max_length=200)
    department = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    description = serializers.CharField(required=False, allow_blank=True, default="")


class ApplicationDraftUpdateSerializer(serializers.Serializer):
    company = serializers.PrimaryKeyRelatedField(queryset=Company.objects.all(), required=False)
    position = serializers.CharField(max_length=200, required=False)
    department = serializers.CharField(max_length=200, required=False, allow_blank=True)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    description = serializers.CharField(required=False, allow_blank=True)


class _CommentInputSerializer(serializers.Serializer):
    comment = serializers.CharField(required=False, allow_blank=True, default="")


class CompanyReviewInputSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
    score = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=100)
    evaluation = serializers.CharField(required=False, allow_blank=True, default="")
    reject_reason = serializers.CharField(required=False, allow_blank=True, default="")


class UniversityReviewInputSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
    approval_note = serializers.CharField(required=False, allow_blank=True, default="")
    reject_reason = serializers.CharField(required=False, allow_blank=True, default="")
    auto_anchor = serializers.BooleanField(required=False, allow_null=True, default=None)
