from __future__ import annotations

from rest_framework import serializers

from core.models import University

from .models import StudentWhitelist


class StudentWhitelistSerializer(serializers.ModelSerializer):
    university_name = serializers.CharField(source="university.name", read_only=True)
    used_by_username = serializers.CharField(source="used_by.username", read_only=True)

    class Meta:
        model = StudentWhitelist
        fields = [
            "id",
            "student_number",
            "name",
            "major",
            "department",
            "enrollment_year",
            "graduation_year",
            "university",
            "university_name",
            "is_used",
            "used_at",
            "used_by",
            "used_by_username",
            "batch_id",
            "created_at",
        ]
        read_only_fields = ["is_used", "used_at", "used_by", "batch_id", "created_at"]
        # Duplicates are reported by the service as 409, not as a field error.
        extra_kwargs = {"student_number": {"validators": []}}


class _BulkRowSerializer(serializers.Serializer):
    student_number = serializers.CharField(allow_blank=True, required=False, default="")
    name = serializers.CharField(allow_blank=True, required=False, default="")
    major = serializers.CharField(allow_blank=True, required=False, default="")
    department = serializers.CharField(allow_blank=True, required=False, default="")
    enrollment_year = serializers.IntegerField(required=False, allow_null=True)
    graduation_year = serializers.IntegerField(required=False, allow_null=True)


class BulkAddInputSerializer(serializers.Serializer):
    students = _BulkRowSerializer(many=True)
    university = serializers.PrimaryKeyRelatedField(queryset=University.objects.all(), required=False, allow_null=True)


class DeleteBatchInputSerializer(serializers.Serializer):
    batch_id = serializers.CharField()


class WhitelistCheckSerializer(serializers.Serializer):
    exists = serializers.BooleanField()
    is_used = serializers.BooleanField()
    name = serializers.CharField(allow_blank=True)
    university = serializers.DictField(allow_null=True)
