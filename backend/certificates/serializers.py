from __future__ import annotations

from rest_framework import serializers

from .models import Certificate
from .services.anchoring import batch_limit


class CertificateSerializer(serializers.ModelSerializer):
    student_name = serializers.SerializerMethodField()
    university_name = serializers.CharField(source="university.name", read_only=True)
    company_name = serializers.CharField(source="company.name", read_only=True)
    status_label = serializers.CharField(source="get_status_display", read_only=True)
    has_pdf = serializers.SerializerMethodField()

    class Meta:
        model = Certificate
        fields = [
            "id",
            "cert_number",
            "student",
            "student_name",
            "student_number",
            "university",
            "university_name",
            "university_code",
            "company",
            "company_name",
            "company_code",
            "issuer",
            "position",
            "department",
            "start_date",
            "end_date",
            "description",
            "evaluation",
            "status",
            "status_label",
            "verify_code",
            "verify_url",
            "qr_code",
            "cert_hash",
            "tx_hash",
            "block_number",
            "chain_id",
            "issued_at",
            "anchoring_started_at",
            "anchor_attempts",
            "last_anchor_error",
            "revoked_at",
            "revoke_reason",
            "revoke_tx_hash",
            "revoke_ledger_error",
            "has_pdf",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_student_name(self, obj: Certificate) -> str:
        return obj.student.get_full_name() or obj.student.username

    def get_has_pdf(self, obj: Certificate) -> bool:
        return bool(obj.pdf_relpath)


class BatchAnchorInputSerializer(serializers.Serializer):
    certificate_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)

    def validate_certificate_ids(self, value):
        # Checked before any lookup, so oversize requests never reach visibility checks.
        limit = batch_limit()
        if len(set(value)) > limit:
            raise serializers.ValidationError(f"A batch holds at most {limit} certificates.")
        return value


class RevokeInputSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)


class ForceFailInputSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")


class RemarksInputSerializer(serializers.Serializer):
    description = serializers.CharField(required=False, allow_blank=True)
    evaluation = serializers.CharField(required=False, allow_blank=True)
