from rest_framework import serializers

from .models import User


class UserSerializer(serializers.ModelSerializer):
    university_name = serializers.CharField(source="university.name", read_only=True)
    company_name = serializers.CharField(source="company.name", read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "role",
            "university",
            "university_name",
            "company",
            "company_name",
            "student_number",
            "wallet_address",
            "approval_status",
            "apply_org_name",
            "apply_org_code",
            "apply_reason",
            "reject_reason",
            "approved_at",
            "is_active",
        ]
        read_only_fields = [
            "role",
            "university",
            "company",
            "student_number",
            "approval_status",
            "apply_org_name",
            "apply_org_code",
            "apply_reason",
            "reject_reason",
            "approved_at",
            "is_active",
        ]


class RegisterSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True, min_length=8)
    email = serializers.EmailField(required=False, allow_blank=True)
    first_name = serializers.CharField(required=False, allow_blank=True, default="")
    last_name = serializers.CharField(required=False, allow_blank=True, default="")
    role = serializers.ChoiceField(choices=[User.ROLE_STUDENT, User.ROLE_COMPANY, User.ROLE_UNIVERSITY])
    student_number = serializers.CharField(required=False, allow_blank=True, default="")
    wallet_address = serializers.RegexField(
        r"^0x[0-9a-fA-F]{40}$",
        required=False,
        allow_blank=True,
        default="",
    )
    apply_org_name = serializers.CharField(required=False, allow_blank=True, default="")
    apply_org_code = serializers.CharField(required=False, allow_blank=True, default="")
    apply_reason = serializers.CharField(required=False, allow_blank=True, default="")


class AccountReviewSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
    org_code = serializers.CharField(required=False, allow_blank=True, default="")
    org_name = serializers.CharField(required=False, allow_blank=True, default="")
    reject_reason = serializers.CharField(required=False, allow_blank=True, default="")
