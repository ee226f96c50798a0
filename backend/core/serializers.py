from rest_framework import serializers
from .models import Company, University


class UniversitySerializer(serializers.ModelSerializer):
    class Meta:
        model = University
        fields = ["id", "code", "name", "address", "contact_email", "is_verified", "created_at", "updated_at"]
        read_only_fields = ["created_at", "updated_at"]


class CompanySerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = ["id", "code", "name", "address", "contact_email", "is_verified", "created_at", "updated_at"]
        read_only_fields = ["created_at", "updated_at"]
