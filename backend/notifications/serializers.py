from rest_framework import serializers

from .models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    type_label = serializers.CharField(source="get_type_display", read_only=True)
    topic = serializers.SerializerMethodField()

    class Meta:
        model = Notification
        fields = ["id", "type", "type_label", "topic", "title", "body", "url", "is_read", "read_at", "created_at"]
        read_only_fields = fields

    def get_topic(self, obj: Notification) -> str:
        # ACCOUNT_REQUEST -> account, CERTIFICATE_REVOKED -> certificate
        return (obj.type or "").split("_", 1)[0].lower()
