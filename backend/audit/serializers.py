from __future__ import annotations

from rest_framework import serializers

from .models import AuditLog


class AuditLogSerializer(serializers.ModelSerializer):
	actor_username = serializers.SerializerMethodField()
	event_label = serializers.CharField(source="get_event_type_display", read_only=True)
	reason = serializers.SerializerMethodField()

	class Meta:
		model = AuditLog
		fields = [
			"id",
			"created_at",
			"event_type",
			"event_label",
			"actor",
			"actor_username",
			"object_type",
			"object_id",
			"reason",
			"method",
			"path",
			"status_code",
			"ip_address",
			"metadata",
		]
		read_only_fields = fields

	def get_actor_username(self, obj: AuditLog) -> str:
		# Actors may have been deleted; their entries stay.
		return obj.actor.username if obj.actor_id else ""

	def get_reason(self, obj: AuditLog) -> str:
		"""Revocation and rejection reasons live in metadata; surface them for the history view."""

		metadata = obj.metadata or {}
		return str(metadata.get("reason") or metadata.get("reject_reason") or "")
