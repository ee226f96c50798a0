from __future__ import annotations

from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from users.permissions import IsAdmin

from .models import AuditLog
from .serializers import AuditLogSerializer


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
	queryset = AuditLog.objects.select_related("actor").all().order_by("-created_at", "-id")
	serializer_class = AuditLogSerializer
	permission_classes = [permissions.IsAuthenticated, IsAdmin]
	filterset_fields = ["event_type", "object_type", "object_id", "actor"]

	@action(detail=False, methods=["get"], url_path=r"certificate/(?P<certificate_id>\d+)")
	def certificate(self, request, certificate_id=None):
		"""History of operator actions on one certificate, newest first."""

		qs = self.get_queryset().filter(object_type="certificates.Certificate", object_id=str(certificate_id))
		return Response(self.get_serializer(qs[:200], many=True).data)
