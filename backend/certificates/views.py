from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from django.conf import settings
from django.http import FileResponse
from django.utils import timezone
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.response import Response

from audit.services import try_log_event
from core.exceptions import Conflict
from ledger.gateway import build_ledger_gateway
from users.models import User
from users.permissions import IsAdmin, IsUniversityOrAdmin

from .models import Certificate
from .pdf import safe_join_private
from .serializers import (
    BatchAnchorInputSerializer,
    CertificateSerializer,
    ForceFailInputSerializer,
    RemarksInputSerializer,
    RevokeInputSerializer,
)
from .services.anchoring import AnchoringCoordinator, CertificateRemarksUpdate
from .services.stats import (
    MAX_VERIFICATION_DAYS,
    build_dashboard,
    scoped_verification_events,
    verification_counts,
    verification_trend,
)


AUDIT_OBJECT_TYPE = "certificates.Certificate"


class CertificateViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = CertificateSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "university", "company", "student"]

    def get_queryset(self):
        qs = Certificate.objects.select_related("student", "university", "company", "issuer")
        user = self.request.user
        if user.is_admin_role:
            return qs
        if user.role == User.ROLE_STUDENT:
            return qs.filter(student=user)
        if user.role == User.ROLE_COMPANY:
            return qs.filter(company_id=user.company_id) if user.company_id else qs.none()
        if user.role == User.ROLE_UNIVERSITY:
            return qs.filter(university_id=user.university_id) if user.university_id else qs.none()
        return qs.none()

    def get_permissions(self):
        if self.action == "force_fail":
            return [permissions.IsAuthenticated(), IsAdmin()]
        if self.action in {"anchor", "batch_anchor", "revoke", "remarks", "verification_stats"}:
            return [permissions.IsAuthenticated(), IsUniversityOrAdmin()]
        return super().get_permissions()

    def _coordinator(self) -> AnchoringCoordinator:
        return AnchoringCoordinator(build_ledger_gateway())

    def _serialize(self, certificate: Certificate) -> dict:
        certificate.refresh_from_db()
        return self.get_serializer(certificate).data

    @action(detail=True, methods=["post"], url_path="anchor")
    def anchor(self, request, pk=None):
        certificate: Certificate = self.get_object()
        self._coordinator().request_anchoring(certificate.pk)
        try_log_event(
            request,
            event_type="CERTIFICATE_ANCHOR_REQUESTED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=certificate.pk,
            status_code=status.HTTP_202_ACCEPTED,
        )
        return Response(self._serialize(certificate), status=status.HTTP_202_ACCEPTED)

    @action(detail=False, methods=["post"], url_path="batch-anchor")
    def batch_anchor(self, request):
        data = BatchAnchorInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)
        requested = data.validated_data["certificate_ids"]

        visible = set(self.get_queryset().filter(pk__in=requested).values_list("pk", flat=True))
        hidden = sorted(set(requested) - visible)
        if hidden:
            raise PermissionDenied(f"Not allowed to anchor certificates {hidden}.")

        ids = self._coordinator().request_batch_anchoring(requested)
        try_log_event(
            request,
            event_type="CERTIFICATE_BATCH_ANCHOR_REQUESTED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=",".join(str(i) for i in ids)[:80],
            status_code=status.HTTP_202_ACCEPTED,
            metadata={"certificate_ids": ids},
        )
        return Response({"certificate_ids": ids, "queued": len(ids)}, status=status.HTTP_202_ACCEPTED)

    @action(detail=True, methods=["post"], url_path="revoke")
    def revoke(self, request, pk=None):
        certificate: Certificate = self.get_object()
        data = RevokeInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        certificate = self._coordinator().revoke(certificate.pk, reason=data.validated_data["reason"], actor=request.user)
        try_log_event(
            request,
            event_type="CERTIFICATE_REVOKED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=certificate.pk,
            status_code=status.HTTP_200_OK,
            metadata={
                "reason": certificate.revoke_reason,
                "revoke_tx_hash": certificate.revoke_tx_hash,
                "revoke_ledger_error": certificate.revoke_ledger_error,
            },
        )
        return Response(self.get_serializer(certificate).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["patch"], url_path="remarks")
    def remarks(self, request, pk=None):
        certificate: Certificate = self.get_object()
        data = RemarksInputSerializer(data=request.data or {}, partial=True)
        data.is_valid(raise_exception=True)

        # No ledger access needed to edit remarks.
        certificate = AnchoringCoordinator(gateway=None).update_remarks(
            certificate.pk, CertificateRemarksUpdate(**data.validated_data)
        )
        try_log_event(
            request,
            event_type="CERTIFICATE_REMARKS_UPDATED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=certificate.pk,
            metadata={"fields": sorted(data.validated_data)},
        )
        return Response(self.get_serializer(certificate).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="force-fail")
    def force_fail(self, request, pk=None):
        certificate: Certificate = self.get_object()
        data = ForceFailInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        reason = data.validated_data["reason"] or "Manually marked as failed by an administrator"
        if not AnchoringCoordinator(gateway=None).force_fail(certificate.pk, reason=reason):
            raise Conflict("Only certificates that are anchoring can be forced to failed.")
        try_log_event(
            request,
            event_type="CERTIFICATE_FORCE_FAILED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=certificate.pk,
            metadata={"reason": reason},
        )
        return Response(self._serialize(certificate), status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        """Status counts, the 7-day issuance trend and last-24h verifications for the caller's certificates."""

        return Response(build_dashboard(request.user, self.get_queryset()))

    @action(detail=False, methods=["get"], url_path="stats/verifications")
    def verification_stats(self, request):
        try:
            days = int(request.query_params.get("days", 30))
        except (TypeError, ValueError):
            raise ValidationError({"days": "Must be an integer."})
        if days < 1 or days > MAX_VERIFICATION_DAYS:
            raise ValidationError({"days": f"Must be between 1 and {MAX_VERIFICATION_DAYS}."})

        now = timezone.now()
        events = scoped_verification_events(request.user, self.get_queryset())
        return Response(
            {
                "days": days,
                "totals": verification_counts(events, since=now - timedelta(days=days)),
                "trend": verification_trend(events, days=days, now=now),
            }
        )

    @action(detail=True, methods=["get"], url_path="download")
    def download(self, request, pk=None):
        certificate: Certificate = self.get_object()

        if not certificate.pdf_relpath:
            return Response(
                {"detail": "The certificate PDF is not available yet."},
                status=status.HTTP_409_CONFLICT,
            )

        base_root = Path(settings.PRIVATE_STORAGE_ROOT)
        try:
            abs_path = safe_join_private(base_root, certificate.pdf_relpath)
        except ValueError:
            return Response({"detail": "Invalid path."}, status=status.HTTP_400_BAD_REQUEST)

        if not abs_path.exists():
            return Response({"detail": "File not found."}, status=status.HTTP_404_NOT_FOUND)

        resp = FileResponse(open(abs_path, "rb"), content_type="application/pdf")
        resp["Content-Disposition"] = f'attachment; filename="{certificate.cert_number}.pdf"'
        return resp
