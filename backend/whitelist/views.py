from __future__ import annotations

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from audit.services import try_log_event
from users.permissions import IsAdmin
from verification.throttles import PublicWhitelistCheckThrottle

from .models import StudentWhitelist
from .serializers import (
    BulkAddInputSerializer,
    DeleteBatchInputSerializer,
    StudentWhitelistSerializer,
    WhitelistCheckSerializer,
)
from .services import add_entry, bulk_add_entries, check_student_number, delete_batch, delete_entry, reset_entry


class StudentWhitelistViewSet(viewsets.ModelViewSet):
    queryset = StudentWhitelist.objects.select_related("university", "used_by").all()
    serializer_class = StudentWhitelistSerializer
    permission_classes = [permissions.IsAuthenticated, IsAdmin]
    filterset_fields = ["university", "is_used", "batch_id", "student_number"]
    http_method_names = ["get", "post", "delete", "head", "options"]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entry = add_entry(
            student_number=data["student_number"],
            name=data["name"],
            university=data.get("university"),
            major=data.get("major", ""),
            department=data.get("department", ""),
            enrollment_year=data.get("enrollment_year"),
            graduation_year=data.get("graduation_year"),
            uploaded_by=request.user,
        )
        return Response(self.get_serializer(entry).data, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        delete_entry(instance)

    @action(detail=False, methods=["post"], url_path="bulk")
    def bulk(self, request):
        data = BulkAddInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        result = bulk_add_entries(
            rows=data.validated_data["students"],
            university=data.validated_data.get("university"),
            uploaded_by=request.user,
        )
        try_log_event(
            request,
            event_type="WHITELIST_BULK_ADDED",
            object_type="whitelist.StudentWhitelist",
            object_id=result.batch_id,
            metadata={"created": result.created, "failed": result.failed},
        )
        return Response(
            {
                "batch_id": result.batch_id,
                "created": result.created,
                "failed": result.failed,
                "errors": result.errors,
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=False, methods=["post"], url_path="delete-batch")
    def delete_batch(self, request):
        data = DeleteBatchInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)
        return Response(delete_batch(data.validated_data["batch_id"]), status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="reset")
    def reset(self, request, pk=None):
        entry: StudentWhitelist = self.get_object()
        reset_entry(entry)
        try_log_event(
            request,
            event_type="WHITELIST_RESET",
            object_type="whitelist.StudentWhitelist",
            object_id=entry.pk,
        )
        return Response(self.get_serializer(entry).data, status=status.HTTP_200_OK)


class PublicWhitelistCheckAPIView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]
    throttle_classes = [PublicWhitelistCheckThrottle]

    def get(self, request, student_number: str, format=None):
        result = check_student_number(student_number)
        return Response(WhitelistCheckSerializer(result).data)
