from __future__ import annotations

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from audit.services import try_log_event
from users.models import User

from .models import InternshipApplication
from .serializers import (
    ApplicationCreateSerializer,
    ApplicationDraftUpdateSerializer,
    CompanyReviewInputSerializer,
    InternshipApplicationSerializer,
    UniversityReviewInputSerializer,
    _CommentInputSerializer,
)
from .services import workflow


AUDIT_OBJECT_TYPE = "applications.InternshipApplication"


def _client_ip(request) -> str | None:
    return request.META.get("REMOTE_ADDR") or None


class ApplicationViewSet(viewsets.ModelViewSet):
    serializer_class = InternshipApplicationSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "company", "university", "student"]
    http_method_names = ["get", "post", "patch", "head", "options"]

    def get_queryset(self):
        qs = InternshipApplication.objects.select_related(
            "student", "university", "company", "certificate"
        ).prefetch_related("transitions__actor")
        user = self.request.user
        if user.is_admin_role:
            return qs
        if user.role == User.ROLE_STUDENT:
            return qs.filter(student=user)
        # Organizations never see a student's drafts.
        if user.role == User.ROLE_COMPANY and user.company_id:
            return qs.filter(company_id=user.company_id).exclude(status=InternshipApplication.Status.DRAFT)
        if user.role == User.ROLE_UNIVERSITY and user.university_id:
            return qs.filter(university_id=user.university_id).exclude(status=InternshipApplication.Status.DRAFT)
        return qs.none()

    def _respond(self, application: InternshipApplication, code=status.HTTP_200_OK) -> Response:
        application = self.get_queryset().get(pk=application.pk)
        return Response(self.get_serializer(application).data, status=code)

    def create(self, request, *args, **kwargs):
        data = ApplicationCreateSerializer(data=request.data)
        data.is_valid(raise_exception=True)
        application = workflow.create_application(student=request.user, **data.validated_data)
        return self._respond(application, status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        application: InternshipApplication = self.get_object()
        data = ApplicationDraftUpdateSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)
        application = workflow.update_draft(
            application=application,
            actor=request.user,
            changes=workflow.ApplicationDraftUpdate(**data.validated_data),
        )
        return self._respond(application)

    @action(detail=True, methods=["post"], url_path="submit")
    def submit(self, request, pk=None):
        application: InternshipApplication = self.get_object()
        application = workflow.submit(application=application, actor=request.user, ip_address=_client_ip(request))
        return self._respond(application)

    @action(detail=True, methods=["post"], url_path="withdraw")
    def withdraw(self, request, pk=None):
        application: InternshipApplication = self.get_object()
        data = _CommentInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)
        application = workflow.withdraw(
            application=application,
            actor=request.user,
            comment=data.validated_data["comment"],
            ip_address=_client_ip(request),
        )
        return self._respond(application)

    @action(detail=True, methods=["post"], url_path="start-company-review")
    def start_company_review(self, request, pk=None):
        application: InternshipApplication = self.get_object()
        application = workflow.begin_company_review(
            application=application,
            actor=request.user,
            ip_address=_client_ip(request),
        )
        return self._respond(application)

    @action(detail=True, methods=["post"], url_path="company-review")
    def company_review(self, request, pk=None):
        application: InternshipApplication = self.get_object()
        data = CompanyReviewInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        application = workflow.company_review(
            application=application,
            actor=request.user,
            ip_address=_client_ip(request),
            **data.validated_data,
        )
        try_log_event(
            request,
            event_type="APPLICATION_COMPANY_REVIEWED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=application.pk,
            metadata={"approved": data.validated_data["approved"], "status": application.status},
        )
        return self._respond(application)

    @action(detail=True, methods=["post"], url_path="university-review")
    def university_review(self, request, pk=None):
        application: InternshipApplication = self.get_object()
        data = UniversityReviewInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        application = workflow.university_review(
            application=application,
            actor=request.user,
            ip_address=_client_ip(request),
            **data.validated_data,
        )
        try_log_event(
            request,
            event_type="APPLICATION_UNIVERSITY_REVIEWED",
            object_type=AUDIT_OBJECT_TYPE,
            object_id=application.pk,
            metadata={
                "approved": data.validated_data["approved"],
                "status": application.status,
                "certificate_id": application.certificate_id,
            },
        )
        return self._respond(application)
