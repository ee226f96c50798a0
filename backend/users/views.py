from rest_framework import filters, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from audit.services import try_log_event

from .models import User
from .permissions import IsAdmin, IsOwnerOrAdmin
from .serializers import AccountReviewSerializer, RegisterSerializer, UserSerializer
from .services import register_user, review_account_request


class UserViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = User.objects.select_related("university", "company").all().order_by("id")
    serializer_class = UserSerializer
    filter_backends = [filters.SearchFilter]
    search_fields = ["username", "first_name", "last_name", "email", "apply_org_code"]

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("approval_status"):
            qs = qs.filter(approval_status=params["approval_status"])
        if params.get("role"):
            qs = qs.filter(role=params["role"])
        return qs

    def get_permissions(self):
        if self.action == "me":
            return [permissions.IsAuthenticated()]
        if self.action == "retrieve":
            return [permissions.IsAuthenticated(), IsOwnerOrAdmin()]
        return [permissions.IsAuthenticated(), IsAdmin()]

    @action(detail=False, methods=["get"])
    def me(self, request):
        return Response(self.get_serializer(request.user).data)

    @action(detail=True, methods=["post"], url_path="review")
    def review(self, request, pk=None):
        target: User = self.get_object()
        data = AccountReviewSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        user = review_account_request(
            user_id=target.pk,
            actor=request.user,
            approved=data.validated_data["approved"],
            org_code=data.validated_data["org_code"],
            org_name=data.validated_data["org_name"],
            reject_reason=data.validated_data["reject_reason"],
        )
        try_log_event(
            request,
            event_type="ACCOUNT_APPROVED" if data.validated_data["approved"] else "ACCOUNT_REJECTED",
            object_type="users.User",
            object_id=user.pk,
            metadata={"role": user.role, "university": user.university_id, "company": user.company_id},
        )
        return Response(self.get_serializer(user).data, status=status.HTTP_200_OK)


class RegisterAPIView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request, format=None):
        data = RegisterSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)
        user = register_user(**data.validated_data)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)
