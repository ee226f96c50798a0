from rest_framework import viewsets

from .models import Company, University
from .permissions import IsAdminOrReadOnly
from .serializers import CompanySerializer, UniversitySerializer


class UniversityViewSet(viewsets.ModelViewSet):
    queryset = University.objects.all()
    serializer_class = UniversitySerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_fields = ["code", "is_verified"]


class CompanyViewSet(viewsets.ModelViewSet):
    queryset = Company.objects.all()
    serializer_class = CompanySerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_fields = ["code", "is_verified"]
