from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import CompanyViewSet, UniversityViewSet

router = DefaultRouter()
router.register(r'organizations/universities', UniversityViewSet)
router.register(r'organizations/companies', CompanyViewSet)

urlpatterns = [
    path('', include(router.urls)),
]
