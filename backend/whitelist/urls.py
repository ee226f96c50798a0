from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import StudentWhitelistViewSet

router = DefaultRouter()
router.register(r"whitelist", StudentWhitelistViewSet, basename="whitelist")

urlpatterns = [
    path("", include(router.urls)),
]
