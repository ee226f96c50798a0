"""URL configuration for certchain_backend project."""

from django.contrib import admin
from django.urls import path, include
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/", include("users.urls")),
    path("api/", include("core.urls")),
    path("api/", include("whitelist.urls")),
    path("api/", include("applications.urls")),
    path("api/", include("certificates.urls")),
    path("api/", include("notifications.urls")),
    path("api/", include("audit.urls")),
    path("api/public/", include("whitelist.public_urls")),
    path("api/public/", include("verification.public_urls")),
]
