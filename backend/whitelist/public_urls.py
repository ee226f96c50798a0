from django.urls import path

from .views import PublicWhitelistCheckAPIView

urlpatterns = [
    path("whitelist/check/<str:student_number>/", PublicWhitelistCheckAPIView.as_view(), name="public-whitelist-check"),
]
