from django.urls import path

from .views_public import (
    PublicLedgerInfoAPIView,
    PublicVerifyByCodeAPIView,
    PublicVerifyByHashAPIView,
    PublicVerifyByNumberAPIView,
)

urlpatterns = [
    path("verify/code/<str:key>/", PublicVerifyByCodeAPIView.as_view(), name="public-verify-code"),
    path("verify/number/<str:key>/", PublicVerifyByNumberAPIView.as_view(), name="public-verify-number"),
    path("verify/hash/<str:key>/", PublicVerifyByHashAPIView.as_view(), name="public-verify-hash"),
    path("ledger/info/", PublicLedgerInfoAPIView.as_view(), name="public-ledger-info"),
]
