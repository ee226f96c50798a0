from __future__ import annotations

from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from ledger.gateway import LedgerError, build_ledger_gateway

from .services import LOOKUP_CODE, LOOKUP_HASH, LOOKUP_NUMBER, verify_certificate
from .throttles import PublicVerifyRateThrottle


class _PublicVerifyView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [PublicVerifyRateThrottle]

    lookup_kind: str = ""

    def get(self, request, key: str, format=None):
        verdict = verify_certificate(
            lookup_kind=self.lookup_kind,
            key=key,
            gateway=build_ledger_gateway(),
            request=request,
        )
        return Response(verdict.as_dict(), status=200 if verdict.found else 404)


class PublicVerifyByCodeAPIView(_PublicVerifyView):
    lookup_kind = LOOKUP_CODE


class PublicVerifyByNumberAPIView(_PublicVerifyView):
    lookup_kind = LOOKUP_NUMBER


class PublicVerifyByHashAPIView(_PublicVerifyView):
    lookup_kind = LOOKUP_HASH


class PublicLedgerInfoAPIView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [PublicVerifyRateThrottle]

    def get(self, request, format=None):
        gateway = build_ledger_gateway()
        available = gateway.is_available()
        data = {
            "available": available,
            "chain_id": gateway.chain_id,
            "contract_address": gateway.contract_address,
            "statistics": None,
        }
        if available:
            stats = gateway.statistics()
            if not isinstance(stats, LedgerError):
                data["statistics"] = {"total": stats.total, "active": stats.active, "revoked": stats.revoked}
        return Response(data)
