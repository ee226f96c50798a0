from __future__ import annotations

from django.conf import settings
from rest_framework.throttling import SimpleRateThrottle


class _AnonymousEndpointThrottle(SimpleRateThrottle):
    """Per-IP throttle whose rate can be pinned by a dedicated setting."""

    rate_setting = ""

    def get_cache_key(self, request, view):
        ident = self.get_ident(request)
        if not ident:
            return None
        return self.cache_format % {"scope": self.scope, "ident": ident}

    def get_rate(self):
        explicit = str(getattr(settings, self.rate_setting, "") or "").strip()
        if explicit:
            return explicit
        return super().get_rate()


class PublicVerifyRateThrottle(_AnonymousEndpointThrottle):
    scope = "public_verify"
    rate_setting = "PUBLIC_VERIFY_THROTTLE_RATE"


class PublicWhitelistCheckThrottle(_AnonymousEndpointThrottle):
    # Stricter: the check reveals whether a student number exists.
    scope = "public_whitelist_check"
    rate_setting = "PUBLIC_WHITELIST_CHECK_THROTTLE_RATE"
