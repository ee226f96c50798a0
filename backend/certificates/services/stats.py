"""Dashboard figures for certificates and public verifications.

Every function takes an already scoped certificate queryset, so a user only
ever sees counts for the certificates they can list.
"""

from __future__ import annotations

from datetime import timedelta

from django.db.models import Count, Q
from django.db.models.functions import TruncDate
from django.utils import timezone

from core.models import Company, University
from verification.models import VerificationEvent

from ..models import Certificate


TREND_DAYS = 7
MAX_VERIFICATION_DAYS = 90
RANKING_SIZE = 10


def status_counts(certificates) -> dict[str, int]:
    rows = certificates.order_by().values("status").annotate(n=Count("id"))
    counts = {value: 0 for value in Certificate.Status.values}
    for row in rows:
        counts[row["status"]] = row["n"]
    counts["total"] = sum(counts.values())
    return counts


def _day_keys(days: int, now) -> list:
    today = timezone.localdate(now)
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def issuance_trend(certificates, *, days: int = TREND_DAYS, now=None) -> list[dict]:
    """Certificates created per day over the last `days` days, oldest first."""

    now = now or timezone.now()
    keys = _day_keys(days, now)
    rows = (
        certificates.filter(created_at__date__gte=keys[0])
        .order_by()
        .annotate(day=TruncDate("created_at"))
        .values("day")
        .annotate(
            created=Count("id"),
            active=Count("id", filter=Q(status=Certificate.Status.ACTIVE)),
        )
    )
    by_day = {row["day"]: row for row in rows}
    return [
        {
            "date": day.isoformat(),
            "created": by_day.get(day, {}).get("created", 0),
            "active": by_day.get(day, {}).get("active", 0),
        }
        for day in keys
    ]


def scoped_verification_events(user, certificates):
    # Lookups that matched nothing belong to no organization; only admins see them.
    if user.is_admin_role:
        return VerificationEvent.objects.all()
    return VerificationEvent.objects.filter(certificate__in=certificates.values("pk"))


def verification_counts(events, *, since) -> dict[str, int]:
    totals = events.filter(created_at__gte=since).aggregate(
        total=Count("id"),
        valid=Count("id", filter=Q(outcome=VerificationEvent.Outcome.VALID)),
        revoked=Count("id", filter=Q(outcome=VerificationEvent.Outcome.REVOKED)),
        invalid=Count("id", filter=Q(outcome=VerificationEvent.Outcome.INVALID)),
        not_found=Count("id", filter=Q(outcome=VerificationEvent.Outcome.NOT_FOUND)),
    )
    return {key: value or 0 for key, value in totals.items()}


def verification_trend(events, *, days: int, now=None) -> list[dict]:
    now = now or timezone.now()
    keys = _day_keys(days, now)
    rows = (
        events.filter(created_at__date__gte=keys[0])
        .order_by()
        .annotate(day=TruncDate("created_at"))
        .values("day")
        .annotate(
            total=Count("id"),
            valid=Count("id", filter=Q(outcome=VerificationEvent.Outcome.VALID)),
        )
    )
    by_day = {row["day"]: row for row in rows}
    trend = []
    for day in keys:
        row = by_day.get(day, {})
        total = row.get("total", 0)
        valid = row.get("valid", 0)
        trend.append({"date": day.isoformat(), "total": total, "valid": valid, "invalid": total - valid})
    return trend


def organization_ranking(model) -> list[dict]:
    rows = (
        model.objects.annotate(certificates_count=Count("certificates"))
        .filter(certificates_count__gt=0)
        .order_by("-certificates_count", "code")
        .values("id", "code", "name", "certificates_count")[:RANKING_SIZE]
    )
    return [
        {"id": row["id"], "code": row["code"], "name": row["name"], "count": row["certificates_count"]}
        for row in rows
    ]


def build_dashboard(user, certificates, *, now=None) -> dict:
    now = now or timezone.now()
    events = scoped_verification_events(user, certificates)
    payload = {
        "certificates": status_counts(certificates),
        "trend": issuance_trend(certificates, now=now),
        "verifications_24h": verification_counts(events, since=now - timedelta(hours=24)),
    }
    if user.is_admin_role:
        payload["rankings"] = {
            "universities": organization_ranking(University),
            "companies": organization_ranking(Company),
        }
    return payload
