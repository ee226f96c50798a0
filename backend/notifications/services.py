from __future__ import annotations

import logging
from typing import Iterable

from django.utils import timezone

from users.models import User

from .models import Notification


logger = logging.getLogger(__name__)


def create_notification(
    *,
    recipient: User,
    title: str,
    body: str = "",
    url: str = "",
    type: str = "",
) -> Notification:
    return Notification.objects.create(
        recipient=recipient,
        type=type,
        title=title,
        body=body,
        url=url,
    )


def notify_users(
    *,
    recipients: Iterable[User],
    title: str,
    body: str = "",
    url: str = "",
    type: str = "",
) -> int:
    # One notification per user, even when a recipient appears twice.
    by_id = {u.id: u for u in recipients if u is not None}
    if not by_id:
        return 0

    notifications = [
        Notification(
            recipient=u,
            type=type,
            title=title,
            body=body,
            url=url,
        )
        for u in by_id.values()
    ]
    Notification.objects.bulk_create(notifications)
    return len(notifications)


def try_notify_users(**kwargs) -> int:
    """Fire-and-forget variant used by workflows: delivery problems are only logged."""

    try:
        return notify_users(**kwargs)
    except Exception:
        logger.exception("notification.failed", extra={"type": kwargs.get("type", "")})
        return 0


def admin_users_qs():
    return User.objects.filter(role=User.ROLE_ADMIN, is_active=True)


def company_members_qs(company_id):
    return User.objects.filter(role=User.ROLE_COMPANY, company_id=company_id, is_active=True)


def university_members_qs(university_id):
    return User.objects.filter(role=User.ROLE_UNIVERSITY, university_id=university_id, is_active=True)


def mark_all_read_for_user(user: User) -> int:
    now = timezone.now()
    return Notification.objects.filter(recipient=user, read_at__isnull=True).update(read_at=now)


def mark_read(notification: Notification) -> Notification:
    if notification.read_at is None:
        notification.read_at = timezone.now()
        notification.save(update_fields=["read_at"])
    return notification
