from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework import serializers

from core.exceptions import Conflict
from core.models import Company, University
from notifications.models import Notification
from notifications.services import admin_users_qs, try_notify_users
from whitelist.services import check_student_number, consume_entry, normalize_student_number

from .models import User


logger = logging.getLogger(__name__)

SELF_REGISTRATION_ROLES = {User.ROLE_STUDENT, User.ROLE_COMPANY, User.ROLE_UNIVERSITY}


def _organization_model_for(role: str):
    if role == User.ROLE_UNIVERSITY:
        return University
    if role == User.ROLE_COMPANY:
        return Company
    return None


def register_user(
    *,
    username: str,
    password: str,
    role: str,
    email: str | None = None,
    first_name: str = "",
    last_name: str = "",
    student_number: str = "",
    wallet_address: str = "",
    apply_org_name: str = "",
    apply_org_code: str = "",
    apply_reason: str = "",
) -> User:
    """Self-registration.

    Students must hold an unused whitelist entry: the entry is consumed in the
    same transaction that creates the account, and the account is bound to the
    entry's university. Company and university accounts are created inactive and
    wait for an administrator to approve the organization request.
    """

    if role not in SELF_REGISTRATION_ROLES:
        raise serializers.ValidationError({"role": "This role cannot self-register."})
    if User.objects.filter(username=username).exists():
        raise Conflict("Username is already taken.")
    if email and User.objects.filter(email=email).exists():
        raise Conflict("Email is already registered.")

    if role == User.ROLE_STUDENT:
        number = normalize_student_number(student_number)
        if not number:
            raise serializers.ValidationError({"student_number": "Students must provide their student number."})

        check = check_student_number(number)
        if not check["exists"]:
            raise serializers.ValidationError({"student_number": "Student number is not whitelisted."})
        if check["is_used"]:
            raise Conflict("This student number has already been used to register.")
        if User.objects.filter(student_number=number).exists():
            # The whitelist entry was reset, but an account still holds the number.
            raise Conflict("An account with this student number already exists.")

        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    username=username,
                    password=password,
                    email=email or None,
                    role=role,
                    first_name=first_name,
                    last_name=last_name,
                    student_number=number,
                    wallet_address=wallet_address or "",
                    approval_status=User.ApprovalStatus.APPROVED,
                    is_active=True,
                )
                entry = consume_entry(student_number=number, user=user)
                if entry is None:
                    # Lost the race against another registration; roll the account back.
                    raise Conflict("This student number has already been used to register.")
                if entry.university_id:
                    user.university_id = entry.university_id
                    user.save(update_fields=["university"])
        except IntegrityError as exc:
            raise Conflict("An account with this username, email or student number already exists.") from exc

        logger.info("user.registered", extra={"user_id": user.id, "role": role})
        return user

    if not str(apply_org_code or "").strip() or not str(apply_org_name or "").strip():
        raise serializers.ValidationError({"detail": "Organization name and code are required."})

    user = User.objects.create_user(
        username=username,
        password=password,
        email=email or None,
        role=role,
        first_name=first_name,
        last_name=last_name,
        approval_status=User.ApprovalStatus.PENDING,
        is_active=False,
        apply_org_name=str(apply_org_name).strip(),
        apply_org_code=str(apply_org_code).strip(),
        apply_reason=apply_reason or "",
    )
    logger.info("user.registered", extra={"user_id": user.id, "role": role, "pending": True})

    try_notify_users(
        recipients=admin_users_qs(),
        type=Notification.Type.ACCOUNT_REQUEST,
        title="New organization account request",
        body=f"{user.username} requests a {user.get_role_display()} account for {user.apply_org_name} ({user.apply_org_code}).",
        url=f"/users/{user.id}",
    )
    return user


def review_account_request(
    *,
    user_id: int,
    actor: User,
    approved: bool,
    org_code: str = "",
    org_name: str = "",
    reject_reason: str = "",
) -> User:
    """Approves or rejects a pending organizational account.

    Approval upserts the organization by its unique code: an existing
    University/Company with that code is reused, otherwise one is created. The
    user is then bound to it and activated. Calling this again for the same code
    never creates a second organization.
    """

    with transaction.atomic():
        user = User.objects.select_for_update().get(pk=user_id)
        if user.approval_status != User.ApprovalStatus.PENDING:
            raise Conflict("Only pending accounts can be reviewed.")

        now = timezone.now()
        if approved:
            model = _organization_model_for(user.role)
            if model is not None:
                code = str(org_code or user.apply_org_code or "").strip()
                name = str(org_name or user.apply_org_name or "").strip() or code
                if not code:
                    raise serializers.ValidationError({"org_code": "An organization code is required."})

                organization, created = model.objects.get_or_create(
                    code=code,
                    defaults={"name": name, "is_verified": True},
                )
                if user.role == User.ROLE_UNIVERSITY:
                    user.university = organization
                else:
                    user.company = organization
                logger.info(
                    "account.organization_bound",
                    extra={"user_id": user.id, "org_code": code, "org_created": created},
                )

            user.approval_status = User.ApprovalStatus.APPROVED
            user.is_active = True
            user.reject_reason = ""
        else:
            reason = str(reject_reason or "").strip()
            if not reason:
                raise serializers.ValidationError({"reject_reason": "A reason is required to reject."})
            user.approval_status = User.ApprovalStatus.REJECTED
            user.is_active = False
            user.reject_reason = reason

        user.approved_at = now
        user.approved_by = actor
        user.save()

    try_notify_users(
        recipients=[user],
        type=Notification.Type.ACCOUNT_REVIEWED,
        title="Your account was approved" if approved else "Your account request was rejected",
        body="" if approved else user.reject_reason,
    )
    return user
