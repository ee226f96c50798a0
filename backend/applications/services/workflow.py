"""Student -> company -> university approval workflow.

Every status change goes through `_transition`, which checks the edge against
`ALLOWED_TRANSITIONS`, saves the row and writes an `ApplicationTransition`.
Callers hold the row lock (`select_for_update`) inside `transaction.atomic()`
for the whole operation, so two reviewers cannot both act on the same status.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import string
from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import NotFound, PermissionDenied

from certificates.services.issuance import issue_certificate
from core.exceptions import Conflict
from core.models import Company
from core.updates import UNSET, apply_present_fields
from notifications.models import Notification
from notifications.services import company_members_qs, try_notify_users, university_members_qs
from users.models import User
from whitelist.models import StudentWhitelist

from ..models import ApplicationTransition, InternshipApplication


logger = logging.getLogger(__name__)

Status = InternshipApplication.Status

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    Status.DRAFT: {Status.SUBMITTED},
    Status.SUBMITTED: {Status.COMPANY_REVIEWING, Status.WITHDRAWN},
    Status.COMPANY_REVIEWING: {Status.COMPANY_APPROVED, Status.REJECTED, Status.WITHDRAWN},
    Status.COMPANY_APPROVED: {Status.UNIVERSITY_REVIEWING, Status.REJECTED},
    Status.UNIVERSITY_REVIEWING: {Status.APPROVED, Status.REJECTED},
    Status.APPROVED: set(),
    Status.REJECTED: set(),
    Status.WITHDRAWN: set(),
}

_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class ApplicationDraftUpdate:
    company: Any = UNSET
    position: Any = UNSET
    department: Any = UNSET
    start_date: Any = UNSET
    end_date: Any = UNSET
    description: Any = UNSET


def generate_application_no(now=None) -> str:
    now = now or timezone.now()
    return f"APP{now:%Y%m%d}" + "".join(secrets.choice(_ALPHABET) for _ in range(4))


def _validate_dates(start_date, end_date) -> None:
    if start_date is None or end_date is None:
        raise serializers.ValidationError({"start_date": "Start and end dates are required."})
    if start_date >= end_date:
        raise serializers.ValidationError({"end_date": "The end date must be after the start date."})


def _lock(application: InternshipApplication) -> InternshipApplication:
    locked = (
        InternshipApplication.objects.select_for_update()
        .select_related("student", "university", "company")
        .filter(pk=application.pk)
        .first()
    )
    if locked is None:
        raise NotFound("Application not found.")
    return locked


def _transition(
    *,
    application: InternshipApplication,
    to_status: str,
    actor: User | None,
    comment: str = "",
    ip_address: str | None = None,
    update_fields: tuple[str, ...] = (),
) -> InternshipApplication:
    from_status = application.status
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
        raise Conflict(f"Transition not allowed: {from_status} -> {to_status}")

    application.status = to_status
    application.save(update_fields=["status", *update_fields, "updated_at"])

    ApplicationTransition.objects.create(
        application=application,
        from_status=from_status,
        to_status=to_status,
        actor=actor if actor and getattr(actor, "is_authenticated", False) else None,
        actor_role=str(getattr(actor, "role", "") or ""),
        comment=str(comment or "")[:4000],
        ip_address=ip_address or None,
    )
    logger.info(
        "application.transition",
        extra={"application_id": application.pk, "from": from_status, "to": to_status},
    )
    return application


def _require_owner(application: InternshipApplication, actor: User) -> None:
    if application.student_id != actor.pk:
        raise PermissionDenied("Only the student who owns this application can do that.")


def _require_status(application: InternshipApplication, allowed: set[str], action: str) -> None:
    if application.status not in allowed:
        raise Conflict(f"Cannot {action} an application in status {application.status}.")


def _resolve_university(student: User):
    entry = (
        StudentWhitelist.objects.select_related("university")
        .filter(student_number=student.student_number or "", university__isnull=False)
        .first()
    )
    if entry is not None:
        return entry.university
    if student.university_id:
        return student.university
    raise serializers.ValidationError(
        {"university": "No university is associated with this student. Contact your university administrator."}
    )


def create_application(
    *,
    student: User,
    company: Company | int,
    position: str,
    department: str = "",
    start_date,
    end_date,
    description: str = "",
) -> InternshipApplication:
    if student.role != User.ROLE_STUDENT:
        raise PermissionDenied("Only students can create applications.")

    position = str(position or "").strip()
    if not position:
        raise serializers.ValidationError({"position": "The position is required."})
    _validate_dates(start_date, end_date)

    if not isinstance(company, Company):
        company = Company.objects.filter(pk=company).first()
        if company is None:
            raise NotFound("Company not found.")

    university = _resolve_university(student)

    for _ in range(5):
        try:
            with transaction.atomic():
                application = InternshipApplication.objects.create(
                    application_no=generate_application_no(),
                    student=student,
                    university=university,
                    company=company,
                    position=position,
                    department=department or "",
                    start_date=start_date,
                    end_date=end_date,
                    description=description or "",
                    status=Status.DRAFT,
                )
        except IntegrityError:
            continue
        logger.info("application.created", extra={"application_id": application.pk, "student_id": student.pk})
        return application

    raise RuntimeError("Could not generate a unique application number")


def update_draft(
    *,
    application: InternshipApplication,
    actor: User,
    changes: ApplicationDraftUpdate,
) -> InternshipApplication:
    with transaction.atomic():
        application = _lock(application)
        _require_owner(application, actor)
        _require_status(application, {Status.DRAFT}, "edit")

        if changes.company is not UNSET and not isinstance(changes.company, Company):
            company = Company.objects.filter(pk=changes.company).first()
            if company is None:
                raise NotFound("Company not found.")
            changes.company = company

        changed = apply_present_fields(application, changes)
        _validate_dates(application.start_date, application.end_date)
        if changed:
            application.save(update_fields=[*changed, "updated_at"])
    return application


def submit(*, application: InternshipApplication, actor: User, ip_address: str | None = None) -> InternshipApplication:
    with transaction.atomic():
        application = _lock(application)
        _require_owner(application, actor)
        application.submitted_at = timezone.now()
        _transition(
            application=application,
            to_status=Status.SUBMITTED,
            actor=actor,
            ip_address=ip_address,
            update_fields=("submitted_at",),
        )

        try_notify_users(
            recipients=company_members_qs(application.company_id),
            type=Notification.Type.APPLICATION_SUBMITTED,
            title=f"New internship application {application.application_no}",
            body=f"{actor.get_full_name() or actor.username} applied for {application.position}.",
            url=f"/applications/{application.pk}",
        )
    return application


def withdraw(
    *,
    application: InternshipApplication,
    actor: User,
    comment: str = "",
    ip_address: str | None = None,
) -> InternshipApplication:
    with transaction.atomic():
        application = _lock(application)
        _require_owner(application, actor)
        _require_status(application, {Status.SUBMITTED, Status.COMPANY_REVIEWING}, "withdraw")
        _transition(
            application=application,
            to_status=Status.WITHDRAWN,
            actor=actor,
            comment=comment,
            ip_address=ip_address,
        )
    return application


def _can_review_for_company(actor: User, application: InternshipApplication) -> bool:
    return actor.is_admin_role or actor.belongs_to_company(application.company_id)


def _can_review_for_university(actor: User, application: InternshipApplication) -> bool:
    return actor.is_admin_role or actor.belongs_to_university(application.university_id)


def begin_company_review(
    *,
    application: InternshipApplication,
    actor: User,
    ip_address: str | None = None,
) -> InternshipApplication:
    with transaction.atomic():
        application = _lock(application)
        if not _can_review_for_company(actor, application):
            raise PermissionDenied("Only members of the target company can review this application.")
        _transition(
            application=application,
            to_status=Status.COMPANY_REVIEWING,
            actor=actor,
            ip_address=ip_address,
        )
    return application


def build_company_seal_payload(*, application: InternshipApplication, signed_by: User, signed_at, score: int) -> dict:
    return {
        "application_id": application.pk,
        "company_id": application.company_id,
        "signed_by": signed_by.pk,
        "signed_at": signed_at.isoformat(),
        "score": int(score),
    }


def compute_company_seal(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_company_seal(application: InternshipApplication) -> bool:
    """True when the stored seal still matches the stored payload and the application."""

    payload = application.company_seal_payload or {}
    if not application.company_seal or not payload:
        return False
    if payload.get("application_id") != application.pk or payload.get("company_id") != application.company_id:
        return False
    if payload.get("score") != application.company_score:
        return False
    return secrets.compare_digest(compute_company_seal(payload), application.company_seal)


def company_review(
    *,
    application: InternshipApplication,
    actor: User,
    approved: bool,
    score: int | None = None,
    evaluation: str = "",
    reject_reason: str = "",
    ip_address: str | None = None,
) -> InternshipApplication:
    evaluation = str(evaluation or "").strip()
    reject_reason = str(reject_reason or "").strip()
    if approved:
        if score is None or not 1 <= int(score) <= 100:
            raise serializers.ValidationError({"score": "The score must be between 1 and 100."})
        if not evaluation:
            raise serializers.ValidationError({"evaluation": "An evaluation is required."})
    elif not reject_reason:
        raise serializers.ValidationError({"reject_reason": "A rejection reason is required."})

    with transaction.atomic():
        application = _lock(application)
        if not _can_review_for_company(actor, application):
            raise PermissionDenied("Only members of the target company can review this application.")
        _require_status(application, {Status.SUBMITTED, Status.COMPANY_REVIEWING}, "company-review")

        if application.status == Status.SUBMITTED:
            _transition(
                application=application,
                to_status=Status.COMPANY_REVIEWING,
                actor=actor,
                ip_address=ip_address,
            )

        if not approved:
            application.company_reject_reason = reject_reason
            _transition(
                application=application,
                to_status=Status.REJECTED,
                actor=actor,
                comment=reject_reason,
                ip_address=ip_address,
                update_fields=("company_reject_reason",),
            )
            try_notify_users(
                recipients=[application.student],
                type=Notification.Type.APPLICATION_REJECTED,
                title=f"Application {application.application_no} was rejected by the company",
                body=reject_reason,
                url=f"/applications/{application.pk}",
            )
            return application

        signed_at = timezone.now()
        payload = build_company_seal_payload(application=application, signed_by=actor, signed_at=signed_at, score=score)
        application.company_score = int(score)
        application.company_evaluation = evaluation
        application.company_seal_payload = payload
        application.company_seal = compute_company_seal(payload)
        application.company_signed_by = actor
        application.company_signed_at = signed_at
        _transition(
            application=application,
            to_status=Status.COMPANY_APPROVED,
            actor=actor,
            ip_address=ip_address,
            update_fields=(
                "company_score",
                "company_evaluation",
                "company_seal_payload",
                "company_seal",
                "company_signed_by",
                "company_signed_at",
            ),
        )

        try_notify_users(
            recipients=university_members_qs(application.university_id),
            type=Notification.Type.APPLICATION_COMPANY_APPROVED,
            title=f"Application {application.application_no} awaits university review",
            body=f"{application.company.name} has evaluated the internship.",
            url=f"/applications/{application.pk}",
        )
        try_notify_users(
            recipients=[application.student],
            type=Notification.Type.APPLICATION_COMPANY_APPROVED,
            title="The company has evaluated your internship",
            body=f"Application {application.application_no} is waiting for university review.",
            url=f"/applications/{application.pk}",
        )
    return application


def university_review(
    *,
    application: InternshipApplication,
    actor: User,
    approved: bool,
    approval_note: str = "",
    reject_reason: str = "",
    auto_anchor: bool | None = None,
    ip_address: str | None = None,
) -> InternshipApplication:
    reject_reason = str(reject_reason or "").strip()
    if not approved and not reject_reason:
        raise serializers.ValidationError({"reject_reason": "A rejection reason is required."})
    if auto_anchor is None:
        auto_anchor = bool(getattr(settings, "ANCHORING_AUTO_ON_APPROVAL", True))

    with transaction.atomic():
        application = _lock(application)
        if not _can_review_for_university(actor, application):
            raise PermissionDenied("Only members of the student's university can review this application.")
        _require_status(
            application,
            {Status.COMPANY_APPROVED, Status.UNIVERSITY_REVIEWING},
            "university-review",
        )

        if application.status == Status.COMPANY_APPROVED:
            _transition(
                application=application,
                to_status=Status.UNIVERSITY_REVIEWING,
                actor=actor,
                ip_address=ip_address,
            )

        if not approved:
            application.university_reject_reason = reject_reason
            _transition(
                application=application,
                to_status=Status.REJECTED,
                actor=actor,
                comment=reject_reason,
                ip_address=ip_address,
                update_fields=("university_reject_reason",),
            )
            try_notify_users(
                recipients=[application.student],
                type=Notification.Type.APPLICATION_REJECTED,
                title=f"Application {application.application_no} was not approved by the university",
                body=reject_reason,
                url=f"/applications/{application.pk}",
            )
            return application

        if application.certificate_id is not None:
            raise Conflict("A certificate was already issued for this application.")

        certificate = issue_certificate(application=application, issuer=actor)
        application.certificate = certificate
        application.university_approval_note = str(approval_note or "")
        application.university_approved_by = actor
        application.university_approved_at = timezone.now()
        _transition(
            application=application,
            to_status=Status.APPROVED,
            actor=actor,
            comment=application.university_approval_note,
            ip_address=ip_address,
            update_fields=(
                "certificate",
                "university_approval_note",
                "university_approved_by",
                "university_approved_at",
            ),
        )

        if auto_anchor:
            from certificates.tasks import anchor_certificate  # noqa: PLC0415

            certificate_id = certificate.pk
            transaction.on_commit(lambda: anchor_certificate.delay(certificate_id))

        try_notify_users(
            recipients=[application.student],
            type=Notification.Type.CERTIFICATE_ISSUED,
            title="Your internship certificate has been issued",
            body=f"Application {application.application_no} was approved. Certificate number: {certificate.cert_number}",
            url=f"/certificates/{certificate.pk}",
        )
        logger.info(
            "certificate.issued",
            extra={"application_id": application.pk, "certificate_id": certificate.pk, "auto_anchor": auto_anchor},
        )
    return application
