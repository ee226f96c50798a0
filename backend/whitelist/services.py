from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework import serializers

from core.exceptions import Conflict

from .models import StudentWhitelist


logger = logging.getLogger(__name__)

BULK_ADD_LIMIT = 500


@dataclass
class BulkAddResult:
    batch_id: str
    created: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


def normalize_student_number(value: Any) -> str:
    return str(value or "").strip()


def check_student_number(student_number: str) -> dict[str, Any]:
    number = normalize_student_number(student_number)
    entry = StudentWhitelist.objects.select_related("university").filter(student_number=number).first()
    if entry is None:
        return {"exists": False, "is_used": False, "name": "", "university": None}

    if entry.is_used:
        # Do not leak the holder's data once the number is taken.
        return {"exists": True, "is_used": True, "name": "", "university": None}

    university = None
    if entry.university_id:
        university = {"id": entry.university_id, "code": entry.university.code, "name": entry.university.name}
    return {"exists": True, "is_used": False, "name": entry.name, "university": university}


def consume_entry(*, student_number: str, user) -> StudentWhitelist | None:
    """Marks the entry as used by `user`.

    The update is conditional on `is_used=False`, so two registrations racing on
    the same number cannot both succeed. Returns None when the number is unknown
    or already taken.
    """

    number = normalize_student_number(student_number)
    if not number:
        return None

    updated = StudentWhitelist.objects.filter(student_number=number, is_used=False).update(
        is_used=True,
        used_at=timezone.now(),
        used_by=user,
    )
    if updated != 1:
        return None

    logger.info("whitelist.consumed", extra={"student_number": number, "user_id": getattr(user, "id", None)})
    return StudentWhitelist.objects.select_related("university").get(student_number=number)


def reset_entry(entry: StudentWhitelist) -> StudentWhitelist:
    entry.is_used = False
    entry.used_at = None
    entry.used_by = None
    entry.save(update_fields=["is_used", "used_at", "used_by"])
    logger.info("whitelist.reset", extra={"student_number": entry.student_number})
    return entry


def add_entry(
    *,
    student_number: str,
    name: str,
    university=None,
    major: str = "",
    department: str = "",
    enrollment_year: int | None = None,
    graduation_year: int | None = None,
    uploaded_by=None,
    batch_id: str = "",
) -> StudentWhitelist:
    number = normalize_student_number(student_number)
    name = str(name or "").strip()
    if not number or not name:
        raise serializers.ValidationError({"detail": "Student number and name are required."})

    if StudentWhitelist.objects.filter(student_number=number).exists():
        raise Conflict(f"Student number {number} is already whitelisted.")

    try:
        with transaction.atomic():
            return StudentWhitelist.objects.create(
                student_number=number,
                name=name,
                university=university,
                major=major or "",
                department=department or "",
                enrollment_year=enrollment_year,
                graduation_year=graduation_year,
                uploaded_by=uploaded_by,
                batch_id=batch_id or "",
            )
    except IntegrityError as exc:
        raise Conflict(f"Student number {number} is already whitelisted.") from exc


def _optional_year(value: Any) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def bulk_add_entries(*, rows: Iterable[dict[str, Any]], university=None, uploaded_by=None) -> BulkAddResult:
    rows = list(rows)
    if not rows:
        raise serializers.ValidationError({"detail": "No students were provided."})
    if len(rows) > BULK_ADD_LIMIT:
        raise serializers.ValidationError({"detail": f"At most {BULK_ADD_LIMIT} students can be imported at once."})

    result = BulkAddResult(batch_id=str(uuid.uuid4()))
    numbers = [normalize_student_number(r.get("student_number")) for r in rows]
    existing = set(StudentWhitelist.objects.filter(student_number__in=numbers).values_list("student_number", flat=True))

    seen: set[str] = set()
    to_create: list[StudentWhitelist] = []
    for row, number in zip(rows, numbers):
        name = str(row.get("name") or "").strip()
        if not number or not name:
            result.errors.append({"student_number": number or "unknown", "error": "Missing student number or name"})
            continue
        if number in existing or number in seen:
            result.errors.append({"student_number": number, "error": "Student number already exists"})
            continue
        try:
            enrollment_year = _optional_year(row.get("enrollment_year"))
            graduation_year = _optional_year(row.get("graduation_year"))
        except (TypeError, ValueError):
            result.errors.append({"student_number": number, "error": "Invalid year"})
            continue

        seen.add(number)
        to_create.append(
            StudentWhitelist(
                student_number=number,
                name=name,
                major=str(row.get("major") or ""),
                department=str(row.get("department") or ""),
                enrollment_year=enrollment_year,
                graduation_year=graduation_year,
                university=university,
                uploaded_by=uploaded_by,
                batch_id=result.batch_id,
            )
        )

    if to_create:
        StudentWhitelist.objects.bulk_create(to_create)

    result.created = len(to_create)
    result.failed = len(result.errors)
    logger.info(
        "whitelist.bulk_added",
        extra={"batch_id": result.batch_id, "created_count": result.created, "failed_count": result.failed},
    )
    return result


def delete_entry(entry: StudentWhitelist) -> None:
    if entry.is_used:
        raise Conflict("A whitelist entry that was used for registration cannot be deleted.")
    entry.delete()


def delete_batch(batch_id: str) -> dict[str, int]:
    batch_id = str(batch_id or "").strip()
    if not batch_id:
        raise serializers.ValidationError({"batch_id": "This field is required."})

    qs = StudentWhitelist.objects.filter(batch_id=batch_id)
    skipped_used = qs.filter(is_used=True).count()
    deleted, _ = qs.filter(is_used=False).delete()
    return {"deleted": int(deleted), "skipped_used": int(skipped_used)}
