from __future__ import annotations

import base64
import logging
import secrets
import string
import uuid
from io import BytesIO

import qrcode
from django.db import IntegrityError, transaction
from django.utils import timezone

from verification.services import build_public_verify_url

from ..models import Certificate


logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_cert_number(now=None) -> str:
    now = now or timezone.now()
    return f"CERT{now:%Y%m}{_random_suffix(6)}"


def generate_verify_code() -> str:
    return uuid.uuid4().hex[:16].upper()


def qr_png_data_uri(text: str) -> str:
    if not text:
        return ""
    try:
        img = qrcode.make(text)
        buf = BytesIO()
        img.save(buf, format="PNG")
        b64 = base64.b64encode(buf.getvalue()).decode("ascii")
        return f"data:image/png;base64,{b64}"
    except Exception:  # noqa: BLE001
        logger.exception("certificate.qr_failed")
        return ""


def issue_certificate(*, application, issuer) -> Certificate:
    """Creates the PENDING certificate for an approved application.

    Facts are copied verbatim from the application. Must run inside the
    transaction that approves the application.
    """

    student = application.student
    for _ in range(5):
        cert_number = generate_cert_number()
        verify_code = generate_verify_code()
        if Certificate.objects.filter(cert_number=cert_number).exists():
            continue
        if Certificate.objects.filter(verify_code=verify_code).exists():
            continue

        verify_url = build_public_verify_url(verify_code)
        try:
            with transaction.atomic():
                return Certificate.objects.create(
                    cert_number=cert_number,
                    student=student,
                    university=application.university,
                    company=application.company,
                    issuer=issuer,
                    student_number=student.student_number or "",
                    university_code=application.university.code,
                    company_code=application.company.code,
                    position=application.position,
                    department=application.department,
                    start_date=application.start_date,
                    end_date=application.end_date,
                    description=application.description,
                    evaluation=application.company_evaluation,
                    status=Certificate.Status.PENDING,
                    verify_code=verify_code,
                    verify_url=verify_url,
                    qr_code=qr_png_data_uri(verify_url),
                )
        except IntegrityError:
            # Lost a race on cert_number/verify_code; try fresh values.
            continue

    # Extremely unlikely, but fail explicitly.
    raise RuntimeError("Could not generate a unique certificate number")
