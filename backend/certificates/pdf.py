from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from django.conf import settings
from django.template.loader import render_to_string

from .models import Certificate
from .services.issuance import qr_png_data_uri
from .weasyprint_utils import render_pdf_bytes_from_html


@dataclass(frozen=True)
class RenderedPdf:
    content: bytes
    sha256: str


class CertificatePdfRenderer:
    template_name = "certificates/certificate.html"

    def render(self, certificate: Certificate) -> RenderedPdf:
        html = render_to_string(
            self.template_name,
            {
                "certificate": certificate,
                "student_name": certificate.student.get_full_name() or certificate.student.username,
                "qr_code": certificate.qr_code or qr_png_data_uri(certificate.verify_url),
            },
        )
        content = render_pdf_bytes_from_html(html=html, base_url=str(settings.BASE_DIR))
        return RenderedPdf(content=content, sha256=hashlib.sha256(content).hexdigest())


def safe_join_private(root: Path, relpath: str) -> Path:
    # Prevent path traversal. Force relative path and ensure it's under root.
    rel = Path(relpath)
    if rel.is_absolute():
        raise ValueError("Absolute paths are not allowed")

    final = (root / rel).resolve()
    root_resolved = root.resolve()
    if root_resolved not in final.parents and final != root_resolved:
        raise ValueError("Invalid path")
    return final


def certificate_pdf_relpath(certificate: Certificate) -> str:
    folder = str(getattr(settings, "PRIVATE_CERTIFICATES_DIR", "certificates") or "certificates").strip("/")
    return f"{folder}/{certificate.cert_number}.pdf"
