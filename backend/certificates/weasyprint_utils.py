from __future__ import annotations

import mimetypes
from pathlib import Path
from urllib.parse import urlparse

from django.conf import settings


PDF_BASE_CSS = """
@page {
    size: A4 landscape;
    margin: 14mm;
}

html, body {
    font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Arial, sans-serif;
    font-size: 11pt;
    color: #0f172a;
}

h1, h2, h3 { margin: 0 0 8px 0; }
p { margin: 0 0 6px 0; }
"""


class WeasyPrintUnavailableError(RuntimeError):
    pass


def weasyprint_url_fetcher(url: str):
    """Map /static URLs to local files and allow inline data URIs.

    Blocks remote http(s) URLs to reduce SSRF risk.
    """

    from weasyprint.urls import default_url_fetcher  # noqa: PLC0415

    parsed = urlparse(url)
    if parsed.scheme == "data":
        return default_url_fetcher(url)

    static_url = (getattr(settings, "STATIC_URL", "") or "").rstrip("/") + "/"
    static_root = getattr(settings, "STATIC_ROOT", None)
    path = parsed.path or ""
    if static_root and static_url and path.startswith(static_url):
        file_path = Path(static_root) / path[len(static_url) :].lstrip("/")
        if file_path.exists():
            mime_type, _ = mimetypes.guess_type(str(file_path))
            return {
                "file_obj": open(file_path, "rb"),
                "mime_type": mime_type or "application/octet-stream",
                "encoding": None,
                "redirected_url": url,
            }

    if parsed.scheme in {"http", "https"}:
        raise ValueError("Remote URLs are not allowed in PDF rendering")
    return default_url_fetcher(url)


def render_pdf_bytes_from_html(*, html: str, base_url: str | None = None, extra_css: str = "") -> bytes:
    """Render PDF bytes using WeasyPrint with safe URL fetching."""

    try:
        from weasyprint import CSS, HTML  # noqa: PLC0415
    except (ImportError, OSError) as e:  # pragma: no cover
        raise WeasyPrintUnavailableError(
            "WeasyPrint is not available in this environment (missing system libraries such as Pango). "
            "See https://doc.courtbouillon.org/weasyprint/stable/first_steps.html#installation"
        ) from e

    stylesheets = [CSS(string=PDF_BASE_CSS)]
    if extra_css:
        stylesheets.append(CSS(string=extra_css))

    return HTML(
        string=html,
        base_url=base_url,
        url_fetcher=weasyprint_url_fetcher,
    ).write_pdf(stylesheets=stylesheets)
