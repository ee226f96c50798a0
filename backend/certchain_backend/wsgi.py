"""
WSGI config for certchain_backend project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os
from pathlib import Path

from django.core.wsgi import get_wsgi_application
from dotenv import load_dotenv

# backend/.env first (Docker), then the repository root .env (local dev)
backend_dir = Path(__file__).resolve().parent.parent
if (backend_dir / ".env").exists():
    load_dotenv(backend_dir / ".env")
else:
    load_dotenv(backend_dir.parent / ".env")

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "certchain_backend.settings")

application = get_wsgi_application()
