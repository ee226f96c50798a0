"""
Django settings for certchain_backend project.

Configuration baseline for the CertChain backend:
- DRF + JWT (SimpleJWT)
- CORS Headers
- PostgreSQL via environment variables with a SQLite fallback for development
- Custom user model in `users.User`
- Celery for ledger anchoring, web3 for the certificate ledger
"""

from pathlib import Path
import os

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "DJANGO_SECRET_KEY",
    "django-insecure-9w$k2v!p1c7o^m3@qz8t0x#lb5e4rj6h_dn)gfa+ys*u2i-wc",
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"

ALLOWED_HOSTS = (
    os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",")
    if os.getenv("DJANGO_ALLOWED_HOSTS")
    else (["*"] if DEBUG else [])
)


# Application definition

INSTALLED_APPS = [
    # Django core
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party
    "rest_framework",
    "corsheaders",
    "django_filters",

    # Local apps
    "core",
    "users",
    "whitelist",
    "applications",
    "certificates",
    "ledger",
    "verification",
    "notifications",
    "audit",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    # CORS must sit as high as possible, right after SecurityMiddleware
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "certchain_backend.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "certchain_backend.wsgi.application"


# Database
# PostgreSQL via environment variables; SQLite fallback for local development
if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "CONN_MAX_AGE": 60,
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]


LANGUAGE_CODE = "en-us"

TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "UTC")

USE_I18N = True

USE_TZ = True


STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

MEDIA_URL = "/media/"
MEDIA_ROOT = BASE_DIR / "media"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Django REST Framework
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "DEFAULT_FILTER_BACKENDS": (
        "django_filters.rest_framework.DjangoFilterBackend",
    ),
    "DEFAULT_THROTTLE_RATES": {
        "public_verify": os.getenv("PUBLIC_VERIFY_THROTTLE_RATE_DEFAULT", "60/min"),
        "public_whitelist_check": os.getenv("PUBLIC_WHITELIST_CHECK_THROTTLE_RATE_DEFAULT", "20/min"),
    },
}

# CORS
CORS_ALLOWED_ORIGINS = [
    origin
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]

if DEBUG and not CORS_ALLOWED_ORIGINS:
    CORS_ALLOW_ALL_ORIGINS = True

# Custom user
AUTH_USER_MODEL = "users.User"


# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("DJANGO_LOG_LEVEL", "WARNING").upper(),
            "propagate": False,
        },
    },
}


# Celery (anchoring runs in workers, never in the request cycle)
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() == "true"
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TASK_ACKS_LATE = True
CELERY_BEAT_SCHEDULE = {
    "reconcile-stuck-anchoring": {
        "task": "certificates.tasks.reconcile_stuck_anchoring",
        "schedule": float(os.getenv("ANCHORING_RECONCILE_INTERVAL_SECONDS", "300")),
    },
}


# Ledger
LEDGER_GATEWAY_CLASS = os.getenv("LEDGER_GATEWAY_CLASS", "ledger.gateway.Web3LedgerGateway")
LEDGER_RPC_URL = os.getenv("LEDGER_RPC_URL", "http://127.0.0.1:8545")
LEDGER_SIGNER_PRIVATE_KEY = os.getenv("LEDGER_SIGNER_PRIVATE_KEY", "")
LEDGER_CONTRACT_PATH = os.getenv(
    "LEDGER_CONTRACT_PATH",
    str(BASE_DIR / "ledger" / "contracts" / "InternshipCertification.json"),
)
LEDGER_CHAIN_ID = int(os.getenv("LEDGER_CHAIN_ID", "31337"))
LEDGER_TX_TIMEOUT_SECONDS = int(os.getenv("LEDGER_TX_TIMEOUT_SECONDS", "60"))
LEDGER_GAS_LIMIT = int(os.getenv("LEDGER_GAS_LIMIT", "3000000"))

# Anchoring
ANCHORING_AUTO_ON_APPROVAL = os.getenv("ANCHORING_AUTO_ON_APPROVAL", "true").lower() == "true"
ANCHORING_STUCK_AFTER_MINUTES = int(os.getenv("ANCHORING_STUCK_AFTER_MINUTES", "15"))
ANCHORING_BATCH_LIMIT = 50


# Public verification
PUBLIC_SITE_URL = os.getenv("PUBLIC_SITE_URL", "http://localhost:5173")
PUBLIC_VERIFY_THROTTLE_RATE = os.getenv("PUBLIC_VERIFY_THROTTLE_RATE", "")
PUBLIC_WHITELIST_CHECK_THROTTLE_RATE = os.getenv("PUBLIC_WHITELIST_CHECK_THROTTLE_RATE", "")


# Private storage (certificate PDFs are never served from MEDIA)
PRIVATE_STORAGE_ROOT = Path(os.getenv("PRIVATE_STORAGE_ROOT", str(BASE_DIR / "private")))
PRIVATE_CERTIFICATES_DIR = os.getenv("PRIVATE_CERTIFICATES_DIR", "certificates")
