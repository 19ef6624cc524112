import os
from decimal import Decimal
from pathlib import Path

from .logging_config import get_logging_config

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-dev-key-change-me")
DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "ledger_core",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    # must come after AuthenticationMiddleware, needs request.user
    "ledger_core.middleware.CurrentCompanyMiddleware",
]

ROOT_URLCONF = "ledger_project.urls"

# PostgreSQL when configured, SQLite otherwise (local runs and tests)
if os.environ.get("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.environ.get("POSTGRES_USER", "postgres"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

LOGGING = get_logging_config(debug=DEBUG)

# Celery
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "memory://")
CELERY_TASK_ALWAYS_EAGER = os.environ.get("CELERY_TASK_ALWAYS_EAGER", "true").lower() in ("1", "true", "yes")

# Ledger engine
LEDGER_DEFAULT_TAX_RATE = Decimal(os.environ.get("LEDGER_DEFAULT_TAX_RATE", "0.10"))
LEDGER_PAYMENT_MAX_ATTEMPTS = int(os.environ.get("LEDGER_PAYMENT_MAX_ATTEMPTS", "3"))
LEDGER_READ_MAX_ATTEMPTS = int(os.environ.get("LEDGER_READ_MAX_ATTEMPTS", "3"))
LEDGER_RETRY_BACKOFF_SECONDS = float(os.environ.get("LEDGER_RETRY_BACKOFF_SECONDS", "0.05"))
LEDGER_AUDIT_LOG_LIMIT = int(os.environ.get("LEDGER_AUDIT_LOG_LIMIT", "100"))
