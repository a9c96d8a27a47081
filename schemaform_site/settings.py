"""Django settings for the schemaform site."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get(
    "DJANGO_SECRET_KEY",
    "django-insecure-change-me-in-production",
)

DEBUG = os.environ.get("DJANGO_DEBUG", "True").lower() in ("true", "1", "yes")

ALLOWED_HOSTS = ["*"]

# --- Installed apps ---

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    # Third-party
    "rest_framework",
    # Local
    "schemaform",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "schemaform_site.urls"

WSGI_APPLICATION = "schemaform_site.wsgi.application"

# --- Database ---
# schemaform keeps no models; the database only backs contrib apps.

DATABASES = {
    "default": {
        "ENGINE": os.environ.get("DATABASE_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("DATABASE_NAME", str(BASE_DIR / "db.sqlite3")),
    }
}

# --- Internationalization ---

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# --- Django REST Framework ---

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "UNAUTHENTICATED_USER": None,
}

# --- Logging ---

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "schemaform": {
            "handlers": ["console"],
            "level": os.environ.get("LOG_LEVEL", "INFO"),
        },
    },
}

# --- Remote schema references ---

SCHEMAFORM_REMOTE_ENABLED = os.environ.get("SCHEMAFORM_REMOTE_ENABLED", "True").lower() in ("true", "1", "yes")
SCHEMAFORM_REMOTE_TIMEOUT = float(os.environ.get("SCHEMAFORM_REMOTE_TIMEOUT", "30"))
SCHEMAFORM_REMOTE_MAX_WORKERS = int(os.environ.get("SCHEMAFORM_REMOTE_MAX_WORKERS", "4"))
# Hosts the HTTP API may fetch remote references from (comma-separated,
# "*" for any). Empty means the API never fetches remote references.
SCHEMAFORM_REMOTE_ALLOWED_HOSTS = [
    host.strip() for host in os.environ.get("SCHEMAFORM_REMOTE_ALLOWED_HOSTS", "").split(",") if host.strip()
]
