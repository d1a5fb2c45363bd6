"""Django settings for the marketplace order service.

Every value is read from the environment so the same image runs in local
development, CI and production. PostgreSQL is used when ``DB_HOST`` is set;
otherwise the service falls back to a local SQLite file, which is what the
test-suite runs against.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-secret-key")
DEBUG = _env_bool("DJANGO_DEBUG")
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.inventory",
    "apps.orders",
    "apps.payments",
    "apps.monitoring",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": os.getenv("DB_HOST"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "NAME": os.getenv("DB_NAME", "marketplace"),
            "USER": os.getenv("DB_USER", "marketplace"),
            "PASSWORD": os.getenv("DB_PASSWORD", "marketplace"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
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

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": ["gateway.auth.HeaderActorAuthentication"],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "EXCEPTION_HANDLER": "gateway.exceptions.api_exception_handler",
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_THROTTLE_RATES": {
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "120/min"),
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "600/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "600/min"),
        "payments": os.getenv("THROTTLE_PAYMENTS", "120/min"),
        "webhooks": os.getenv("THROTTLE_WEBHOOKS", "1200/min"),
    },
}

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}

# ---- Gateway ----
API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

# ---- Outbound HTTP (provider adapters) ----
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", "1")
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "10"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))

# ---- Orders ----
MARKETPLACE_CURRENCY = os.getenv("MARKETPLACE_CURRENCY", "XOF")
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "MKT")

SHIPPING_POLICY = {
    "domestic_country": os.getenv("SHIPPING_DOMESTIC_COUNTRY", "TG"),
    "domestic_fee": int(os.getenv("SHIPPING_DOMESTIC_FEE", "2000")),
    "free_threshold": int(os.getenv("SHIPPING_FREE_THRESHOLD", "50000")),
    "international_fee": int(os.getenv("SHIPPING_INTERNATIONAL_FEE", "15000")),
}

# ---- Payments ----
PAYMENT_CALLBACK_BASE_URL = os.getenv("PAYMENT_CALLBACK_BASE_URL", "http://localhost:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")


def _provider(prefix: str, fee_percent: str) -> dict:
    return {
        "base_url": os.getenv(f"{prefix}_API_URL", ""),
        "merchant_id": os.getenv(f"{prefix}_MERCHANT_ID", ""),
        "api_key": os.getenv(f"{prefix}_API_KEY", ""),
        "secret_key": os.getenv(f"{prefix}_SECRET_KEY", ""),
        "client_id": os.getenv(f"{prefix}_CLIENT_ID", ""),
        "client_secret": os.getenv(f"{prefix}_CLIENT_SECRET", ""),
        "webhook_secret": os.getenv(f"{prefix}_WEBHOOK_SECRET", ""),
        "fee_percent": os.getenv(f"{prefix}_FEE_PERCENT", fee_percent),
        "fee_min": int(os.getenv(f"{prefix}_FEE_MIN", "100")),
        "fee_max": int(os.getenv(f"{prefix}_FEE_MAX", "2000")),
    }


PAYMENT_PROVIDERS = {
    "tmoney": _provider("TMONEY", "1.5"),
    "flooz": _provider("FLOOZ", "1.5"),
    "orange_money": _provider("ORANGE_MONEY", "2.0"),
    "mtn_money": _provider("MTN_MONEY", "2.0"),
}
