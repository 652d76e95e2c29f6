"""
Base Django settings for the config server project.
All environment variables are read via python-decouple.
"""
from pathlib import Path

from decouple import Csv, config

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# ---------------------------------------------------------------------------
# Security – loaded from environment, never hardcoded
# ---------------------------------------------------------------------------
SECRET_KEY = config("SECRET_KEY")

ALLOWED_HOSTS = config("ALLOWED_HOSTS", default="localhost,127.0.0.1", cast=Csv())

# ---------------------------------------------------------------------------
# Application definition
# ---------------------------------------------------------------------------
DJANGO_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "django.contrib.staticfiles",
]

THIRD_PARTY_APPS = [
    "rest_framework",
    "drf_spectacular",
]

LOCAL_APPS = [
    "apps.config_server",
]

INSTALLED_APPS = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

# Authentication, sessions and CSRF are handled in front of this service.
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "common.middleware.StructuredLoggingMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# ---------------------------------------------------------------------------
# Database – none; configuration lives in the Git repository
# ---------------------------------------------------------------------------
DATABASES = {}

# ---------------------------------------------------------------------------
# Internationalisation
# ---------------------------------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# ---------------------------------------------------------------------------
# Static files
# ---------------------------------------------------------------------------
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Configuration repository
# ---------------------------------------------------------------------------
CONFIG_GIT_URI = config("CONFIG_GIT_URI", default="")
CONFIG_GIT_BASEDIR = config("CONFIG_GIT_BASEDIR", default=str(BASE_DIR / "var" / "config-repo"))
CONFIG_GIT_DEFAULT_LABEL = config("CONFIG_GIT_DEFAULT_LABEL", default="main")
CONFIG_GIT_TIMEOUT = config("CONFIG_GIT_TIMEOUT", default=10.0, cast=float)
CONFIG_GIT_SEARCH_PATHS = config("CONFIG_GIT_SEARCH_PATHS", default="", cast=Csv())
# YAML before .properties when both exist for the same base name.
CONFIG_PREFER_NESTED = config("CONFIG_PREFER_NESTED", default=True, cast=bool)

# ---------------------------------------------------------------------------
# Encryption – symmetric secret, RSA keystore, custom provider, or none
# ---------------------------------------------------------------------------
ENCRYPT_ENABLED = config("ENCRYPT_ENABLED", default=True, cast=bool)
ENCRYPT_KEY = config("ENCRYPT_KEY", default="")
ENCRYPT_SALT = config("ENCRYPT_SALT", default="deadbeef")
ENCRYPT_KEY_STORE_LOCATION = config("ENCRYPT_KEY_STORE_LOCATION", default="")
ENCRYPT_KEY_STORE_PASSWORD = config("ENCRYPT_KEY_STORE_PASSWORD", default="")
ENCRYPT_KEY_STORE_ALIAS = config("ENCRYPT_KEY_STORE_ALIAS", default="")
ENCRYPT_KEY_STORE_SECRET = config("ENCRYPT_KEY_STORE_SECRET", default="")
ENCRYPT_KEY_PROVIDER = config("ENCRYPT_KEY_PROVIDER", default="")
# "app/profile=alias,app=alias" – per-client key for /encrypt/{app}/{profile}
ENCRYPT_CLIENT_KEYS = config("ENCRYPT_CLIENT_KEYS", default="", cast=Csv())

# ---------------------------------------------------------------------------
# Django REST Framework
# ---------------------------------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "common.exceptions.custom_exception_handler",
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
    ],
}

# ---------------------------------------------------------------------------
# drf-spectacular (OpenAPI 3)
# ---------------------------------------------------------------------------
SPECTACULAR_SETTINGS = {
    "TITLE": "Config Server API",
    "DESCRIPTION": "Git-backed configuration server with property-level encryption.",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
}

# ---------------------------------------------------------------------------
# Structured logging via structlog
# ---------------------------------------------------------------------------
import structlog  # noqa: E402

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json_formatter": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processor": structlog.processors.JSONRenderer(),
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json_formatter",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "apps": {
            "handlers": ["console"],
            "level": "DEBUG",
            "propagate": False,
        },
    },
}

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)
