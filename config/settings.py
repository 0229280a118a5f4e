"""Django settings for the supportpages pipeline.

All runtime knobs come from environment variables (optionally loaded from
.env / .env.dev via config.env.load_env). Defaults are suitable for local
development and the test suite.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from config.env import load_env

BASE_DIR = Path(__file__).resolve().parent.parent

load_env(BASE_DIR)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_json(name: str, default):
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = _env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "config.apps.SupportPagesAdminConfig",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_json_widget",
    "apps.projects",
    "apps.intelligence",
    "apps.orchestration",
    "apps.webhooks",
    "apps.notify",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "config" / "templates"],
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

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"
STATIC_URL = "static/"
MEDIA_ROOT = os.environ.get("MEDIA_ROOT", str(BASE_DIR / "media"))
MEDIA_URL = "media/"

SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")

# --- Celery -----------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TASK_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_BEAT_SCHEDULE = {
    "send-pending-digests": {
        "task": "apps.notify.tasks.send_pending_digests",
        "schedule": _env_int("NOTIFY_DIGEST_SWEEP_SECONDS", 300),
    },
    "reconcile-stale-runs": {
        "task": "apps.orchestration.tasks.reconcile_stale_runs",
        "schedule": _env_int("ORCHESTRATION_RECONCILE_SECONDS", 600),
    },
    "analyze-recent-pull-requests": {
        "task": "apps.orchestration.tasks.analyze_recent_pull_requests",
        "schedule": _env_int("WEEKLY_ANALYSIS_SECONDS", 7 * 24 * 60 * 60),
    },
}

# --- External analysis tool ---------------------------------------------------

# "docker" runs the claude-analyzer image; "claude" calls the Anthropic API directly.
ANALYSIS_TOOL = os.environ.get("ANALYSIS_TOOL", "docker")
ANALYSIS_TOOL_CONFIG = _env_json("ANALYSIS_TOOL_CONFIG", {})
ANALYSIS_DOCKER_IMAGE = os.environ.get(
    "ANALYSIS_DOCKER_IMAGE", "supportpages/claude-analyzer:latest"
)
ANALYSIS_DOCKERFILE_DIR = os.environ.get(
    "ANALYSIS_DOCKERFILE_DIR", str(BASE_DIR / "docker" / "claude-analyzer")
)
ANALYSIS_OUTPUT_DIR = os.environ.get("ANALYSIS_OUTPUT_DIR", str(BASE_DIR / "tmp" / "analysis"))
KEEP_ANALYSIS_OUTPUT = _env_bool("KEEP_ANALYSIS_OUTPUT", False)
HOST_PROJECT_PATH = os.environ.get("HOST_PROJECT_PATH", "")
ANALYSIS_TIMEOUT_SECONDS = {
    "analyze_codebase": 600,
    "suggest_sections": 300,
    "analyze_pull_request": 300,
    "analyze_commit": 300,
    "generate_project_recommendations": 300,
    "generate_section_recommendations": 300,
    "generate_article": 300,
    "check_article_updates": 600,
    "render_step_image": 120,
}
ANALYSIS_TIMEOUT_SECONDS.update(_env_json("ANALYSIS_TIMEOUT_SECONDS", {}))

STEP_IMAGE_MAX_RENDER_ATTEMPTS = _env_int("STEP_IMAGE_MAX_RENDER_ATTEMPTS", 3)
STEP_IMAGE_RETRY_COUNTDOWN_SECONDS = _env_int("STEP_IMAGE_RETRY_COUNTDOWN_SECONDS", 30)

# Runs stuck in "running" longer than this are failed, and claims stuck in
# "pending" as long are queued again. 0 disables.
ORCHESTRATION_STALE_RUN_SECONDS = _env_int("ORCHESTRATION_STALE_RUN_SECONDS", 1200)

# Dotted path to a MonitoringBackend subclass for job signals; empty logs them.
ORCHESTRATION_METRICS_BACKEND = os.environ.get("ORCHESTRATION_METRICS_BACKEND", "")

# --- Webhooks ------------------------------------------------------------------

GITHUB_WEBHOOK_SECRET = os.environ.get("GITHUB_WEBHOOK_SECRET", "")

# Used by the weekly pull request sweep for projects on the "weekly" strategy.
GITHUB_API_TOKEN = os.environ.get("GITHUB_API_TOKEN", "")
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")

# --- Notifications -------------------------------------------------------------

NOTIFY_DRIVER = os.environ.get("NOTIFY_DRIVER", "generic")
NOTIFY_CONFIG = _env_json("NOTIFY_CONFIG", {})
NOTIFY_DIGEST_DELAY_SECONDS = _env_int("NOTIFY_DIGEST_DELAY_SECONDS", 30)

# --- Logging -------------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
