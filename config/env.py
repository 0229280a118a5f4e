"""Environment variable loading helpers.

Local configuration (analysis tool credentials, webhook secrets, SMTP
settings) can live in dotenv-style files.

Load order (existing process env vars are never overridden):
- .env
- .env.dev (only when DJANGO_ENV is dev/development/local)

In production, prefer real environment variables instead of dotenv files.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

DEV_ENVIRONMENTS = {"dev", "development", "local"}


def _should_load_dev_env() -> bool:
    return os.environ.get("DJANGO_ENV", "").lower() in DEV_ENVIRONMENTS


def load_env(base_dir: Path | None = None) -> None:
    """Load .env files into the process environment.

    Safe to call multiple times; manage.py, wsgi, Celery and settings all call it.

    Args:
        base_dir: Project root directory. Defaults to the directory above config/.
    """

    if base_dir is None:
        base_dir = Path(__file__).resolve().parent.parent

    load_dotenv(base_dir / ".env", override=False)

    if _should_load_dev_env():
        load_dotenv(base_dir / ".env.dev", override=False)
