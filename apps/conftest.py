"""Shared test fixtures for all apps."""

from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def isolated_pipeline(settings, tmp_path):
    """Keep tool output and media under tmp_path and keep Celery off the broker.

    Tests that care about queued tasks patch the task again locally.
    """
    settings.ANALYSIS_OUTPUT_DIR = str(tmp_path / "analysis")
    settings.MEDIA_ROOT = str(tmp_path / "media")
    settings.KEEP_ANALYSIS_OUTPUT = False
    settings.NOTIFY_DRIVER = "generic"
    settings.NOTIFY_CONFIG = {}
    settings.SITE_URL = "https://pages.example.com"
    settings.GITHUB_WEBHOOK_SECRET = "app-secret"
    with (
        patch("apps.orchestration.tasks.run_analysis_job") as run_analysis_job,
        patch("apps.notify.tasks.send_notification_digest") as send_notification_digest,
    ):
        yield {
            "run_analysis_job": run_analysis_job,
            "send_notification_digest": send_notification_digest,
        }
