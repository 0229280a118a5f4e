"""Celery tasks for digest delivery."""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def send_notification_digest(project_id: int) -> dict[str, Any]:
    """
    Compile and deliver the digest for one project.

    Bails out while the project still has jobs in flight; the next job to
    finish schedules this task again.
    """
    from apps.notify.services import DigestService
    from apps.projects.models import Project

    project = Project.objects.filter(pk=project_id).first()
    if project is None:
        return {"status": "missing", "project_id": project_id}

    result = DigestService().send_for_project(project)
    return {
        "status": result.status,
        "project_id": project_id,
        "consumed": result.consumed,
        "sent": result.sent,
        "errors": result.errors,
    }


@shared_task
def send_pending_digests() -> dict[str, Any]:
    """Periodic sweep: send digests for every project with unconsumed notifications."""
    from apps.notify.models import PendingNotification
    from apps.notify.services import DigestService
    from apps.projects.models import Project

    service = DigestService()
    statuses: dict[str, int] = {}
    unconsumed = PendingNotification.objects.filter(digested_at__isnull=True)
    projects = Project.objects.filter(pk__in=unconsumed.values("project_id"))
    for project in projects:
        try:
            status = service.send_for_project(project).status
        except Exception:
            logger.error("Digest sweep failed for project %s", project.pk, exc_info=True)
            status = "error"
        statuses[status] = statuses.get(status, 0) + 1
    return {"status": "ok", "projects": statuses}
