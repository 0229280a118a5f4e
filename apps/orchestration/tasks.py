"""Celery tasks for analysis orchestration.

These tasks wrap the AnalysisJobRunner for async execution via Celery.
Dispatch claims the entity before queueing; see apps.orchestration.dispatch.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from celery import shared_task
from django.conf import settings
from django.db.models import Max
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def run_analysis_job(
    self,
    job_name: str,
    entity_id: int,
    params: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> dict[str, Any]:
    """
    Celery task to run one analysis job.

    Args:
        job_name: Registered job kind name.
        entity_id: Primary key of the job's entity.
        params: Optional job parameters.
        run_id: Run identifier assigned at dispatch time.

    Returns:
        JobRunResult as dict.
    """
    from apps.orchestration.runner import AnalysisJobRunner

    result = AnalysisJobRunner().run(job_name, entity_id, params=params, run_id=run_id)
    return result.to_dict()


@shared_task
def reconcile_stale_runs() -> dict[str, Any]:
    """
    Repair runs left behind by dead workers or lost broker messages.

    A run stuck in ``running`` past ORCHESTRATION_STALE_RUN_SECONDS is failed,
    which writes fallback content and an error notification. A claim stuck in
    ``pending`` for as long is queued again; the runner only starts a pending
    entity, so a late duplicate message is skipped. Set the threshold to 0 to
    disable the sweep.

    Returns:
        Number of runs failed and requeued per job kind.
    """
    from apps.orchestration.jobs import JOB_REGISTRY
    from apps.orchestration.runner import AnalysisJobRunner

    threshold = int(getattr(settings, "ORCHESTRATION_STALE_RUN_SECONDS", 1200))
    if threshold <= 0:
        return {"status": "disabled"}

    cutoff = timezone.now() - timedelta(seconds=threshold)
    runner = AnalysisJobRunner()
    failed: dict[str, int] = {}
    requeued: dict[str, int] = {}
    for job_name, job_class in JOB_REGISTRY.items():
        machine = job_class.status_machine()
        for entity in machine.stale_running(cutoff).filter(job_class.scope()):
            logger.warning(
                "Failing stale %s run for %s#%s", job_name, type(entity).__name__, entity.pk
            )
            try:
                runner.fail_stale(job_name, entity, threshold)
            except Exception:
                logger.error(
                    "Could not fail stale %s run for %s#%s",
                    job_name,
                    type(entity).__name__,
                    entity.pk,
                    exc_info=True,
                )
                continue
            failed[job_name] = failed.get(job_name, 0) + 1

        for entity_id in machine.stale_pending(cutoff).filter(job_class.scope()).values_list(
            "pk", flat=True
        ):
            logger.warning("Requeueing stale %s claim for entity #%s", job_name, entity_id)
            run_analysis_job.delay(
                job_name=job_name, entity_id=entity_id, params={}, run_id=uuid.uuid4().hex
            )
            requeued[job_name] = requeued.get(job_name, 0) + 1
    return {"status": "ok", "failed": failed, "requeued": requeued}


@shared_task
def analyze_recent_pull_requests() -> dict[str, Any]:
    """
    Weekly sweep for projects on the ``weekly`` update strategy.

    Lists pull requests merged into the primary repository since the
    project's latest changelog entry (or the last week) and queues an
    analysis for each one that has no entry yet.
    """
    from apps.orchestration.dispatch import dispatch_pull_request_analysis
    from apps.orchestration.github import GitHubAPIError, GitHubClient
    from apps.projects.models import Project, UpdateStrategy

    client = GitHubClient()
    summary = {"projects": 0, "dispatched": 0, "errors": 0}
    for project in Project.objects.filter(update_strategy=UpdateStrategy.WEEKLY):
        repository = project.primary_repository
        if repository is None:
            continue

        since = project.updates.aggregate(latest=Max("created_at"))["latest"]
        since = since or timezone.now() - timedelta(days=7)
        try:
            pulls = client.merged_pull_requests(repository.full_name, since)
        except GitHubAPIError as e:
            logger.error("Weekly analysis skipped for %s: %s", project.slug, e)
            summary["errors"] += 1
            continue

        summary["projects"] += 1
        for pull in pulls:
            if project.updates.filter(pull_request_number=pull["number"]).exists():
                continue
            _, dispatched = dispatch_pull_request_analysis(
                project,
                number=pull["number"],
                title=pull.get("title") or "",
                body=pull.get("body") or "",
                url=pull.get("html_url") or "",
                repo=repository.full_name,
            )
            if dispatched:
                summary["dispatched"] += 1
    return {"status": "ok", **summary}
