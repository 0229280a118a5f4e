"""
Idempotent job dispatch.

Every entry point that starts analysis work (webhooks, admin actions,
model methods, chained jobs) goes through ``dispatch``: the entity's status
is claimed atomically before the Celery task is queued, so a re-delivered
webhook or a double click cannot start a second run.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from django.db import models

from apps.orchestration.jobs import get_job
from apps.orchestration.state_machine import InvalidTransition, StaleStatus
from apps.projects.models import ArticleUpdateCheck, ChangelogEntry, Project, SourceType

logger = logging.getLogger(__name__)


def dispatch(
    job_name: str,
    entity: models.Model,
    params: dict[str, Any] | None = None,
    countdown: int | None = None,
) -> bool:
    """Claim ``entity`` for ``job_name`` and queue the run.

    Returns:
        True when a run was queued, False when the entity was already
        pending, running, completed or otherwise not startable.

    Raises:
        ValueError: Unknown job name.
        Exception: Whatever the broker raised; the claim is released first.
    """
    from apps.orchestration.tasks import run_analysis_job

    job_class = get_job(job_name)
    machine = job_class.status_machine()
    if not machine.claim(entity):
        logger.info(
            "Not dispatching %s for %s#%s: status is %r",
            job_name,
            type(entity).__name__,
            entity.pk,
            machine.status_of(entity) or "unset",
        )
        return False

    run_id = uuid.uuid4().hex
    kwargs = {
        "job_name": job_name,
        "entity_id": entity.pk,
        "params": params or {},
        "run_id": run_id,
    }
    try:
        if countdown:
            run_analysis_job.apply_async(kwargs=kwargs, countdown=countdown)
        else:
            run_analysis_job.delay(**kwargs)
    except Exception:
        logger.error(
            "Failed to enqueue %s for %s#%s",
            job_name,
            type(entity).__name__,
            entity.pk,
            exc_info=True,
        )
        try:
            machine.release(entity)
        except (InvalidTransition, StaleStatus) as e:
            logger.warning(
                "Could not release claim on %s#%s: %s", type(entity).__name__, entity.pk, e
            )
        raise

    logger.info(
        "Dispatched %s for %s#%s run_id=%s", job_name, type(entity).__name__, entity.pk, run_id
    )
    return True


def redispatch(
    job_name: str,
    entity: models.Model,
    params: dict[str, Any] | None = None,
) -> bool:
    """Re-run ``job_name`` on an entity whose previous run finished.

    Only for explicit operator requests (admin "Regenerate", "Analyze
    codebase" again). A pending or running entity is left alone.
    """
    machine = get_job(job_name).status_machine()
    if machine.reset(entity):
        logger.info(
            "Reset %s on %s#%s for a new run", machine.field, type(entity).__name__, entity.pk
        )
    return dispatch(job_name, entity, params)


def dispatch_pull_request_analysis(
    project: Project,
    *,
    number: int,
    title: str = "",
    body: str = "",
    url: str = "",
    repo: str = "",
) -> tuple[ChangelogEntry, bool]:
    """Create (once) the changelog entry for a merged pull request and analyze it."""
    entry, created = ChangelogEntry.objects.get_or_create(
        project=project,
        source_type=SourceType.PULL_REQUEST,
        pull_request_number=number,
        defaults={
            "pull_request_url": url,
            "source_repo": repo,
            "trigger_title": title[:500],
            "trigger_body": body or "",
        },
    )
    if not created:
        logger.info("Changelog entry for PR #%s of %s already exists", number, project.slug)
    return entry, dispatch("analyze_pull_request", entry)


def dispatch_commit_analysis(
    project: Project,
    *,
    sha: str,
    message: str = "",
    url: str = "",
    repo: str = "",
) -> tuple[ChangelogEntry, bool]:
    """Create (once) the changelog entry for a commit and analyze it."""
    title, _, body = (message or "").partition("\n")
    entry, created = ChangelogEntry.objects.get_or_create(
        project=project,
        source_type=SourceType.COMMIT,
        commit_sha=sha,
        defaults={
            "commit_url": url,
            "source_repo": repo,
            "trigger_title": title.strip()[:500],
            "trigger_body": body.strip(),
        },
    )
    if not created:
        logger.info("Changelog entry for commit %s of %s already exists", sha[:7], project.slug)
    return entry, dispatch("analyze_commit", entry)


def request_article_update_check(
    project: Project, target_commit_sha: str | None = None
) -> tuple[ArticleUpdateCheck | None, bool]:
    """Check the project's articles against changes up to ``target_commit_sha``.

    The base commit is the target of the last completed check, or the
    oldest commit any article was generated from. Only one check per
    project is in flight at a time.
    """
    target = target_commit_sha or project.analysis_commit_sha
    if not target:
        logger.info("No target commit for article update check on %s", project.slug)
        return None, False

    in_flight = project.update_checks.filter(status__in=["pending", "running"]).first()
    if in_flight is not None:
        return in_flight, False

    last = project.update_checks.filter(status="completed").order_by("-completed_at").first()
    if last is not None:
        base = last.target_commit_sha
    else:
        base = (
            project.articles.exclude(source_commit_sha="")
            .order_by("created_at")
            .values_list("source_commit_sha", flat=True)
            .first()
            or ""
        )
    if base == target:
        logger.info("Articles of %s are already checked up to %s", project.slug, target[:7])
        return None, False

    check = ArticleUpdateCheck.objects.create(
        project=project, target_commit_sha=target, base_commit_sha=base
    )
    return check, dispatch("check_article_updates", check)
