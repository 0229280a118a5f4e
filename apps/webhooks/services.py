"""
Webhook ingress service.

Runs the checks for one delivery in order and reports the outcome as an
IngressResult; nothing here raises for a bad request:

1. Signature (HMAC-SHA256 of the raw body)           -> 401
2. JSON body                                          -> 400
3. Event type allow-list                              -> 200 ignored
4. Event filter (e.g. only merged pull requests)      -> 200 ignored
5. Project resolution by repository full name        -> 404
6. Project preferences and idempotent dispatch        -> 200 / 202
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from django.conf import settings

from apps.projects.models import Project, ProjectRepository
from apps.webhooks.drivers import BaseWebhookDriver, MalformedPayload

logger = logging.getLogger(__name__)


@dataclass
class IngressResult:
    status_code: int
    status: str
    message: str = ""
    entity_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("status_code")
        if data["entity_id"] is None:
            data.pop("entity_id")
        return data


class WebhookIngress:
    """Verify, filter and dispatch one webhook delivery for a driver."""

    def __init__(self, driver: BaseWebhookDriver):
        self.driver = driver

    def handle(
        self,
        body: bytes,
        headers: Mapping[str, str],
        project_slug: str | None = None,
    ) -> IngressResult:
        project = None
        if project_slug is not None:
            project = Project.objects.filter(slug=project_slug).first()
            if project is None:
                return IngressResult(404, "error", f"Unknown project: {project_slug}")
            secret = project.webhook_secret
        else:
            secret = getattr(settings, "GITHUB_WEBHOOK_SECRET", "")

        signature = headers.get(self.driver.signature_header, "") or ""
        if not self.driver.verify_signature(secret, body, signature):
            logger.warning(
                "Invalid %s webhook signature (project=%s)", self.driver.name, project_slug or "-"
            )
            return IngressResult(401, "error", "Invalid signature")

        try:
            event = self.driver.parse(body, headers)
        except MalformedPayload as e:
            logger.warning("Malformed %s webhook payload: %s", self.driver.name, e)
            return IngressResult(400, "error", str(e))

        if event.event_type not in self.driver.allowed_events:
            logger.debug("Ignoring %s event %r", self.driver.name, event.event_type)
            return IngressResult(200, "ignored", f"Event '{event.event_type}' is not handled")
        if event.event_type in self.driver.passive_events:
            return IngressResult(200, "ok", f"{event.event_type} received")

        reason = self.driver.ignore_reason(event)
        if reason:
            return IngressResult(200, "ignored", reason)

        project = self.resolve_project(event.repository, project)
        if project is None:
            logger.warning("No project found for repo: %s", event.repository)
            return IngressResult(404, "error", f"No project for repository {event.repository}")

        entity_id, dispatched, skip_reason = self.driver.handle(event, project)
        if skip_reason:
            return IngressResult(200, "skipped", skip_reason)
        if not dispatched:
            logger.info(
                "Duplicate %s delivery %s for %s",
                self.driver.name,
                event.delivery_id,
                event.repository,
            )
            return IngressResult(200, "duplicate", "Already analyzed or in progress", entity_id)

        logger.info(
            "Accepted %s %s delivery %s for %s",
            self.driver.name,
            event.event_type,
            event.delivery_id,
            project.slug,
        )
        return IngressResult(202, "accepted", "Analysis queued", entity_id)

    @staticmethod
    def resolve_project(repository: str, project: Project | None = None) -> Project | None:
        """Project owning ``repository``; restricted to ``project`` when given."""
        repos = ProjectRepository.objects.select_related("project").filter(full_name=repository)
        if project is not None:
            repos = repos.filter(project=project)
        repo = repos.first()
        return repo.project if repo is not None else None
