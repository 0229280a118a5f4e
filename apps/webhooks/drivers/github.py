"""
GitHub webhook driver.

Handles merged pull requests; ``ping`` is acknowledged. Payload format:
https://docs.github.com/en/webhooks/webhook-events-and-payloads#pull_request
"""

from __future__ import annotations

import logging
from typing import Any

from apps.webhooks.drivers.base import BaseWebhookDriver, MalformedPayload, ParsedEvent

logger = logging.getLogger(__name__)


class GitHubWebhookDriver(BaseWebhookDriver):
    """Driver for GitHub repository webhooks."""

    name = "github"
    event_header = "X-GitHub-Event"
    signature_header = "X-Hub-Signature-256"
    delivery_header = "X-GitHub-Delivery"

    allowed_events = frozenset({"pull_request", "ping"})
    passive_events = frozenset({"ping"})

    def get_repository(self, payload: dict[str, Any]) -> str:
        repository = payload.get("repository")
        if isinstance(repository, dict):
            return str(repository.get("full_name") or "")
        return ""

    def validate(self, event: ParsedEvent) -> None:
        if event.event_type != "pull_request":
            return
        pull_request = event.payload.get("pull_request")
        if not isinstance(pull_request, dict):
            raise MalformedPayload("pull_request event without a pull_request object")
        if not isinstance(pull_request.get("number"), int):
            raise MalformedPayload("pull_request.number must be an integer")
        if not event.repository:
            raise MalformedPayload("pull_request event without repository.full_name")

    def ignore_reason(self, event: ParsedEvent) -> str | None:
        if event.event_type != "pull_request":
            return None
        pull_request = event.payload["pull_request"]
        if event.action != "closed":
            return f"pull_request action '{event.action}' is not tracked"
        if not pull_request.get("merged"):
            return "pull request was closed without merging"
        return None

    def handle(self, event: ParsedEvent, project) -> tuple[int | None, bool, str]:
        from apps.orchestration.dispatch import dispatch_pull_request_analysis
        from apps.projects.models import UpdateStrategy

        if project.update_strategy != UpdateStrategy.PULL_REQUEST:
            logger.info(
                "Skipping auto-analysis for %s (strategy: %s)",
                event.repository,
                project.update_strategy,
            )
            return None, False, f"project update strategy is '{project.update_strategy}'"

        pull_request = event.payload["pull_request"]
        entry, dispatched = dispatch_pull_request_analysis(
            project,
            number=pull_request["number"],
            title=str(pull_request.get("title") or ""),
            body=str(pull_request.get("body") or ""),
            url=str(pull_request.get("html_url") or ""),
            repo=event.repository,
        )
        return entry.pk, dispatched, ""
