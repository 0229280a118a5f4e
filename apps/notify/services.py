"""Notification queueing and digest delivery.

NotificationQueue records job outcomes as PendingNotification rows and
schedules a digest once the project is idle. DigestService compiles and
delivers the digest:

1. Defer while any job of the project is pending or running
2. Claim the unconsumed rows by setting ``digested_at`` (one sender wins)
3. Drop everything when email notifications are disabled, and drop muted event types
4. Compile one Digest per recipient and deliver it through the notify driver
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings
from django.utils import timezone

from apps.notify.digest import Digest, NotificationAggregator
from apps.notify.drivers import NotificationMessage, get_notify_driver
from apps.notify.models import EventType, NotificationStatus, PendingNotification

logger = logging.getLogger(__name__)


class NotificationQueue:
    """Record pending notifications for finished runs."""

    def record(
        self,
        project,
        *,
        event_type: str,
        status: str,
        message: str,
        action_url: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> PendingNotification | None:
        """Create the row and schedule a digest when the project is idle.

        Returns None (after logging) when the row could not be stored.
        """
        try:
            notification = PendingNotification.objects.create(
                project=project,
                recipient=project.owner_email,
                event_type=event_type,
                status=status,
                message=message,
                action_url=action_url or "",
                metadata=metadata or {},
            )
        except Exception:
            logger.error(
                "Failed to record pending notification %s for project %s",
                event_type,
                project.pk,
                exc_info=True,
            )
            return None

        if not project.has_running_jobs():
            self.schedule_digest(project)
        return notification

    @staticmethod
    def schedule_digest(project) -> None:
        from apps.notify.tasks import send_notification_digest

        delay = int(getattr(settings, "NOTIFY_DIGEST_DELAY_SECONDS", 30))
        try:
            send_notification_digest.apply_async(kwargs={"project_id": project.pk}, countdown=delay)
        except Exception:
            # The periodic sweep picks the rows up later.
            logger.error("Failed to schedule digest for project %s", project.pk, exc_info=True)


@dataclass
class DigestResult:
    """Outcome of one send_for_project call.

    status is one of: "sent", "deferred", "empty", "muted", "failed".
    """

    project_id: int
    status: str
    digests: list[Digest] = field(default_factory=list)
    consumed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return len(self.digests) - len(self.errors)


class DigestService:
    """Compile and deliver digests for a project."""

    def __init__(self, aggregator: NotificationAggregator | None = None, driver=None, config=None):
        self.aggregator = aggregator or NotificationAggregator()
        self._driver = driver
        self._config = config

    @property
    def driver(self):
        if self._driver is None:
            self._driver = get_notify_driver()
        return self._driver

    @property
    def config(self) -> dict[str, Any]:
        if self._config is None:
            self._config = dict(getattr(settings, "NOTIFY_CONFIG", {}) or {})
        return self._config

    def send_for_project(self, project, *, force: bool = False) -> DigestResult:
        if not force and project.has_running_jobs():
            logger.info("Deferring digest for %s: jobs still running", project.slug)
            return DigestResult(project.pk, "deferred")

        batch = self.claim_batch(project)
        if not batch:
            return DigestResult(project.pk, "empty")
        result = DigestResult(project.pk, "muted", consumed=len(batch))

        if not project.email_notifications_enabled:
            logger.info(
                "Email notifications disabled for %s; dropping %s events", project.slug, len(batch)
            )
            return result

        muted = set(project.disabled_email_events or [])
        batch = [n for n in batch if n.event_type not in muted]
        if not batch:
            return result

        by_recipient: dict[str, list[PendingNotification]] = {}
        for notification in batch:
            recipient = notification.recipient or project.owner_email
            if not recipient:
                logger.warning(
                    "No digest recipient for project %s; dropping %s", project.slug, notification
                )
                continue
            by_recipient.setdefault(recipient, []).append(notification)

        for recipient, notifications in by_recipient.items():
            digest = self.aggregator.compile(project, notifications, recipient=recipient)
            result.digests.append(digest)
            error = self.deliver(digest, project)
            if error:
                result.errors.append(error)

        if result.digests:
            result.status = "failed" if result.errors and not result.sent else "sent"
        return result

    def claim_batch(self, project) -> list[PendingNotification]:
        """Atomically mark the project's unconsumed rows and return them."""
        unconsumed = project.pending_notifications.filter(digested_at__isnull=True)
        ids = list(unconsumed.values_list("id", flat=True))
        if not ids:
            return []
        now = timezone.now()
        claimed = PendingNotification.objects.filter(id__in=ids, digested_at__isnull=True).update(
            digested_at=now
        )
        if not claimed:
            return []
        batch = PendingNotification.objects.filter(id__in=ids, digested_at=now)
        return list(batch.order_by("created_at", "id"))

    def deliver(self, digest: Digest, project) -> str | None:
        """Render and send one digest. Returns an error string on failure."""
        try:
            message = NotificationMessage.from_digest(digest, project, self.config)
        except ValueError as e:
            logger.error("Failed to render digest for %s: %s", project.slug, e)
            return str(e)

        response = self.driver.send(message, self.config)
        if not response.get("success"):
            logger.error(
                "Digest delivery via %s failed for %s: %s",
                self.driver.name,
                project.slug,
                response.get("error"),
            )
            return str(response.get("error") or "delivery failed")

        logger.info(
            "Sent digest '%s' to %s (%s events)",
            digest.subject,
            digest.recipient,
            len(digest.notification_ids) or len(digest.successes) + len(digest.failures),
        )
        return None

    def send_sample(self, project) -> DigestResult:
        """Deliver a digest built from unsaved placeholder events."""
        notifications = sample_notifications(project)
        digest = self.aggregator.compile(project, notifications)
        result = DigestResult(project.pk, "sent", digests=[digest])
        error = self.deliver(digest, project)
        if error:
            result.status = "failed"
            result.errors.append(error)
        return result


def sample_notifications(project) -> list[PendingNotification]:
    """Unsaved notifications covering the common events, for previews."""
    samples = [
        (
            EventType.ARTICLE_GENERATED,
            "Your article 'Getting Started Guide' is ready to review.",
            {"article_title": "Getting Started Guide"},
        ),
        (
            EventType.RECOMMENDATIONS_GENERATED,
            "3 new article ideas.",
            {"recommendation_count": 3},
        ),
        (
            EventType.PR_ANALYZED,
            "We've reviewed code changes from PR #42",
            {
                "pr_number": 42,
                "pr_title": "Add OAuth login",
                "article_titles": ["Sign in with OAuth"],
            },
        ),
    ]
    return [
        PendingNotification(
            project=project,
            recipient=project.owner_email,
            event_type=event_type,
            status=NotificationStatus.SUCCESS,
            message=message,
            action_url=project.url,
            metadata=metadata,
        )
        for event_type, message, metadata in samples
    ]
