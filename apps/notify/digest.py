"""
Digest compilation.

Merges a batch of pending notifications for one project into a single
message: a subject built from the most important success, one call to
action, an optional content preview and a per-event breakdown.

Compilation only reads from the database, so compiling the same batch twice
gives the same Digest.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from django.utils.text import Truncator

from apps.notify.models import EventType, NotificationStatus, PendingNotification, pluralize

logger = logging.getLogger(__name__)

# Most important first. Used for the subject headline and the call to action.
HEADLINE_PRIORITY: tuple[str, ...] = (
    EventType.ARTICLE_GENERATED,
    EventType.RECOMMENDATIONS_GENERATED,
    EventType.SECTIONS_SUGGESTED,
    EventType.ANALYSIS_COMPLETE,
    EventType.PR_ANALYZED,
    EventType.COMMIT_ANALYZED,
)

CTA_LABELS = {
    EventType.ARTICLE_GENERATED: "Review & Publish",
    EventType.RECOMMENDATIONS_GENERATED: "Review Recommendations",
    EventType.SECTIONS_SUGGESTED: "Choose Your Sections",
    EventType.PR_ANALYZED: "View Changes",
    EventType.COMMIT_ANALYZED: "View Changes",
}
DEFAULT_CTA_LABEL = "Open Project"

PREVIEW_INTRO_LENGTH = 250
PREVIEW_RECOMMENDATION_COUNT = 3

SAMPLE_ARTICLE_PREVIEW = {
    "title": "Getting Started Guide",
    "intro": (
        "Welcome to the project. This guide walks you through setting up your "
        "development environment, installing dependencies, and running your first "
        "build. By the end, you'll have a fully working local setup ready for "
        "development..."
    ),
    "url": "#",
}
SAMPLE_RECOMMENDATION_TITLES = ["Getting Started Guide", "Authentication Setup", "API Reference"]


def event_rank(event_type: str) -> int | None:
    """Position of ``event_type`` in HEADLINE_PRIORITY; None when it never headlines."""
    try:
        return HEADLINE_PRIORITY.index(event_type)
    except ValueError:
        return None


@dataclass
class CallToAction:
    label: str
    url: str


@dataclass
class ContentPreview:
    type: str  # "article" or "recommendations"
    url: str = ""
    title: str = ""
    intro: str = ""
    titles: list[str] = field(default_factory=list)


@dataclass
class DigestLine:
    event_type: str
    status: str
    message: str
    detail: str | None = None
    next_step: str | None = None
    action_url: str = ""


@dataclass
class Digest:
    """Compiled digest for one recipient and project."""

    project_id: int
    recipient: str
    subject: str
    headline_event: str | None
    cta: CallToAction
    preview: ContentPreview | None
    successes: list[DigestLine] = field(default_factory=list)
    failures: list[DigestLine] = field(default_factory=list)
    notification_ids: list[int] = field(default_factory=list)

    @property
    def preview_type(self) -> str:
        return self.preview.type if self.preview else "none"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["preview_type"] = self.preview_type
        return data


class NotificationAggregator:
    """Compile pending notifications into a Digest."""

    def compile(
        self, project, notifications: Iterable[PendingNotification], recipient: str = ""
    ) -> Digest:
        notifications = list(notifications)
        successes = [n for n in notifications if n.status == NotificationStatus.SUCCESS]
        failures = [n for n in notifications if n.status != NotificationStatus.SUCCESS]
        headline = self.select_headline(successes)

        return Digest(
            project_id=project.pk,
            recipient=recipient or project.owner_email,
            subject=self.build_subject(project, headline, successes, failures),
            headline_event=headline.event_type if headline else None,
            cta=self.build_cta(project, successes),
            preview=self.build_preview(project, notifications),
            successes=[self._line(n) for n in successes],
            failures=[self._line(n) for n in failures],
            notification_ids=[n.pk for n in notifications if n.pk is not None],
        )

    @staticmethod
    def select_headline(successes: list[PendingNotification]) -> PendingNotification | None:
        """Highest-ranked success; the earliest one when a type occurs several times."""
        best = None
        best_rank = None
        for n in successes:
            rank = event_rank(n.event_type)
            if rank is not None and (best_rank is None or rank < best_rank):
                best, best_rank = n, rank
        return best

    def build_subject(
        self,
        project,
        headline: PendingNotification | None,
        successes: list[PendingNotification],
        failures: list[PendingNotification],
    ) -> str:
        if headline is not None:
            if failures:
                extra = f" ({len(failures)} {pluralize(len(failures), 'issue')})"
            elif len(successes) > 1:
                extra = f" + {len(successes) - 1} more"
            else:
                extra = ""
            return f"{project.name}: {self.headline_text(headline)}{extra}"

        if failures and successes:
            return f"{project.name}: {len(successes)} completed, {len(failures)} failed"
        if failures:
            return f"{project.name}: {len(failures)} {pluralize(len(failures), 'task')} failed"
        return f"{project.name}: {len(successes)} {pluralize(len(successes), 'task')} completed"

    @staticmethod
    def headline_text(notification: PendingNotification) -> str:
        metadata = notification.metadata or {}
        event_type = notification.event_type
        if event_type == EventType.ARTICLE_GENERATED:
            return "Your article is ready to review"
        if event_type == EventType.RECOMMENDATIONS_GENERATED:
            count = metadata.get("recommendation_count")
            return f"{count} new article ideas" if count else "New article ideas are waiting"
        if event_type == EventType.SECTIONS_SUGGESTED:
            return "Your doc sections are ready to review"
        if event_type == EventType.ANALYSIS_COMPLETE:
            return "Your codebase analysis is complete"
        if event_type == EventType.PR_ANALYZED:
            number = metadata.get("pr_number")
            if number:
                return f"PR #{number} has been reviewed"
            return "A pull request has been reviewed"
        sha = (metadata.get("commit_sha") or "")[:7]
        return f"Commit {sha} has been reviewed" if sha else "A commit has been reviewed"

    @staticmethod
    def build_cta(project, successes: list[PendingNotification]) -> CallToAction:
        """Label and link of the highest-ranked success that has a call to action."""
        for event_type in HEADLINE_PRIORITY:
            label = CTA_LABELS.get(event_type)
            if label is None:
                continue
            for n in successes:
                if n.event_type == event_type:
                    return CallToAction(label=label, url=n.action_url or project.url)
        return CallToAction(label=DEFAULT_CTA_LABEL, url=project.url)

    def build_preview(
        self, project, notifications: list[PendingNotification]
    ) -> ContentPreview | None:
        # Unsaved notifications come from the admin "send sample digest" action.
        sample_mode = bool(notifications) and notifications[0].pk is None
        successes = [n for n in notifications if n.status == NotificationStatus.SUCCESS]

        article_n = next(
            (n for n in successes if n.event_type == EventType.ARTICLE_GENERATED), None
        )
        if article_n is not None:
            if sample_mode:
                return ContentPreview(type="article", **SAMPLE_ARTICLE_PREVIEW)
            preview = self._article_preview(project, article_n)
            if preview is not None:
                return preview

        recs_n = next(
            (n for n in successes if n.event_type == EventType.RECOMMENDATIONS_GENERATED), None
        )
        if recs_n is not None:
            if sample_mode:
                return ContentPreview(
                    type="recommendations", titles=list(SAMPLE_RECOMMENDATION_TITLES), url="#"
                )
            titles = list(
                project.recommendations.filter(status="pending")
                .order_by("-created_at", "-id")
                .values_list("title", flat=True)[:PREVIEW_RECOMMENDATION_COUNT]
            )
            if titles:
                return ContentPreview(type="recommendations", titles=titles, url=recs_n.action_url)
        return None

    @staticmethod
    def _article_preview(project, notification: PendingNotification) -> ContentPreview | None:
        article_id = (notification.metadata or {}).get("article_id")
        if not article_id:
            return None
        article = project.articles.filter(pk=article_id).first()
        if article is None or not article.introduction:
            return None
        return ContentPreview(
            type="article",
            title=article.title,
            intro=Truncator(article.introduction).chars(PREVIEW_INTRO_LENGTH),
            url=notification.action_url,
        )

    @staticmethod
    def _line(notification: PendingNotification) -> DigestLine:
        return DigestLine(
            event_type=notification.event_type,
            status=notification.status,
            message=notification.message,
            detail=notification.detail_text(),
            next_step=notification.next_step_text(),
            action_url=notification.action_url,
        )
