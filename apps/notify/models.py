"""
Notification models.

Finished job runs queue a PendingNotification; the digest service later
merges a project's unconsumed rows into one message per recipient and
marks them with ``digested_at``.
"""

from django.db import models


def pluralize(count, singular: str, plural: str | None = None) -> str:
    try:
        one = int(count) == 1
    except (TypeError, ValueError):
        one = False
    return singular if one else (plural or f"{singular}s")


class EventType(models.TextChoices):
    ANALYSIS_COMPLETE = "analysis_complete", "Codebase analysis"
    SECTIONS_SUGGESTED = "sections_suggested", "Sections suggested"
    RECOMMENDATIONS_GENERATED = "recommendations_generated", "Recommendations generated"
    ARTICLE_GENERATED = "article_generated", "Article generated"
    PR_ANALYZED = "pr_analyzed", "Pull request analyzed"
    COMMIT_ANALYZED = "commit_analyzed", "Commit analyzed"
    ARTICLE_UPDATES_CHECKED = "article_updates_checked", "Article updates checked"


class NotificationStatus(models.TextChoices):
    SUCCESS = "success", "Success"
    ERROR = "error", "Error"


class PendingNotification(models.Model):
    """
    One job outcome waiting to be included in a digest.

    Rows are never deleted by the digest; ``digested_at`` marks them consumed.
    """

    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.CASCADE,
        related_name="pending_notifications",
    )
    recipient = models.EmailField(
        blank=True,
        default="",
        help_text="Digest recipient at the time the event was recorded.",
    )
    event_type = models.CharField(max_length=50, choices=EventType.choices, db_index=True)
    status = models.CharField(max_length=20, choices=NotificationStatus.choices)
    message = models.TextField(blank=True, default="")
    action_url = models.CharField(max_length=500, blank=True, default="")
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Structured context used for the digest breakdown and headline.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    digested_at = models.DateTimeField(null=True, blank=True, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["project", "digested_at"]),
        ]

    def __str__(self):
        return f"{self.event_type} [{self.status}] for {self.project_id}"

    @property
    def is_success(self) -> bool:
        return self.status == NotificationStatus.SUCCESS

    def detail_text(self) -> str | None:
        """One-line summary of what the run produced, from its metadata."""
        metadata = self.metadata or {}
        if not metadata:
            return None

        if self.event_type == EventType.ANALYSIS_COMPLETE:
            count = metadata.get("repo_count")
            if not count:
                return None
            return f"Scanned {count} {pluralize(count, 'repository', 'repositories')}"
        if self.event_type == EventType.SECTIONS_SUGGESTED:
            count = metadata.get("section_count")
            return f"{count} {pluralize(count, 'section')} proposed" if count is not None else None
        if self.event_type == EventType.RECOMMENDATIONS_GENERATED:
            count = metadata.get("recommendation_count")
            section = metadata.get("section_name")
            if section:
                return f"{count} {pluralize(count, 'recommendation')} for {section}"
            if count is not None:
                return f"{count} recommendations across all sections"
            return None
        if self.event_type == EventType.ARTICLE_GENERATED:
            return metadata.get("article_title")
        if self.event_type in (EventType.PR_ANALYZED, EventType.COMMIT_ANALYZED):
            return self._change_detail(metadata)
        if self.event_type == EventType.ARTICLE_UPDATES_CHECKED:
            updates = metadata.get("updates_suggested") or 0
            new = metadata.get("new_articles_suggested") or 0
            if not updates and not new:
                return "All articles are up to date" if self.is_success else None
            return (
                f"{updates} {pluralize(updates, 'article')} may need updates, "
                f"{new} new {pluralize(new, 'article')} suggested"
            )
        return None

    def _change_detail(self, metadata: dict) -> str | None:
        parts = []
        if self.event_type == EventType.PR_ANALYZED:
            title = metadata.get("pr_title")
            if title:
                parts.append(f"PR #{metadata.get('pr_number')}: {title}")
        else:
            title = metadata.get("commit_title")
            if title:
                parts.append(f"{(metadata.get('commit_sha') or '')[:7]}: {title}")
        count = len(metadata.get("article_titles") or [])
        if count:
            parts.append(f"{count} {pluralize(count, 'article')} suggested")
        return " - ".join(parts) if parts else None

    def next_step_text(self) -> str | None:
        if self.is_success:
            if self.event_type == EventType.ANALYSIS_COMPLETE:
                return "Your sections are being generated next."
            if self.event_type == EventType.SECTIONS_SUGGESTED:
                return "Review and pick the sections you want."
            if self.event_type == EventType.RECOMMENDATIONS_GENERATED:
                return "Accept the ones you like, reject the rest."
            if self.event_type == EventType.ARTICLE_GENERATED:
                return "Review it and publish when you're happy."
            if self.event_type in (EventType.PR_ANALYZED, EventType.COMMIT_ANALYZED):
                if (self.metadata or {}).get("article_titles"):
                    return "Review the suggested articles in code history."
                return "Check code history for details."
            if self.event_type == EventType.ARTICLE_UPDATES_CHECKED:
                return "Accept or dismiss each suggestion."
            return None

        if self.event_type in (EventType.ANALYSIS_COMPLETE, EventType.SECTIONS_SUGGESTED):
            return "You can retry from project settings."
        if self.event_type == EventType.ARTICLE_GENERATED:
            return "You can regenerate it from the inbox."
        return None
