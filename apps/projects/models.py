"""
Project domain models.

Every entity that is driven by an analysis job owns one status field using
the shared JobStatus choices, plus a companion ``*_started_at`` timestamp that
is written when the status enters ``running``.
"""

from __future__ import annotations

from typing import Any

from django.conf import settings
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone
from django.utils.text import slugify

from apps.orchestration.state_machine import IN_FLIGHT, JobStatus


def _status_field(help_text: str) -> models.CharField:
    return models.CharField(
        max_length=20,
        choices=JobStatus.choices,
        default=JobStatus.UNSET,
        blank=True,
        db_index=True,
        help_text=help_text,
    )


def _started_at_field() -> models.DateTimeField:
    return models.DateTimeField(null=True, blank=True)


class UpdateStrategy(models.TextChoices):
    """How a project picks up repository changes."""

    PULL_REQUEST = "pull_request", "On merged pull request"
    COMMIT = "commit", "On commit"
    WEEKLY = "weekly", "Weekly"
    MANUAL = "manual", "Manual"


class Project(models.Model):
    """A help centre backed by one or more linked repositories."""

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True, blank=True)
    owner_email = models.EmailField(
        blank=True,
        default="",
        help_text="Recipient of pipeline digest notifications.",
    )
    webhook_secret = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Shared secret used to verify repository webhook signatures.",
    )
    update_strategy = models.CharField(
        max_length=20,
        choices=UpdateStrategy.choices,
        default=UpdateStrategy.PULL_REQUEST,
    )
    project_overview = models.TextField(blank=True, default="")

    # Notification preferences
    email_notifications_enabled = models.BooleanField(default=True)
    disabled_email_events = models.JSONField(
        default=list,
        blank=True,
        help_text="Event types muted for email digests.",
    )

    # Codebase analysis
    analysis_status = _status_field("Codebase analysis run status.")
    analysis_started_at = _started_at_field()
    analysis_summary = models.TextField(blank=True, default="")
    analysis_metadata = models.JSONField(default=dict, blank=True)
    analyzed_at = models.DateTimeField(null=True, blank=True)
    analysis_commit_sha = models.CharField(max_length=64, blank=True, default="")
    analysis_error = models.TextField(blank=True, default="")

    # Section suggestion and project-level recommendation runs
    sections_generation_status = _status_field("Section suggestion run status.")
    sections_generation_started_at = _started_at_field()
    recommendations_status = _status_field("Project-level recommendation run status.")
    recommendations_started_at = _started_at_field()

    cache_version = models.PositiveIntegerField(
        default=0,
        help_text="Bumped whenever sections or articles change.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)[:200] or "project"
        super().save(*args, **kwargs)

    @property
    def url(self) -> str:
        base = getattr(settings, "SITE_URL", "").rstrip("/")
        return f"{base}/projects/{self.slug}"

    @property
    def primary_repository(self) -> ProjectRepository | None:
        return self.repositories.order_by("-is_primary", "id").first()

    def repositories_for_analysis(self) -> list[dict[str, Any]]:
        return [
            {
                "full_name": repo.full_name,
                "clone_dir": repo.clone_directory_name,
                "is_primary": repo.is_primary,
            }
            for repo in self.repositories.order_by("-is_primary", "id")
        ]

    def known_recommendation_titles(self) -> list[str]:
        """Titles new recommendations must not repeat; rejected ones may come back."""
        return list(
            self.recommendations.exclude(status=ReviewDecision.REJECTED).values_list(
                "title", flat=True
            )
        )

    def has_running_jobs(self) -> bool:
        """Whether any analysis run owned by this project is pending or running."""
        if (
            self.analysis_status in IN_FLIGHT
            or self.sections_generation_status in IN_FLIGHT
            or self.recommendations_status in IN_FLIGHT
        ):
            return True
        return (
            self.updates.filter(analysis_status__in=IN_FLIGHT).exists()
            or self.sections.filter(recommendations_status__in=IN_FLIGHT).exists()
            or self.articles.filter(generation_status__in=IN_FLIGHT).exists()
            or self.update_checks.filter(status__in=IN_FLIGHT).exists()
            or StepImage.objects.filter(
                article__project=self, render_status__in=IN_FLIGHT
            ).exists()
        )

    def invalidate_content_cache(self) -> None:
        Project.objects.filter(pk=self.pk).update(cache_version=F("cache_version") + 1)


class ProjectRepository(models.Model):
    """A repository linked to a project. The webhook resolves projects through it."""

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="repositories")
    full_name = models.CharField(
        max_length=255,
        unique=True,
        help_text="owner/name as reported by the repository host.",
    )
    installation_id = models.CharField(max_length=64, blank=True, default="")
    is_primary = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["project", "-is_primary", "full_name"]
        verbose_name_plural = "project repositories"

    def __str__(self):
        return self.full_name

    @property
    def clone_directory_name(self) -> str:
        return self.full_name.split("/")[-1]


class SourceType(models.TextChoices):
    PULL_REQUEST = "pull_request", "Pull request"
    COMMIT = "commit", "Commit"


class PublicationStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    PUBLISHED = "published", "Published"


class ChangelogEntry(models.Model):
    """One changelog update per analyzed pull request or commit."""

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="updates")
    source_type = models.CharField(max_length=20, choices=SourceType.choices)
    source_repo = models.CharField(max_length=255, blank=True, default="")
    pull_request_number = models.PositiveIntegerField(null=True, blank=True)
    pull_request_url = models.URLField(blank=True, default="")
    commit_sha = models.CharField(max_length=64, blank=True, default="")
    commit_url = models.URLField(blank=True, default="")

    # Original trigger metadata, kept for fallback content.
    trigger_title = models.CharField(max_length=500, blank=True, default="")
    trigger_body = models.TextField(blank=True, default="")

    title = models.CharField(max_length=500, blank=True, default="")
    content = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=PublicationStatus.choices,
        default=PublicationStatus.DRAFT,
    )
    published_at = models.DateTimeField(null=True, blank=True)

    analysis_status = _status_field("Pull request / commit analysis run status.")
    analysis_started_at = _started_at_field()
    analysis_error = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "changelog entries"
        constraints = [
            models.UniqueConstraint(
                fields=["project", "pull_request_number"],
                condition=Q(source_type="pull_request"),
                name="unique_update_per_pull_request",
            ),
            models.UniqueConstraint(
                fields=["project", "commit_sha"],
                condition=Q(source_type="commit"),
                name="unique_update_per_commit",
            ),
        ]

    def __str__(self):
        return self.title or self.default_title

    @property
    def default_title(self) -> str:
        if self.source_type == SourceType.PULL_REQUEST:
            return f"PR #{self.pull_request_number}"
        return f"Commit {self.commit_sha[:7]}"

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:7]


class SectionType(models.TextChoices):
    TEMPLATE = "template", "Template"
    AI_GENERATED = "ai_generated", "AI generated"
    CUSTOM = "custom", "Custom"


class ReviewDecision(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"


class Section(models.Model):
    """A grouping of articles within a project's help centre."""

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="sections")
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, blank=True)
    description = models.TextField(blank=True, default="")
    icon = models.CharField(max_length=50, blank=True, default="")
    section_type = models.CharField(
        max_length=20, choices=SectionType.choices, default=SectionType.CUSTOM
    )
    status = models.CharField(
        max_length=20,
        choices=ReviewDecision.choices,
        default=ReviewDecision.ACCEPTED,
        help_text="Review state for suggested sections.",
    )
    position = models.PositiveIntegerField(default=0)

    recommendations_status = _status_field("Section recommendation run status.")
    recommendations_started_at = _started_at_field()

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["project", "position", "id"]
        constraints = [
            models.UniqueConstraint(fields=["project", "slug"], name="unique_section_slug"),
        ]

    def __str__(self):
        return f"{self.project} / {self.name}"

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)[:200] or "section"
        super().save(*args, **kwargs)


class Recommendation(models.Model):
    """A suggested article derived from an analysis run.

    A batch belongs to exactly one trigger: a changelog entry (``source_update``)
    or one project/section-level run (``source_update`` is null). ``run_id``
    identifies the run that produced it.
    """

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="recommendations")
    source_update = models.ForeignKey(
        ChangelogEntry,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="recommendations",
    )
    section = models.ForeignKey(
        Section,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="recommendations",
    )
    run_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    title = models.CharField(max_length=500)
    description = models.TextField(blank=True, default="")
    justification = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=ReviewDecision.choices,
        default=ReviewDecision.PENDING,
        db_index=True,
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "id"]

    def __str__(self):
        return self.title

    def accept(self) -> Article:
        """Accept the recommendation and start generating its article."""
        from apps.orchestration.dispatch import dispatch

        with transaction.atomic():
            self.status = ReviewDecision.ACCEPTED
            self.save(update_fields=["status"])
            article, _ = Article.objects.get_or_create(
                recommendation=self,
                defaults={
                    "project": self.project,
                    "section": self.section,
                    "title": self.title,
                },
            )
        dispatch("generate_article", article)
        return article

    def reject(self) -> None:
        self.status = ReviewDecision.REJECTED
        self.rejected_at = timezone.now()
        self.save(update_fields=["status", "rejected_at"])


class ArticleReviewStatus(models.TextChoices):
    UNREVIEWED = "unreviewed", "Unreviewed"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class Article(models.Model):
    """A help article. Generation and human review are independent axes."""

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="articles")
    recommendation = models.OneToOneField(
        Recommendation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="article",
    )
    section = models.ForeignKey(
        Section,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="articles",
    )
    title = models.CharField(max_length=500)
    content = models.TextField(blank=True, default="")
    structured_content = models.JSONField(default=dict, blank=True)
    generation_status = _status_field("Article generation run status.")
    generation_started_at = _started_at_field()
    generation_error = models.TextField(blank=True, default="")
    review_status = models.CharField(
        max_length=20,
        choices=ArticleReviewStatus.choices,
        default=ArticleReviewStatus.UNREVIEWED,
    )
    status = models.CharField(
        max_length=20,
        choices=PublicationStatus.choices,
        default=PublicationStatus.DRAFT,
    )
    published_at = models.DateTimeField(null=True, blank=True)
    source_commit_sha = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Commit the content reflects; used for staleness checks.",
    )
    regeneration_guidance = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.title

    @property
    def is_structured(self) -> bool:
        return bool(self.structured_content)

    @property
    def introduction(self) -> str:
        return (self.structured_content or {}).get("introduction") or ""

    @property
    def prerequisites(self) -> list:
        return (self.structured_content or {}).get("prerequisites") or []

    @property
    def steps(self) -> list:
        return (self.structured_content or {}).get("steps") or []

    @property
    def tips(self) -> list:
        return (self.structured_content or {}).get("tips") or []

    @property
    def summary(self) -> str:
        return (self.structured_content or {}).get("summary") or ""

    def publish(self) -> None:
        self.status = PublicationStatus.PUBLISHED
        self.published_at = timezone.now()
        self.save(update_fields=["status", "published_at", "updated_at"])


class ArticleUpdateCheck(models.Model):
    """One staleness check of a project's articles between two commits."""

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="update_checks")
    target_commit_sha = models.CharField(max_length=64)
    base_commit_sha = models.CharField(max_length=64, blank=True, default="")
    status = _status_field("Article update check run status.")
    started_at = _started_at_field()
    completed_at = models.DateTimeField(null=True, blank=True)
    results = models.JSONField(default=dict, blank=True)
    error_message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.project} @ {self.target_commit_sha[:7]} [{self.status or 'unset'}]"

    def summary(self) -> str:
        results = self.results or {}
        updates = results.get("updates_suggested", 0)
        new = results.get("new_articles_suggested", 0)
        if not updates and not new:
            return "All articles are up to date"
        parts = []
        if updates:
            parts.append(f"{updates} article{'s' if updates != 1 else ''} may need updates")
        if new:
            parts.append(f"{new} new article{'s' if new != 1 else ''} suggested")
        return ", ".join(parts)


class SuggestionType(models.TextChoices):
    UPDATE_NEEDED = "update_needed", "Update needed"
    NEW_ARTICLE = "new_article", "New article"


class SuggestionPriority(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class SuggestionStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    DISMISSED = "dismissed", "Dismissed"


class ArticleUpdateSuggestion(models.Model):
    """A proposed change produced by an ArticleUpdateCheck."""

    check_run = models.ForeignKey(
        ArticleUpdateCheck, on_delete=models.CASCADE, related_name="suggestions"
    )
    article = models.ForeignKey(
        Article,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="update_suggestions",
    )
    suggestion_type = models.CharField(max_length=20, choices=SuggestionType.choices)
    priority = models.CharField(
        max_length=20,
        choices=SuggestionPriority.choices,
        default=SuggestionPriority.MEDIUM,
    )
    reason = models.TextField(blank=True, default="")
    affected_files = models.JSONField(default=list, blank=True)
    suggested_changes = models.JSONField(default=dict, blank=True)
    status = models.CharField(
        max_length=20,
        choices=SuggestionStatus.choices,
        default=SuggestionStatus.PENDING,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["check_run", "id"]

    def __str__(self):
        target = self.article.title if self.article_id else "new article"
        return f"{self.suggestion_type} ({self.priority}): {target}"

    def accept(self) -> None:
        with transaction.atomic():
            self.status = SuggestionStatus.ACCEPTED
            self.save(update_fields=["status"])
            if self.suggestion_type == SuggestionType.UPDATE_NEEDED and self.article_id:
                self.article.regeneration_guidance = self.regeneration_guidance()
                self.article.save(update_fields=["regeneration_guidance", "updated_at"])

    def dismiss(self) -> None:
        self.status = SuggestionStatus.DISMISSED
        self.save(update_fields=["status"])

    def regeneration_guidance(self) -> str:
        changes = self.suggested_changes or {}
        parts: list[str] = []
        if self.reason:
            parts.append(self.reason)
        if changes.get("update_steps"):
            steps = ", ".join(str(s) for s in changes["update_steps"])
            parts.append(f"Steps that need updating: {steps}")
        if changes.get("update_introduction"):
            parts.append("Update the introduction")
        if changes.get("add_prerequisite"):
            parts.append("Add a new prerequisite")
        if changes.get("notes"):
            parts.append(str(changes["notes"]))
        if self.affected_files:
            parts.append(f"Affected files: {', '.join(self.affected_files[:5])}")
        return "\n\n".join(parts)


def step_image_upload_to(instance: StepImage, filename: str) -> str:
    return f"step_images/{instance.article_id}/{filename}"


class StepImage(models.Model):
    """A rendered mockup for one step of an article.

    Rendering is the only job kind that retries automatically, bounded by
    ``settings.STEP_IMAGE_MAX_RENDER_ATTEMPTS``.
    """

    article = models.ForeignKey(Article, on_delete=models.CASCADE, related_name="step_images")
    step_index = models.PositiveIntegerField()
    mockup_html = models.TextField(blank=True, default="")
    image = models.FileField(upload_to=step_image_upload_to, blank=True)
    render_status = _status_field("Mockup render run status.")
    render_started_at = _started_at_field()
    render_attempts = models.PositiveIntegerField(default=0)
    render_metadata = models.JSONField(default=dict, blank=True)
    render_error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["article", "step_index"]
        constraints = [
            models.UniqueConstraint(fields=["article", "step_index"], name="unique_step_image"),
        ]

    def __str__(self):
        return f"{self.article} step {self.step_index}"

    @property
    def quality_score(self):
        return ((self.render_metadata or {}).get("qualityScore") or {}).get("score")

    @property
    def page_errors(self) -> list:
        return (self.render_metadata or {}).get("pageErrors") or []

    @property
    def retries_exhausted(self) -> bool:
        cap = getattr(settings, "STEP_IMAGE_MAX_RENDER_ATTEMPTS", 3)
        return self.render_attempts >= cap
