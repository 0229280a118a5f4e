"""
Derived entity writer.

Turns interpreted tool results into domain records, exactly once per
trigger, and synthesizes AI-free fallback content for failed runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from django.core.files.base import ContentFile
from django.utils import timezone
from django.utils.text import slugify

from apps.projects.models import (
    Article,
    ArticleUpdateCheck,
    ArticleUpdateSuggestion,
    ChangelogEntry,
    Project,
    Recommendation,
    ReviewDecision,
    Section,
    SectionType,
    SourceType,
    StepImage,
    SuggestionPriority,
    SuggestionType,
)

logger = logging.getLogger(__name__)

AI_UNAVAILABLE_MARKER = "_AI analysis was unavailable. This is a placeholder summary._"
ARTICLE_FAILED_MARKER = "_Article generation failed. Please try again._"
NO_DESCRIPTION = "_No description provided._"


@dataclass
class ProposedArticle:
    title: str
    description: str = ""
    justification: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ProposedArticle | None:
        if not isinstance(data, dict):
            return None
        title = str(data.get("title") or "").strip()
        if not title:
            return None
        return cls(
            title=title[:500],
            description=str(data.get("description") or "").strip(),
            justification=str(data.get("justification") or "").strip(),
        )


@dataclass
class ChangeAnalysis:
    """Interpreted pull-request / commit analysis."""

    content: str
    title: str = ""
    articles: list[ProposedArticle] = field(default_factory=list)
    no_articles_reason: str = ""


@dataclass
class CodebaseAnalysis:
    summary: str
    metadata: dict[str, Any] = field(default_factory=dict)
    commit_sha: str = ""
    overview: str = ""
    target_users: Any = None
    contextual_questions: Any = None


@dataclass
class ProposedSection:
    name: str
    description: str = ""
    icon: str = ""


@dataclass
class ProposedSuggestion:
    suggestion_type: str
    article_id: int | None = None
    priority: str = SuggestionPriority.MEDIUM
    reason: str = ""
    affected_files: list[str] = field(default_factory=list)
    suggested_changes: dict[str, Any] = field(default_factory=dict)


@dataclass
class GeneratedArticle:
    structured_content: dict[str, Any] | None = None
    content: str = ""


@dataclass
class RenderedStep:
    image: bytes
    filename: str
    metadata: dict[str, Any] = field(default_factory=dict)


def render_article_markdown(structured: dict[str, Any]) -> str:
    """Flatten structured article content into markdown."""
    parts: list[str] = []
    if structured.get("introduction"):
        parts.append(str(structured["introduction"]).strip())

    prerequisites = structured.get("prerequisites") or []
    if prerequisites:
        parts.append("## Prerequisites\n\n" + "\n".join(f"- {p}" for p in prerequisites))

    steps = structured.get("steps") or []
    for index, step in enumerate(steps, start=1):
        if isinstance(step, dict):
            title = step.get("title") or f"Step {index}"
            body = step.get("content") or step.get("description") or ""
        else:
            title, body = f"Step {index}", str(step)
        parts.append(f"## {index}. {title}\n\n{body}".rstrip())

    tips = structured.get("tips") or []
    if tips:
        parts.append("## Tips\n\n" + "\n".join(f"- {t}" for t in tips))

    if structured.get("summary"):
        parts.append(str(structured["summary"]).strip())
    return "\n\n".join(parts)


class DerivedEntityWriter:
    """Create/update derived records for a job run.

    Args:
        run_id: Identifier of the run producing the records; stamped on
            recommendations so a batch is attributable to one run.
    """

    def __init__(self, run_id: str = ""):
        self.run_id = run_id

    # ------------------------------------------------------------------
    # Changelog entries
    # ------------------------------------------------------------------

    def write_changelog_entry(
        self, entry: ChangelogEntry, analysis: ChangeAnalysis
    ) -> list[Recommendation]:
        entry.title = (
            (analysis.title or "").strip()
            or entry.title
            or entry.trigger_title
            or entry.default_title
        )
        entry.content = analysis.content
        entry.analysis_error = ""
        entry.save(update_fields=["title", "content", "analysis_error", "updated_at"])

        if not analysis.articles:
            if analysis.no_articles_reason:
                logger.info(
                    "No articles needed for %s: %s",
                    entry.default_title,
                    analysis.no_articles_reason,
                )
            return []

        # One batch per entry: drop undecided leftovers from an earlier run.
        entry.recommendations.filter(status=ReviewDecision.PENDING).exclude(
            run_id=self.run_id
        ).delete()
        return [
            Recommendation.objects.create(
                project=entry.project,
                source_update=entry,
                run_id=self.run_id,
                title=article.title,
                description=article.description,
                justification=article.justification,
            )
            for article in analysis.articles
        ]

    def write_changelog_fallback(self, entry: ChangelogEntry, error: Exception) -> None:
        entry.title = entry.title or entry.trigger_title or entry.default_title
        entry.content = self.changelog_fallback_content(entry)
        entry.analysis_error = str(error)[:5000]
        entry.save(update_fields=["title", "content", "analysis_error", "updated_at"])

    @staticmethod
    def changelog_fallback_content(entry: ChangelogEntry) -> str:
        if entry.source_type == SourceType.PULL_REQUEST:
            heading = entry.trigger_title or f"Pull Request #{entry.pull_request_number}"
            origin = "a merged pull request"
        else:
            heading = entry.trigger_title or f"Commit {entry.short_sha}"
            origin = "a commit"
        body = entry.trigger_body.strip() or NO_DESCRIPTION
        return (
            f"## {heading}\n\n"
            f"{body}\n\n"
            "---\n\n"
            f"**This update was automatically generated from {origin}.**\n\n"
            f"{AI_UNAVAILABLE_MARKER}\n"
        )

    # ------------------------------------------------------------------
    # Project / section recommendations
    # ------------------------------------------------------------------

    def write_recommendations(
        self,
        project: Project,
        articles: list[ProposedArticle],
        *,
        section: Section | None = None,
    ) -> list[Recommendation]:
        """Create recommendations with no source update, skipping known titles."""
        seen = {title.strip().lower() for title in project.known_recommendation_titles()}
        created = []
        for article in articles:
            key = article.title.strip().lower()
            if key in seen:
                logger.debug("Skipping duplicate recommendation title: %s", article.title)
                continue
            seen.add(key)
            created.append(
                Recommendation.objects.create(
                    project=project,
                    section=section,
                    run_id=self.run_id,
                    title=article.title,
                    description=article.description,
                    justification=article.justification,
                )
            )
        return created

    # ------------------------------------------------------------------
    # Codebase analysis and sections
    # ------------------------------------------------------------------

    def write_codebase_analysis(self, project: Project, analysis: CodebaseAnalysis) -> None:
        metadata = dict(analysis.metadata or {})
        if analysis.target_users is not None:
            metadata["target_users"] = analysis.target_users
        if analysis.contextual_questions is not None:
            metadata["contextual_questions"] = analysis.contextual_questions

        project.analysis_summary = analysis.summary
        project.analysis_metadata = metadata
        project.analyzed_at = timezone.now()
        project.analysis_error = ""
        fields = ["analysis_summary", "analysis_metadata", "analyzed_at", "analysis_error"]
        if analysis.commit_sha:
            project.analysis_commit_sha = analysis.commit_sha
            fields.append("analysis_commit_sha")
        if analysis.overview and not project.project_overview:
            project.project_overview = analysis.overview
            fields.append("project_overview")
        project.save(update_fields=[*fields, "updated_at"])

    def write_sections(self, project: Project, proposals: list[ProposedSection]) -> list[Section]:
        existing = set(project.sections.values_list("slug", flat=True))
        position = project.sections.count()
        created = []
        for proposal in proposals:
            slug = slugify(proposal.name)[:200]
            if not slug or slug in existing:
                continue
            existing.add(slug)
            created.append(
                Section.objects.create(
                    project=project,
                    name=proposal.name,
                    slug=slug,
                    description=proposal.description,
                    icon=proposal.icon,
                    section_type=SectionType.AI_GENERATED,
                    status=ReviewDecision.PENDING,
                    position=position,
                )
            )
            position += 1
        return created

    # ------------------------------------------------------------------
    # Articles and step images
    # ------------------------------------------------------------------

    def write_article(self, article: Article, generated: GeneratedArticle) -> list[StepImage]:
        if generated.structured_content:
            article.structured_content = generated.structured_content
            article.content = render_article_markdown(generated.structured_content)
        else:
            article.structured_content = {}
            article.content = generated.content
        article.generation_error = ""
        article.save(
            update_fields=["structured_content", "content", "generation_error", "updated_at"]
        )
        return self._sync_step_images(article)

    def _sync_step_images(self, article: Article) -> list[StepImage]:
        article.step_images.all().delete()
        created = []
        for index, step in enumerate(article.steps):
            mockup = step.get("mockup_html") if isinstance(step, dict) else None
            if mockup:
                created.append(
                    StepImage.objects.create(article=article, step_index=index, mockup_html=mockup)
                )
        return created

    def write_article_fallback(self, article: Article, error: Exception) -> None:
        recommendation = article.recommendation
        parts = [ARTICLE_FAILED_MARKER]
        if recommendation is not None:
            if recommendation.description:
                parts.append(recommendation.description)
            if recommendation.justification:
                parts.append(f"**Why this article:** {recommendation.justification}")
        article.content = "\n\n".join(parts)
        article.generation_error = str(error)[:5000]
        article.save(update_fields=["content", "generation_error", "updated_at"])

    def write_step_image(self, step_image: StepImage, rendered: RenderedStep) -> None:
        step_image.image.save(rendered.filename, ContentFile(rendered.image), save=False)
        step_image.render_metadata = rendered.metadata
        step_image.render_error = ""
        step_image.save(update_fields=["image", "render_metadata", "render_error", "updated_at"])

    # ------------------------------------------------------------------
    # Article update checks
    # ------------------------------------------------------------------

    def write_update_suggestions(
        self, check: ArticleUpdateCheck, proposals: list[ProposedSuggestion]
    ) -> dict[str, int]:
        known_articles = set(check.project.articles.values_list("id", flat=True))
        updates = new = skipped = 0
        for proposal in proposals:
            if proposal.suggestion_type == SuggestionType.UPDATE_NEEDED:
                if proposal.article_id not in known_articles:
                    logger.warning(
                        "Skipping update suggestion for unknown article_id=%s", proposal.article_id
                    )
                    skipped += 1
                    continue
                article_id = proposal.article_id
                updates += 1
            else:
                article_id = None
                new += 1
            ArticleUpdateSuggestion.objects.create(
                check_run=check,
                article_id=article_id,
                suggestion_type=proposal.suggestion_type,
                priority=proposal.priority,
                reason=proposal.reason,
                affected_files=proposal.affected_files,
                suggested_changes=proposal.suggested_changes,
            )
        return {
            "updates_suggested": updates,
            "new_articles_suggested": new,
            "skipped": skipped,
            "total_suggestions": updates + new,
        }
