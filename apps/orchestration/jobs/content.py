"""Content job kinds: section recommendations, articles, update checks and step renders."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from django.conf import settings
from django.db.models import F, Q
from django.utils import timezone

from apps.intelligence.exceptions import ToolOutputError
from apps.intelligence.parsing import load_json_output, read_output_file
from apps.orchestration.jobs.base import BaseJob, NotificationSpec
from apps.orchestration.jobs.project import parse_recommendations
from apps.orchestration.writers import (
    DerivedEntityWriter,
    GeneratedArticle,
    ProposedArticle,
    ProposedSuggestion,
    RenderedStep,
)
from apps.projects.models import (
    Article,
    ArticleUpdateCheck,
    Section,
    StepImage,
    SuggestionPriority,
    SuggestionType,
)

logger = logging.getLogger(__name__)


class GenerateSectionRecommendationsJob(BaseJob):
    """Recommend articles for one section."""

    name = "generate_section_recommendations"
    status_field = "recommendations_status"
    started_at_field = "recommendations_started_at"
    output_files = ("recommendations.json",)

    @classmethod
    def get_model(cls):
        return Section

    def build_context(self) -> dict[str, Any]:
        section = self.entity
        context = self.project_context()
        context["section"] = {"name": section.name, "description": section.description}
        context["section_article_titles"] = list(section.articles.values_list("title", flat=True))
        context["existing_recommendation_titles"] = section.project.known_recommendation_titles()
        return context

    def interpret(self, output_dir: Path) -> list[ProposedArticle]:
        return parse_recommendations(output_dir)

    def write_result(self, result: list[ProposedArticle]) -> None:
        self.created = DerivedEntityWriter(self.run_id).write_recommendations(
            self.entity.project, result, section=self.entity
        )

    def notification(self, result=None, error=None) -> NotificationSpec:
        section = self.entity
        url = f"{section.project.url}/recommendations?section={section.slug}"
        metadata: dict[str, Any] = {"section_name": section.name}
        if error is None:
            count = len(getattr(self, "created", []))
            metadata["recommendation_count"] = count
            return NotificationSpec(
                event_type="recommendations_generated",
                message=f"{count} new article ideas for {section.name}.",
                action_url=url,
                metadata=metadata,
            )
        metadata["error"] = str(error)[:500]
        return NotificationSpec(
            event_type="recommendations_generated",
            message=f"Generating article ideas for {section.name} failed.",
            action_url=url,
            metadata=metadata,
        )


class GenerateArticleJob(BaseJob):
    """Write an article for an accepted recommendation.

    The tool returns ``article.json`` with introduction / prerequisites /
    steps / tips / summary, or a plain ``article.md`` when it could not
    produce structured content. Steps carrying ``mockup_html`` become
    StepImage rows that are rendered afterwards.
    """

    name = "generate_article"
    status_field = "generation_status"
    started_at_field = "generation_started_at"
    output_files = ("article.json", "article.md")

    @classmethod
    def get_model(cls):
        return Article

    def build_context(self) -> dict[str, Any]:
        article = self.entity
        recommendation = article.recommendation
        context = self.project_context()
        context.update(
            {
                "title": article.title,
                "description": recommendation.description if recommendation else "",
                "justification": recommendation.justification if recommendation else "",
                "section": article.section.name if article.section_id else "",
                "regeneration_guidance": article.regeneration_guidance,
                "previous_content": article.content if article.regeneration_guidance else "",
            }
        )
        return context

    def interpret(self, output_dir: Path) -> GeneratedArticle:
        structured = load_json_output(output_dir, "article.json", required=False)
        if isinstance(structured, dict) and structured:
            return GeneratedArticle(structured_content=structured)
        raw = read_output_file(output_dir, "article.md")
        if raw is None:
            raise ToolOutputError("Expected article.json or article.md was not produced")
        return GeneratedArticle(content=raw)

    def write_result(self, result: GeneratedArticle) -> None:
        self.step_images = DerivedEntityWriter(self.run_id).write_article(self.entity, result)

    def write_fallback(self, error: Exception) -> None:
        DerivedEntityWriter(self.run_id).write_article_fallback(self.entity, error)

    def completed_fields(self, result: GeneratedArticle) -> dict[str, Any]:
        return {
            "source_commit_sha": self.entity.project.analysis_commit_sha,
            "regeneration_guidance": "",
        }

    def notification(self, result=None, error=None) -> NotificationSpec:
        article = self.entity
        url = f"{article.project.url}/articles/{article.pk}"
        metadata: dict[str, Any] = {"article_title": article.title, "article_id": article.pk}
        if error is None:
            return NotificationSpec(
                event_type="article_generated",
                message=f"Your article '{article.title}' is ready to review.",
                action_url=url,
                metadata=metadata,
            )
        metadata["error"] = str(error)[:500]
        return NotificationSpec(
            event_type="article_generated",
            message=f"Generating '{article.title}' failed.",
            action_url=url,
            metadata=metadata,
        )

    def after_success(self, result: GeneratedArticle) -> None:
        from apps.orchestration.dispatch import dispatch

        for step_image in getattr(self, "step_images", []):
            dispatch("render_step_image", step_image)


_PRIORITY_ALIASES = {"urgent": SuggestionPriority.CRITICAL, "normal": SuggestionPriority.MEDIUM}


def normalize_priority(value: Any) -> str:
    priority = str(value or "").strip().lower()
    priority = _PRIORITY_ALIASES.get(priority, priority)
    if priority in SuggestionPriority.values:
        return priority
    return SuggestionPriority.MEDIUM


class CheckArticleUpdatesJob(BaseJob):
    """Compare project articles against the code changes between two commits."""

    name = "check_article_updates"
    status_field = "status"
    started_at_field = "started_at"
    update_timestamp = False
    output_files = ("suggestions.json",)
    default_timeout_s = 600

    @classmethod
    def get_model(cls):
        return ArticleUpdateCheck

    def build_context(self) -> dict[str, Any]:
        check = self.entity
        context = self.project_context()
        context.update(
            {
                "base_commit_sha": check.base_commit_sha,
                "target_commit_sha": check.target_commit_sha,
                "articles": [
                    {
                        "id": article.pk,
                        "title": article.title,
                        "introduction": article.introduction,
                        "steps": [
                            step.get("title", "") if isinstance(step, dict) else str(step)
                            for step in article.steps
                        ],
                        "source_commit_sha": article.source_commit_sha,
                    }
                    for article in check.project.articles.all()
                ],
            }
        )
        return context

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        env["BASE_SHA"] = self.entity.base_commit_sha
        env["TARGET_SHA"] = self.entity.target_commit_sha
        return env

    def interpret(self, output_dir: Path) -> list[ProposedSuggestion]:
        data = load_json_output(output_dir, "suggestions.json")
        items = data.get("suggestions") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ToolOutputError("suggestions.json does not contain a suggestions list")

        proposals = []
        for item in items:
            if not isinstance(item, dict):
                continue
            suggestion_type = str(item.get("type") or item.get("suggestion_type") or "")
            if suggestion_type not in SuggestionType.values:
                logger.warning("Skipping suggestion with unknown type: %r", suggestion_type)
                continue
            article_id = item.get("article_id")
            try:
                article_id = int(article_id) if article_id is not None else None
            except (TypeError, ValueError):
                article_id = None
            changes = item.get("suggested_changes")
            files = item.get("affected_files")
            proposals.append(
                ProposedSuggestion(
                    suggestion_type=suggestion_type,
                    article_id=article_id,
                    priority=normalize_priority(item.get("priority")),
                    reason=str(item.get("reason") or ""),
                    affected_files=[str(f) for f in files] if isinstance(files, list) else [],
                    suggested_changes=changes if isinstance(changes, dict) else {},
                )
            )
        return proposals

    def write_result(self, result: list[ProposedSuggestion]) -> None:
        self.counts = DerivedEntityWriter(self.run_id).write_update_suggestions(self.entity, result)

    def completed_fields(self, result: list[ProposedSuggestion]) -> dict[str, Any]:
        return {"results": self.counts, "completed_at": timezone.now(), "error_message": ""}

    def failed_fields(self, error: Exception) -> dict[str, Any]:
        return {"error_message": str(error)[:5000], "completed_at": timezone.now()}

    def notification(self, result=None, error=None) -> NotificationSpec:
        check = self.entity
        url = f"{check.project.url}/articles/updates/{check.pk}"
        metadata: dict[str, Any] = {"target_commit_sha": check.target_commit_sha}
        if error is None:
            metadata.update(self.counts)
            return NotificationSpec(
                event_type="article_updates_checked",
                message=check.summary(),
                action_url=url,
                metadata=metadata,
            )
        metadata["error"] = str(error)[:500]
        return NotificationSpec(
            event_type="article_updates_checked",
            message="Checking articles for needed updates failed.",
            action_url=url,
            metadata=metadata,
        )


def max_render_attempts() -> int:
    return int(getattr(settings, "STEP_IMAGE_MAX_RENDER_ATTEMPTS", 3))


class RenderStepImageJob(BaseJob):
    """Render one step mockup to an image.

    The only job kind that retries on its own: each failure increments
    ``render_attempts`` and the claim refuses rows that reached the cap.
    """

    name = "render_step_image"
    status_field = "render_status"
    started_at_field = "render_started_at"
    output_files = ("step.png", "render_metadata.json")
    usage_files = ()
    default_timeout_s = 120

    @classmethod
    def get_model(cls):
        return StepImage

    @classmethod
    def start_condition(cls) -> Q:
        return cls.scope() & Q(render_attempts__lt=max_render_attempts())

    @property
    def project(self):
        return self.entity.article.project

    def build_context(self) -> dict[str, Any]:
        step_image = self.entity
        return {
            "article_title": step_image.article.title,
            "step_index": step_image.step_index,
            "attempt": step_image.render_attempts + 1,
        }

    def build_files(self) -> dict[str, str]:
        return {"mockup.html": self.entity.mockup_html}

    def build_env(self) -> dict[str, str]:
        return {}

    def interpret(self, output_dir: Path) -> RenderedStep:
        path = Path(output_dir) / "step.png"
        if not path.is_file() or path.stat().st_size == 0:
            raise ToolOutputError("Expected output file step.png was not produced")
        metadata = load_json_output(output_dir, "render_metadata.json", required=False, default={})
        return RenderedStep(
            image=path.read_bytes(),
            filename=f"step_{self.entity.step_index}.png",
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def write_result(self, result: RenderedStep) -> None:
        DerivedEntityWriter(self.run_id).write_step_image(self.entity, result)

    def failed_fields(self, error: Exception) -> dict[str, Any]:
        return {"render_attempts": F("render_attempts") + 1, "render_error": str(error)[:5000]}

    def notification(self, result=None, error=None) -> NotificationSpec | None:
        step_image = self.entity
        if error is None or not step_image.retries_exhausted:
            return None
        article = step_image.article
        return NotificationSpec(
            event_type="article_generated",
            message=(
                f"The screenshot for step {step_image.step_index + 1} of "
                f"'{article.title}' could not be rendered."
            ),
            action_url=f"{article.project.url}/articles/{article.pk}",
            metadata={"article_title": article.title, "step_index": step_image.step_index},
        )

    def after_failure(self, error: Exception) -> None:
        from apps.orchestration.dispatch import dispatch

        step_image = self.entity
        if step_image.retries_exhausted:
            logger.warning(
                "Giving up on step image %s after %s attempts",
                step_image.pk,
                step_image.render_attempts,
            )
            return
        countdown = int(getattr(settings, "STEP_IMAGE_RETRY_COUNTDOWN_SECONDS", 30))
        dispatch("render_step_image", step_image, countdown=countdown)
