"""Project-level job kinds: codebase analysis, section suggestion, recommendations."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from apps.intelligence.exceptions import ToolOutputError
from apps.intelligence.parsing import load_json_output, read_output_file, require_text_output
from apps.orchestration.jobs.base import BaseJob, NotificationSpec
from apps.orchestration.writers import (
    CodebaseAnalysis,
    DerivedEntityWriter,
    ProposedArticle,
    ProposedSection,
)
from apps.projects.models import Project

logger = logging.getLogger(__name__)


class ProjectJob(BaseJob):
    """Job whose entity is the project itself."""

    @classmethod
    def get_model(cls):
        return Project

    @property
    def project(self) -> Project:
        return self.entity


class AnalyzeCodebaseJob(ProjectJob):
    """Summarize the linked repositories; chains into section suggestion."""

    name = "analyze_codebase"
    status_field = "analysis_status"
    started_at_field = "analysis_started_at"
    output_files = (
        "summary.md",
        "metadata.json",
        "commit_sha.txt",
        "overview.txt",
        "target_users.json",
        "contextual_questions.json",
    )
    # The analyzer runs a main pass and a style pass, each with its own report.
    usage_files = ("usage_main.json", "usage_style.json")
    default_timeout_s = 600

    def build_context(self) -> dict[str, Any]:
        context = self.project_context()
        context["previous_commit_sha"] = self.project.analysis_commit_sha
        return context

    def interpret(self, output_dir: Path) -> CodebaseAnalysis:
        summary = require_text_output(output_dir, "summary.md")
        metadata = load_json_output(output_dir, "metadata.json", required=False, default={})
        if not isinstance(metadata, dict):
            logger.warning("metadata.json is not an object; ignoring it")
            metadata = {}
        return CodebaseAnalysis(
            summary=summary,
            metadata=metadata,
            commit_sha=read_output_file(output_dir, "commit_sha.txt") or "",
            overview=read_output_file(output_dir, "overview.txt") or "",
            target_users=self._optional_json(output_dir, "target_users.json"),
            contextual_questions=self._optional_json(output_dir, "contextual_questions.json"),
        )

    @staticmethod
    def _optional_json(output_dir: Path, filename: str) -> Any:
        try:
            return load_json_output(output_dir, filename, required=False)
        except ToolOutputError as e:
            logger.warning("Ignoring malformed optional output: %s", e)
            return None

    def write_result(self, result: CodebaseAnalysis) -> None:
        DerivedEntityWriter(self.run_id).write_codebase_analysis(self.project, result)

    def failed_fields(self, error: Exception) -> dict[str, Any]:
        return {"analysis_error": str(error)[:5000]}

    def notification(self, result=None, error=None) -> NotificationSpec:
        repo_count = self.project.repositories.count()
        if error is None:
            return NotificationSpec(
                event_type="analysis_complete",
                message=f"Codebase analysis for {self.project.name} is complete.",
                action_url=self.project.url,
                metadata={"repo_count": repo_count},
            )
        return NotificationSpec(
            event_type="analysis_complete",
            message=f"Codebase analysis for {self.project.name} failed.",
            action_url=self.project.url,
            metadata={"repo_count": repo_count, "error": str(error)[:500]},
        )

    def after_success(self, result: CodebaseAnalysis) -> None:
        from apps.orchestration.dispatch import dispatch

        dispatch("suggest_sections", self.project)


class SuggestSectionsJob(ProjectJob):
    """Propose help-centre sections from the codebase summary."""

    name = "suggest_sections"
    status_field = "sections_generation_status"
    started_at_field = "sections_generation_started_at"
    output_files = ("sections.json",)

    def build_context(self) -> dict[str, Any]:
        context = self.project_context()
        context["existing_sections"] = list(self.project.sections.values_list("name", flat=True))
        return context

    def interpret(self, output_dir: Path) -> list[ProposedSection]:
        data = load_json_output(output_dir, "sections.json")
        items = data.get("sections") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ToolOutputError("sections.json does not contain a sections list")
        proposals = []
        for item in items:
            if isinstance(item, dict) and str(item.get("name") or "").strip():
                proposals.append(
                    ProposedSection(
                        name=str(item["name"]).strip()[:200],
                        description=str(item.get("description") or ""),
                        icon=str(item.get("icon") or "")[:50],
                    )
                )
        return proposals

    def write_result(self, result: list[ProposedSection]) -> None:
        self.created = DerivedEntityWriter(self.run_id).write_sections(self.project, result)

    def notification(self, result=None, error=None) -> NotificationSpec:
        url = f"{self.project.url}/sections"
        if error is None:
            count = len(getattr(self, "created", []))
            return NotificationSpec(
                event_type="sections_suggested",
                message=f"{count} sections suggested for {self.project.name}.",
                action_url=url,
                metadata={"section_count": count},
            )
        return NotificationSpec(
            event_type="sections_suggested",
            message=f"Section suggestions for {self.project.name} failed.",
            action_url=url,
            metadata={"error": str(error)[:500]},
        )


def parse_recommendations(
    output_dir: Path, filename: str = "recommendations.json"
) -> list[ProposedArticle]:
    data = load_json_output(output_dir, filename)
    items = data.get("articles") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ToolOutputError(f"{filename} does not contain an articles list")
    return [a for a in (ProposedArticle.from_dict(item) for item in items) if a is not None]


class GenerateProjectRecommendationsJob(ProjectJob):
    """Recommend articles for the whole project."""

    name = "generate_project_recommendations"
    status_field = "recommendations_status"
    started_at_field = "recommendations_started_at"
    output_files = ("recommendations.json",)

    def build_context(self) -> dict[str, Any]:
        context = self.project_context()
        context["sections"] = [
            {"name": s.name, "description": s.description}
            for s in self.project.sections.exclude(status="rejected")
        ]
        context["existing_recommendation_titles"] = self.project.known_recommendation_titles()
        context["existing_article_titles"] = list(
            self.project.articles.values_list("title", flat=True)
        )
        return context

    def interpret(self, output_dir: Path) -> list[ProposedArticle]:
        return parse_recommendations(output_dir)

    def write_result(self, result: list[ProposedArticle]) -> None:
        self.created = DerivedEntityWriter(self.run_id).write_recommendations(self.project, result)

    def notification(self, result=None, error=None) -> NotificationSpec:
        url = f"{self.project.url}/recommendations"
        if error is None:
            count = len(getattr(self, "created", []))
            return NotificationSpec(
                event_type="recommendations_generated",
                message=f"{count} new article ideas for {self.project.name}.",
                action_url=url,
                metadata={"recommendation_count": count},
            )
        return NotificationSpec(
            event_type="recommendations_generated",
            message=f"Generating article ideas for {self.project.name} failed.",
            action_url=url,
            metadata={"error": str(error)[:500]},
        )
