"""Change-analysis job kinds: merged pull requests and pushed commits."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from django.db.models import Q

from apps.intelligence.exceptions import ToolOutputError
from apps.intelligence.parsing import load_json_output, read_output_file, require_text_output
from apps.orchestration.jobs.base import BaseJob, NotificationSpec
from apps.orchestration.writers import ChangeAnalysis, DerivedEntityWriter, ProposedArticle
from apps.projects.models import ChangelogEntry, SourceType

logger = logging.getLogger(__name__)


class ChangeAnalysisJob(BaseJob):
    """Analyze one ChangelogEntry trigger and propose articles for it.

    Output files:
        title.txt      optional changelog title
        content.md     changelog body (required)
        articles.json  ``{"articles": [...], "no_articles_reason": "..."}``
    """

    status_field = "analysis_status"
    started_at_field = "analysis_started_at"
    output_files = ("title.txt", "content.md", "articles.json")
    event_type = ""

    @classmethod
    def get_model(cls):
        return ChangelogEntry

    def build_context(self) -> dict[str, Any]:
        entry = self.entity
        context = self.project_context()
        context.update(
            {
                "source_type": entry.source_type,
                "source_repo": entry.source_repo,
                "trigger_title": entry.trigger_title,
                "trigger_body": entry.trigger_body,
                "existing_article_titles": list(
                    entry.project.articles.values_list("title", flat=True)
                ),
            }
        )
        return context

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        if self.entity.source_repo:
            env["GITHUB_REPO"] = self.entity.source_repo
        return env

    def interpret(self, output_dir: Path) -> ChangeAnalysis:
        content = require_text_output(output_dir, "content.md")
        data = load_json_output(output_dir, "articles.json", required=False, default={})
        if isinstance(data, list):
            data = {"articles": data}
        if not isinstance(data, dict):
            raise ToolOutputError("articles.json must be an object or a list")
        items = data.get("articles") or []
        if not isinstance(items, list):
            raise ToolOutputError("articles.json 'articles' must be a list")
        return ChangeAnalysis(
            content=content,
            title=read_output_file(output_dir, "title.txt") or "",
            articles=[a for a in (ProposedArticle.from_dict(i) for i in items) if a is not None],
            no_articles_reason=str(data.get("no_articles_reason") or ""),
        )

    def write_result(self, result: ChangeAnalysis) -> None:
        self.created = DerivedEntityWriter(self.run_id).write_changelog_entry(self.entity, result)

    def write_fallback(self, error: Exception) -> None:
        DerivedEntityWriter(self.run_id).write_changelog_fallback(self.entity, error)

    def notification_metadata(self) -> dict[str, Any]:
        return {}

    def notification(self, result=None, error=None) -> NotificationSpec:
        metadata = self.notification_metadata()
        url = f"{self.entity.project.url}/updates/{self.entity.pk}"
        if error is None:
            metadata["article_titles"] = [r.title for r in getattr(self, "created", [])]
            return NotificationSpec(
                event_type=self.event_type,
                message=f"{self.entity.default_title} analyzed: {self.entity.title}",
                action_url=url,
                metadata=metadata,
            )
        metadata["error"] = str(error)[:500]
        return NotificationSpec(
            event_type=self.event_type,
            message=f"Analysis of {self.entity.default_title} failed.",
            action_url=url,
            metadata=metadata,
        )


class AnalyzePullRequestJob(ChangeAnalysisJob):
    name = "analyze_pull_request"
    event_type = "pr_analyzed"

    @classmethod
    def scope(cls) -> Q:
        return Q(source_type=SourceType.PULL_REQUEST)

    def build_context(self) -> dict[str, Any]:
        context = super().build_context()
        context["pr_number"] = self.entity.pull_request_number
        context["pr_url"] = self.entity.pull_request_url
        return context

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        env["PR_NUMBER"] = str(self.entity.pull_request_number)
        return env

    def notification_metadata(self) -> dict[str, Any]:
        return {
            "pr_number": self.entity.pull_request_number,
            "pr_title": self.entity.title or self.entity.trigger_title,
        }


class AnalyzeCommitJob(ChangeAnalysisJob):
    name = "analyze_commit"
    event_type = "commit_analyzed"

    @classmethod
    def scope(cls) -> Q:
        return Q(source_type=SourceType.COMMIT)

    def build_context(self) -> dict[str, Any]:
        context = super().build_context()
        context["commit_sha"] = self.entity.commit_sha
        context["commit_url"] = self.entity.commit_url
        return context

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        env["COMMIT_SHA"] = self.entity.commit_sha
        return env

    def notification_metadata(self) -> dict[str, Any]:
        return {
            "commit_sha": self.entity.commit_sha,
            "commit_title": self.entity.title or self.entity.trigger_title,
        }
