"""
Claude (Anthropic) API analysis tool.

Uses the Anthropic Messages API instead of a container. The model is asked
to return a JSON object mapping each expected output file name to its
content; the tool writes those files plus a usage report so the rest of
the pipeline cannot tell the two implementations apart.
"""

from __future__ import annotations

import json
import logging
import uuid
from decimal import Decimal
from typing import Any

from apps.intelligence.parsing import extract_json
from apps.intelligence.tools.base import BaseAnalysisTool, ToolInvocation, ToolOutcome

logger = logging.getLogger(__name__)

ENTRYPOINT_INSTRUCTIONS = {
    "analyze_codebase": (
        "Summarize the project for a documentation writer. Produce summary.md (markdown), "
        "metadata.json (tech_stack, key_features, entry_points), overview.txt, "
        "target_users.json and contextual_questions.json."
    ),
    "suggest_sections": (
        "Propose help-centre sections. Produce sections.json: "
        '{"sections": [{"name", "description", "icon"}]}.'
    ),
    "analyze_pull_request": (
        "Write a user-facing changelog entry for the merged pull request. Produce title.txt, "
        'content.md and articles.json: {"articles": [{"title", "description", '
        '"justification"}], "no_articles_reason": ""}.'
    ),
    "analyze_commit": (
        "Write a user-facing changelog entry for the commit. Produce title.txt, content.md "
        'and articles.json: {"articles": [{"title", "description", "justification"}], '
        '"no_articles_reason": ""}.'
    ),
    "generate_project_recommendations": (
        "Recommend help articles that do not duplicate existing_recommendation_titles. "
        'Produce recommendations.json: {"articles": [{"title", "description", '
        '"justification"}]}.'
    ),
    "generate_section_recommendations": (
        "Recommend help articles for the given section. Produce recommendations.json: "
        '{"articles": [{"title", "description", "justification"}]}.'
    ),
    "generate_article": (
        "Write the help article. Produce article.json: {introduction, prerequisites, "
        "steps: [{title, content, mockup_html}], tips, summary}."
    ),
    "check_article_updates": (
        "Compare the articles against the code changes. Produce suggestions.json: a list of "
        "{type: update_needed|new_article, article_id, priority, reason, affected_files, "
        "suggested_changes}."
    ),
}

SYSTEM_PROMPT = (
    "You are a technical writer producing help-centre content from source code.\n"
    "Respond ONLY with a JSON object whose keys are output file names and whose values "
    "are the complete file contents as strings."
)


class ClaudeApiTool(BaseAnalysisTool):
    """Analysis tool backed by the Anthropic Messages API."""

    name = "claude"
    description = "Claude (Anthropic) Messages API"
    default_model = "claude-sonnet-4-20250514"
    default_max_tokens = 8192

    # Rendering mockups needs a headless browser, which only the container has.
    unsupported_entrypoints = frozenset({"render_step_image"})

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        max_tokens: int = 0,
        input_cost_per_mtok: float = 3.0,
        output_cost_per_mtok: float = 15.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model or self.default_model
        self.max_tokens = max_tokens or self.default_max_tokens
        self.input_cost_per_mtok = Decimal(str(input_cost_per_mtok))
        self.output_cost_per_mtok = Decimal(str(output_cost_per_mtok))

    def _execute(self, invocation: ToolInvocation) -> ToolOutcome:
        output_dir = invocation.output_dir
        import anthropic

        prompt = self._build_prompt(invocation)
        try:
            message = self._call_api(prompt, timeout_s=invocation.timeout_s)
        except Exception as e:
            timed_out = isinstance(e, anthropic.APITimeoutError)
            logger.error("%s API error for job=%s: %s", self.name, invocation.job_type, e)
            return ToolOutcome(
                success=False,
                output_dir=output_dir,
                timed_out=timed_out,
                error=f"Claude API error: {e}",
            )

        self._write_usage(invocation, message)

        text = "".join(getattr(block, "text", "") for block in message.content)
        try:
            files = json.loads(extract_json(text))
        except json.JSONDecodeError as e:
            return ToolOutcome(
                success=False,
                output_dir=output_dir,
                stdout=text[:2000],
                error=f"Model response is not a JSON file map: {e}",
            )
        if not isinstance(files, dict):
            return ToolOutcome(
                success=False,
                output_dir=output_dir,
                stdout=text[:2000],
                error="Model response is not a JSON object",
            )

        for name, content in files.items():
            safe_name = str(name).replace("/", "_").replace("\\", "_")
            if not isinstance(content, str):
                content = json.dumps(content, indent=2)
            (output_dir / safe_name).write_text(content, encoding="utf-8")

        return ToolOutcome(success=True, output_dir=output_dir, exit_code=0, stdout=text[:2000])

    def _call_api(self, prompt: str, timeout_s: int):
        import anthropic

        client = anthropic.Anthropic(api_key=self.api_key or None, timeout=timeout_s)
        return client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

    def _build_prompt(self, invocation: ToolInvocation) -> str:
        parts = [
            f"Task: {ENTRYPOINT_INSTRUCTIONS.get(invocation.entrypoint, invocation.entrypoint)}",
        ]
        if invocation.output_files:
            parts.append(f"Output files: {', '.join(invocation.output_files)}")
        parts.append(f"\nContext:\n{json.dumps(invocation.context, default=str, indent=2)}")
        for name, content in invocation.files.items():
            parts.append(f"\n--- {name} ---\n{content}")
        return "\n".join(parts)

    def _write_usage(self, invocation: ToolInvocation, message: Any) -> None:
        usage = getattr(message, "usage", None)
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        cost = (
            Decimal(input_tokens) * self.input_cost_per_mtok
            + Decimal(output_tokens) * self.output_cost_per_mtok
        ) / Decimal(1_000_000)
        report = {
            "session_id": getattr(message, "id", "") or uuid.uuid4().hex,
            "num_turns": 1,
            "total_cost_usd": float(cost),
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": (
                    getattr(usage, "cache_creation_input_tokens", 0) or 0
                ),
                "cache_read_input_tokens": getattr(usage, "cache_read_input_tokens", 0) or 0,
                "service_tier": getattr(usage, "service_tier", "") or "",
            },
        }
        filename = invocation.usage_files[0] if invocation.usage_files else "usage.json"
        (invocation.output_dir / filename).write_text(json.dumps(report), encoding="utf-8")
