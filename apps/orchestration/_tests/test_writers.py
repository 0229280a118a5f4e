"""Tests for the derived entity writer."""

from django.test import SimpleTestCase, TestCase

from apps.orchestration.writers import (
    AI_UNAVAILABLE_MARKER,
    NO_DESCRIPTION,
    ChangeAnalysis,
    DerivedEntityWriter,
    ProposedArticle,
    render_article_markdown,
)
from apps.projects._tests.factories import (
    make_commit_entry,
    make_pr_entry,
    make_project,
    make_recommendation,
)
from apps.projects.models import ReviewDecision


class ProposedArticleTests(SimpleTestCase):
    def test_from_dict_requires_title(self):
        self.assertIsNone(ProposedArticle.from_dict({"description": "x"}))
        self.assertIsNone(ProposedArticle.from_dict("Just a string"))

    def test_from_dict_strips_fields(self):
        article = ProposedArticle.from_dict({"title": "  Setup  ", "description": " d "})
        self.assertEqual(article.title, "Setup")
        self.assertEqual(article.description, "d")
        self.assertEqual(article.justification, "")


class RenderArticleMarkdownTests(SimpleTestCase):
    def test_renders_sections_in_order(self):
        markdown = render_article_markdown(
            {
                "introduction": "Intro.",
                "prerequisites": ["An account"],
                "steps": [{"title": "Sign in", "content": "Use SSO."}, "Click save"],
                "summary": "Done.",
            }
        )
        self.assertEqual(
            markdown,
            "Intro.\n\n"
            "## Prerequisites\n\n- An account\n\n"
            "## 1. Sign in\n\nUse SSO.\n\n"
            "## 2. Step 2\n\nClick save\n\n"
            "Done.",
        )


class ChangelogWriterTests(TestCase):
    def setUp(self):
        self.project = make_project()
        self.entry = make_pr_entry(self.project)

    def test_title_falls_back_to_trigger_title(self):
        writer = DerivedEntityWriter("run-1")
        writer.write_changelog_entry(self.entry, ChangeAnalysis(content="Body"))
        self.entry.refresh_from_db()
        self.assertEqual(self.entry.title, "Add dark mode")

    def test_rerun_replaces_undecided_recommendations_only(self):
        accepted = make_recommendation(
            self.project, title="Kept", source_update=self.entry, status=ReviewDecision.ACCEPTED
        )
        make_recommendation(self.project, title="Stale", source_update=self.entry, run_id="run-1")

        DerivedEntityWriter("run-2").write_changelog_entry(
            self.entry,
            ChangeAnalysis(content="Body", articles=[ProposedArticle(title="Fresh")]),
        )

        titles = set(self.entry.recommendations.values_list("title", flat=True))
        self.assertEqual(titles, {"Kept", "Fresh"})
        self.assertTrue(self.entry.recommendations.filter(pk=accepted.pk).exists())

    def test_empty_result_leaves_existing_batch(self):
        make_recommendation(self.project, title="Earlier", source_update=self.entry, run_id="run-1")

        created = DerivedEntityWriter("run-2").write_changelog_entry(
            self.entry, ChangeAnalysis(content="Body", no_articles_reason="internal change")
        )

        self.assertEqual(created, [])
        self.assertEqual(self.entry.recommendations.count(), 1)

    def test_pull_request_fallback_without_body(self):
        self.entry.trigger_body = ""
        DerivedEntityWriter().write_changelog_fallback(self.entry, RuntimeError("boom"))

        self.entry.refresh_from_db()
        self.assertIn(NO_DESCRIPTION, self.entry.content)
        self.assertIn("generated from a merged pull request", self.entry.content)
        self.assertTrue(self.entry.content.rstrip().endswith(AI_UNAVAILABLE_MARKER))
        self.assertEqual(self.entry.analysis_error, "boom")

    def test_commit_fallback_heading(self):
        entry = make_commit_entry(self.project, sha="feedface00112233", trigger_title="")
        content = DerivedEntityWriter.changelog_fallback_content(entry)
        self.assertTrue(content.startswith("## Commit feedfac\n\n"))
        self.assertIn("generated from a commit", content)
