"""Tests for project domain models."""

from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings

from apps.orchestration.state_machine import JobStatus
from apps.projects._tests.factories import (
    make_article,
    make_commit_entry,
    make_pr_entry,
    make_project,
    make_recommendation,
    make_section,
    make_step_image,
)
from apps.projects.models import (
    ArticleUpdateCheck,
    ArticleUpdateSuggestion,
    ReviewDecision,
    SuggestionStatus,
    SuggestionType,
)


class ProjectTests(TestCase):
    def test_slug_is_derived_from_name(self):
        project = make_project(name="Acme Help Centre")
        self.assertEqual(project.slug, "acme-help-centre")

    def test_url_uses_site_url(self):
        project = make_project(name="Acme")
        self.assertEqual(project.url, "https://pages.example.com/projects/acme")

    def test_primary_repository_first(self):
        project = make_project(repo="acme/web")
        project.repositories.create(full_name="acme/api-extra")
        self.assertEqual(project.primary_repository.full_name, "acme/web")
        self.assertEqual(
            [r["clone_dir"] for r in project.repositories_for_analysis()], ["web", "api-extra"]
        )

    def test_has_running_jobs_idle(self):
        project = make_project()
        make_pr_entry(project, analysis_status=JobStatus.COMPLETED)
        self.assertFalse(project.has_running_jobs())

    def test_has_running_jobs_project_status(self):
        project = make_project(analysis_status=JobStatus.RUNNING)
        self.assertTrue(project.has_running_jobs())

    def test_has_running_jobs_child_entity(self):
        project = make_project()
        make_pr_entry(project, analysis_status=JobStatus.PENDING)
        self.assertTrue(project.has_running_jobs())

    def test_has_running_jobs_step_image(self):
        project = make_project()
        article = make_article(project)
        make_step_image(article, render_status=JobStatus.RUNNING)
        self.assertTrue(project.has_running_jobs())


class ChangelogEntryTests(TestCase):
    def setUp(self):
        self.project = make_project()

    def test_one_entry_per_pull_request(self):
        make_pr_entry(self.project, number=3)
        with self.assertRaises(IntegrityError), transaction.atomic():
            make_pr_entry(self.project, number=3)

    def test_one_entry_per_commit(self):
        make_commit_entry(self.project, sha="abc")
        with self.assertRaises(IntegrityError), transaction.atomic():
            make_commit_entry(self.project, sha="abc")

    def test_default_titles(self):
        self.assertEqual(make_pr_entry(self.project, number=12).default_title, "PR #12")
        self.assertEqual(
            make_commit_entry(self.project, sha="deadbeefcafe").default_title, "Commit deadbee"
        )


class RecommendationTests(TestCase):
    def setUp(self):
        self.project = make_project()

    def test_accept_creates_article_and_claims_generation(self):
        section = make_section(self.project)
        recommendation = make_recommendation(self.project, section=section)

        article = recommendation.accept()

        recommendation.refresh_from_db()
        article.refresh_from_db()
        self.assertEqual(recommendation.status, ReviewDecision.ACCEPTED)
        self.assertEqual(article.title, recommendation.title)
        self.assertEqual(article.section, section)
        self.assertEqual(article.generation_status, JobStatus.PENDING)

    def test_accept_twice_reuses_article(self):
        recommendation = make_recommendation(self.project)
        first = recommendation.accept()
        second = recommendation.accept()
        self.assertEqual(first.pk, second.pk)

    def test_reject(self):
        recommendation = make_recommendation(self.project)
        recommendation.reject()
        recommendation.refresh_from_db()
        self.assertEqual(recommendation.status, ReviewDecision.REJECTED)
        self.assertIsNotNone(recommendation.rejected_at)


class ArticleTests(TestCase):
    def test_structured_accessors(self):
        article = make_article(
            make_project(),
            structured_content={
                "introduction": "Intro",
                "steps": [{"title": "One"}],
                "tips": ["Tip"],
                "summary": "Done",
            },
        )
        self.assertTrue(article.is_structured)
        self.assertEqual(article.introduction, "Intro")
        self.assertEqual(article.prerequisites, [])
        self.assertEqual(len(article.steps), 1)
        self.assertEqual(article.summary, "Done")

    def test_publish(self):
        article = make_article(make_project())
        article.publish()
        article.refresh_from_db()
        self.assertEqual(article.status, "published")
        self.assertIsNotNone(article.published_at)

    def test_saving_content_bumps_cache_version(self):
        project = make_project()
        make_article(project)
        make_section(project)
        project.refresh_from_db()
        self.assertEqual(project.cache_version, 2)


class ArticleUpdateCheckTests(TestCase):
    def setUp(self):
        self.project = make_project()
        self.check = ArticleUpdateCheck.objects.create(
            project=self.project, target_commit_sha="b" * 40
        )

    def test_summary_up_to_date(self):
        self.assertEqual(self.check.summary(), "All articles are up to date")

    def test_summary_counts(self):
        self.check.results = {"updates_suggested": 2, "new_articles_suggested": 1}
        self.assertEqual(
            self.check.summary(), "2 articles may need updates, 1 new article suggested"
        )

    def test_accept_update_stores_regeneration_guidance(self):
        article = make_article(self.project)
        suggestion = ArticleUpdateSuggestion.objects.create(
            check_run=self.check,
            article=article,
            suggestion_type=SuggestionType.UPDATE_NEEDED,
            reason="The settings page moved.",
            affected_files=["app/settings.py"],
            suggested_changes={"update_steps": [2, 3], "update_introduction": True},
        )

        suggestion.accept()

        article.refresh_from_db()
        self.assertEqual(suggestion.status, SuggestionStatus.ACCEPTED)
        self.assertEqual(
            article.regeneration_guidance,
            "The settings page moved.\n\n"
            "Steps that need updating: 2, 3\n\n"
            "Update the introduction\n\n"
            "Affected files: app/settings.py",
        )

    def test_dismiss(self):
        suggestion = ArticleUpdateSuggestion.objects.create(
            check_run=self.check, suggestion_type=SuggestionType.NEW_ARTICLE
        )
        suggestion.dismiss()
        suggestion.refresh_from_db()
        self.assertEqual(suggestion.status, SuggestionStatus.DISMISSED)


class StepImageTests(TestCase):
    @override_settings(STEP_IMAGE_MAX_RENDER_ATTEMPTS=2)
    def test_retries_exhausted(self):
        step = make_step_image(make_article(make_project()), render_attempts=1)
        self.assertFalse(step.retries_exhausted)
        step.render_attempts = 2
        self.assertTrue(step.retries_exhausted)

    def test_render_metadata_accessors(self):
        step = make_step_image(
            make_article(make_project()),
            render_metadata={"qualityScore": {"score": 87}, "pageErrors": ["boom"]},
        )
        self.assertEqual(step.quality_score, 87)
        self.assertEqual(step.page_errors, ["boom"])
