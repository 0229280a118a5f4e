"""Tests for idempotent job dispatch."""

from unittest.mock import patch

from django.test import TestCase

from apps.orchestration.dispatch import (
    dispatch,
    dispatch_commit_analysis,
    dispatch_pull_request_analysis,
    redispatch,
    request_article_update_check,
)
from apps.orchestration.state_machine import JobStatus
from apps.projects._tests.factories import make_article, make_pr_entry, make_project
from apps.projects.models import ArticleUpdateCheck, ChangelogEntry, Project


class DispatchTests(TestCase):
    def setUp(self):
        self.project = make_project()

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_claims_and_enqueues(self, task):
        self.assertTrue(dispatch("analyze_codebase", self.project, params={"force": True}))

        self.project.refresh_from_db()
        self.assertEqual(self.project.analysis_status, JobStatus.PENDING)
        kwargs = task.delay.call_args.kwargs
        self.assertEqual(kwargs["job_name"], "analyze_codebase")
        self.assertEqual(kwargs["entity_id"], self.project.pk)
        self.assertEqual(kwargs["params"], {"force": True})
        self.assertTrue(kwargs["run_id"])

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_second_dispatch_is_a_no_op(self, task):
        self.assertTrue(dispatch("analyze_codebase", self.project))
        self.assertFalse(dispatch("analyze_codebase", self.project))
        self.assertEqual(task.delay.call_count, 1)

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_countdown_uses_apply_async(self, task):
        dispatch("analyze_codebase", self.project, countdown=30)
        task.delay.assert_not_called()
        self.assertEqual(task.apply_async.call_args.kwargs["countdown"], 30)

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_enqueue_failure_releases_claim(self, task):
        task.delay.side_effect = ConnectionError("broker down")

        with self.assertRaises(ConnectionError):
            dispatch("analyze_codebase", self.project)

        self.project.refresh_from_db()
        self.assertEqual(self.project.analysis_status, JobStatus.UNSET)
        task.delay.side_effect = None
        self.assertTrue(dispatch("analyze_codebase", self.project))

    def test_unknown_job(self):
        with self.assertRaises(ValueError):
            dispatch("does_not_exist", self.project)

    def test_job_scope_guards_shared_status_field(self):
        entry = make_pr_entry(self.project)
        self.assertFalse(dispatch("analyze_commit", entry))
        self.assertTrue(dispatch("analyze_pull_request", entry))


class RedispatchTests(TestCase):
    def setUp(self):
        self.project = make_project()
        self.article = make_article(
            self.project,
            generation_status=JobStatus.COMPLETED,
            regeneration_guidance="Mention the new SSO page.",
        )

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_completed_article_is_regenerated(self, task):
        self.assertFalse(dispatch("generate_article", self.article))

        self.assertTrue(redispatch("generate_article", self.article))

        self.article.refresh_from_db()
        self.assertEqual(self.article.generation_status, JobStatus.PENDING)
        self.assertEqual(task.delay.call_args.kwargs["entity_id"], self.article.pk)

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_in_flight_run_is_left_alone(self, task):
        self.assertTrue(redispatch("generate_article", self.article))
        self.assertFalse(redispatch("generate_article", self.article))

        self.article.refresh_from_db()
        self.assertEqual(self.article.generation_status, JobStatus.PENDING)
        self.assertEqual(task.delay.call_count, 1)

    @patch("apps.orchestration.tasks.run_analysis_job")
    def test_codebase_analysis_can_run_again(self, task):
        Project.objects.filter(pk=self.project.pk).update(analysis_status=JobStatus.COMPLETED)
        self.project.refresh_from_db()

        self.assertTrue(redispatch("analyze_codebase", self.project))
        self.assertEqual(task.delay.call_args.kwargs["job_name"], "analyze_codebase")


class ChangeDispatchTests(TestCase):
    def setUp(self):
        self.project = make_project()

    def test_pull_request_entry_created_once(self):
        entry, dispatched = dispatch_pull_request_analysis(
            self.project, number=5, title="Add SSO", body="Body", url="https://x/5", repo="acme/api"
        )
        again, dispatched_again = dispatch_pull_request_analysis(
            self.project, number=5, title="Other"
        )

        self.assertTrue(dispatched)
        self.assertFalse(dispatched_again)
        self.assertEqual(entry.pk, again.pk)
        self.assertEqual(ChangelogEntry.objects.count(), 1)
        self.assertEqual(again.trigger_title, "Add SSO")

    def test_failed_pull_request_is_dispatched_again(self):
        entry, _ = dispatch_pull_request_analysis(self.project, number=5)
        ChangelogEntry.objects.filter(pk=entry.pk).update(analysis_status=JobStatus.FAILED)

        _, dispatched = dispatch_pull_request_analysis(self.project, number=5)

        self.assertTrue(dispatched)

    def test_commit_message_is_split_into_title_and_body(self):
        entry, dispatched = dispatch_commit_analysis(
            self.project, sha="abc123", message="Fix login\n\nRedirect loop on Safari."
        )
        self.assertTrue(dispatched)
        self.assertEqual(entry.trigger_title, "Fix login")
        self.assertEqual(entry.trigger_body, "Redirect loop on Safari.")
        self.assertEqual(entry.analysis_status, JobStatus.PENDING)


class ArticleUpdateCheckDispatchTests(TestCase):
    def setUp(self):
        self.project = make_project(analysis_commit_sha="t" * 40)

    def test_no_target_commit(self):
        self.project.analysis_commit_sha = ""
        self.assertEqual(request_article_update_check(self.project), (None, False))

    def test_base_is_oldest_article_commit(self):
        make_article(self.project, title="Old", source_commit_sha="o" * 40)
        make_article(self.project, title="New", source_commit_sha="n" * 40)

        check, dispatched = request_article_update_check(self.project)

        self.assertTrue(dispatched)
        self.assertEqual(check.base_commit_sha, "o" * 40)
        self.assertEqual(check.target_commit_sha, "t" * 40)
        self.assertEqual(check.status, JobStatus.PENDING)

    def test_base_is_last_completed_check(self):
        ArticleUpdateCheck.objects.create(
            project=self.project, target_commit_sha="p" * 40, status=JobStatus.COMPLETED
        )
        check, _ = request_article_update_check(self.project)
        self.assertEqual(check.base_commit_sha, "p" * 40)

    def test_in_flight_check_is_returned(self):
        running = ArticleUpdateCheck.objects.create(
            project=self.project, target_commit_sha="p" * 40, status=JobStatus.RUNNING
        )
        self.assertEqual(request_article_update_check(self.project), (running, False))

    def test_already_checked_up_to_target(self):
        ArticleUpdateCheck.objects.create(
            project=self.project, target_commit_sha="t" * 40, status=JobStatus.COMPLETED
        )
        self.assertEqual(request_article_update_check(self.project), (None, False))
        self.assertEqual(self.project.update_checks.count(), 1)
