"""Tests for notification models."""

from django.test import SimpleTestCase, TestCase

from apps.notify.models import EventType, NotificationStatus, PendingNotification, pluralize
from apps.projects._tests.factories import make_project


def notification(event_type, status=NotificationStatus.SUCCESS, **metadata):
    return PendingNotification(event_type=event_type, status=status, metadata=metadata)


class PluralizeTests(SimpleTestCase):
    def test_forms(self):
        self.assertEqual(pluralize(1, "article"), "article")
        self.assertEqual(pluralize(2, "article"), "articles")
        self.assertEqual(pluralize(0, "repository", "repositories"), "repositories")
        self.assertEqual(pluralize("n/a", "task"), "tasks")


class DetailTextTests(SimpleTestCase):
    def test_no_metadata(self):
        self.assertIsNone(notification(EventType.ARTICLE_GENERATED).detail_text())

    def test_analysis_complete(self):
        n = notification(EventType.ANALYSIS_COMPLETE, repo_count=1)
        self.assertEqual(n.detail_text(), "Scanned 1 repository")

    def test_sections_suggested(self):
        n = notification(EventType.SECTIONS_SUGGESTED, section_count=4)
        self.assertEqual(n.detail_text(), "4 sections proposed")

    def test_recommendations_for_section_and_project(self):
        section = notification(
            EventType.RECOMMENDATIONS_GENERATED, recommendation_count=1, section_name="Billing"
        )
        project = notification(EventType.RECOMMENDATIONS_GENERATED, recommendation_count=5)
        self.assertEqual(section.detail_text(), "1 recommendation for Billing")
        self.assertEqual(project.detail_text(), "5 recommendations across all sections")

    def test_pull_request(self):
        n = notification(
            EventType.PR_ANALYZED, pr_number=12, pr_title="SSO", article_titles=["A", "B"]
        )
        self.assertEqual(n.detail_text(), "PR #12: SSO - 2 articles suggested")

    def test_commit(self):
        n = notification(EventType.COMMIT_ANALYZED, commit_sha="deadbeef1234", commit_title="Fix")
        self.assertEqual(n.detail_text(), "deadbee: Fix")

    def test_update_check(self):
        n = notification(
            EventType.ARTICLE_UPDATES_CHECKED, updates_suggested=1, new_articles_suggested=2
        )
        self.assertEqual(n.detail_text(), "1 article may need updates, 2 new articles suggested")
        quiet = notification(EventType.ARTICLE_UPDATES_CHECKED, updates_suggested=0, skipped=1)
        self.assertEqual(quiet.detail_text(), "All articles are up to date")


class NextStepTextTests(SimpleTestCase):
    def test_success_steps(self):
        self.assertEqual(
            notification(EventType.ARTICLE_GENERATED).next_step_text(),
            "Review it and publish when you're happy.",
        )
        self.assertEqual(
            notification(EventType.PR_ANALYZED, article_titles=["A"]).next_step_text(),
            "Review the suggested articles in code history.",
        )
        self.assertEqual(
            notification(EventType.COMMIT_ANALYZED).next_step_text(),
            "Check code history for details.",
        )

    def test_failure_steps(self):
        failed = NotificationStatus.ERROR
        self.assertEqual(
            notification(EventType.ANALYSIS_COMPLETE, failed).next_step_text(),
            "You can retry from project settings.",
        )
        self.assertEqual(
            notification(EventType.ARTICLE_GENERATED, failed).next_step_text(),
            "You can regenerate it from the inbox.",
        )
        self.assertIsNone(notification(EventType.PR_ANALYZED, failed).next_step_text())


class PendingNotificationTests(TestCase):
    def test_str_and_defaults(self):
        project = make_project()
        n = PendingNotification.objects.create(
            project=project, event_type=EventType.PR_ANALYZED, status=NotificationStatus.SUCCESS
        )
        self.assertEqual(str(n), f"pr_analyzed [success] for {project.pk}")
        self.assertIsNone(n.digested_at)
        self.assertEqual(n.metadata, {})
        self.assertTrue(n.is_success)
