"""Tests for notification queueing and digest delivery."""

from unittest.mock import MagicMock, patch

from django.test import TestCase, override_settings

from apps.notify.models import EventType, NotificationStatus, PendingNotification
from apps.notify.services import DigestService, NotificationQueue
from apps.orchestration.state_machine import JobStatus
from apps.projects._tests.factories import make_project
from apps.projects.models import Project


def ok_driver():
    driver = MagicMock()
    driver.name = "fake"
    driver.send.return_value = {"success": True, "message_id": "m-1"}
    return driver


class NotificationQueueTests(TestCase):
    def setUp(self):
        self.project = make_project()
        self.queue = NotificationQueue()

    @override_settings(NOTIFY_DIGEST_DELAY_SECONDS=15)
    @patch("apps.notify.tasks.send_notification_digest")
    def test_record_schedules_digest_when_idle(self, task):
        n = self.queue.record(
            self.project,
            event_type=EventType.PR_ANALYZED,
            status=NotificationStatus.SUCCESS,
            message="Reviewed PR #1",
            metadata={"pr_number": 1},
        )

        self.assertEqual(n.recipient, "owner@example.com")
        self.assertEqual(n.metadata, {"pr_number": 1})
        task.apply_async.assert_called_once_with(
            kwargs={"project_id": self.project.pk}, countdown=15
        )

    @patch("apps.notify.tasks.send_notification_digest")
    def test_record_waits_while_jobs_run(self, task):
        Project.objects.filter(pk=self.project.pk).update(
            sections_generation_status=JobStatus.PENDING
        )
        self.project.refresh_from_db()

        self.queue.record(
            self.project, event_type=EventType.ANALYSIS_COMPLETE, status="success", message="Done"
        )

        task.apply_async.assert_not_called()
        self.assertEqual(self.project.pending_notifications.count(), 1)

    @patch("apps.notify.tasks.send_notification_digest")
    def test_schedule_failure_is_logged(self, task):
        task.apply_async.side_effect = ConnectionError("broker down")
        with self.assertLogs("apps.notify.services", level="ERROR"):
            n = self.queue.record(
                self.project, event_type=EventType.PR_ANALYZED, status="success", message="ok"
            )
        self.assertIsNotNone(n)

    def test_store_failure_returns_none(self):
        with patch.object(PendingNotification.objects, "create", side_effect=RuntimeError("db")):
            self.assertIsNone(
                self.queue.record(
                    self.project, event_type=EventType.PR_ANALYZED, status="success", message="ok"
                )
            )


class DigestServiceTests(TestCase):
    def setUp(self):
        self.project = make_project(name="Acme")
        self.driver = ok_driver()
        self.service = DigestService(driver=self.driver, config={})

    def unconsumed(self):
        return self.project.pending_notifications.filter(digested_at__isnull=True)

    def add(self, event_type=EventType.PR_ANALYZED, status=NotificationStatus.SUCCESS, **kwargs):
        kwargs.setdefault("recipient", self.project.owner_email)
        return PendingNotification.objects.create(
            project=self.project, event_type=event_type, status=status, message="msg", **kwargs
        )

    def test_sends_one_digest_and_consumes_rows(self):
        self.add(metadata={"pr_number": 9})
        self.add(EventType.COMMIT_ANALYZED, NotificationStatus.ERROR)

        result = self.service.send_for_project(self.project)

        self.assertEqual(result.status, "sent")
        self.assertEqual(result.consumed, 2)
        self.assertEqual(result.sent, 1)
        message = self.driver.send.call_args.args[0]
        self.assertEqual(message.subject, "Acme: PR #9 has been reviewed (1 issue)")
        self.assertEqual(message.recipient, "owner@example.com")
        self.assertIn("Needs attention", message.text)
        self.assertFalse(self.unconsumed().exists())

    def test_deferred_while_jobs_run(self):
        self.add()
        Project.objects.filter(pk=self.project.pk).update(analysis_status=JobStatus.RUNNING)
        self.project.refresh_from_db()

        result = self.service.send_for_project(self.project)

        self.assertEqual(result.status, "deferred")
        self.driver.send.assert_not_called()
        self.assertTrue(self.unconsumed().exists())

    def test_force_ignores_running_jobs(self):
        self.add()
        Project.objects.filter(pk=self.project.pk).update(analysis_status=JobStatus.RUNNING)
        self.project.refresh_from_db()
        self.assertEqual(self.service.send_for_project(self.project, force=True).status, "sent")

    def test_empty(self):
        self.assertEqual(self.service.send_for_project(self.project).status, "empty")

    def test_rows_are_claimed_once(self):
        self.add()
        self.assertEqual(len(self.service.claim_batch(self.project)), 1)
        self.assertEqual(self.service.claim_batch(self.project), [])
        self.assertEqual(self.service.send_for_project(self.project).status, "empty")

    def test_disabled_notifications_drop_events(self):
        self.project.email_notifications_enabled = False
        self.project.save()
        self.add()

        result = self.service.send_for_project(self.project)

        self.assertEqual(result.status, "muted")
        self.assertEqual(result.consumed, 1)
        self.driver.send.assert_not_called()

    def test_muted_event_types_are_filtered(self):
        self.project.disabled_email_events = [EventType.COMMIT_ANALYZED]
        self.project.save()
        self.add(EventType.COMMIT_ANALYZED)
        self.assertEqual(self.service.send_for_project(self.project).status, "muted")

        self.add(EventType.COMMIT_ANALYZED)
        self.add(metadata={"pr_number": 2})
        result = self.service.send_for_project(self.project)
        self.assertEqual(result.status, "sent")
        self.assertEqual(len(result.digests[0].successes), 1)

    def test_one_digest_per_recipient(self):
        self.add(recipient="a@example.com")
        self.add(recipient="b@example.com")
        self.add(recipient="")

        result = self.service.send_for_project(self.project)

        self.assertEqual(
            sorted(d.recipient for d in result.digests),
            ["a@example.com", "b@example.com", "owner@example.com"],
        )

    def test_driver_failure_keeps_rows_consumed(self):
        self.driver.send.return_value = {"success": False, "error": "smtp down"}
        self.add()

        result = self.service.send_for_project(self.project)

        self.assertEqual(result.status, "failed")
        self.assertEqual(result.errors, ["smtp down"])
        self.assertFalse(self.unconsumed().exists())

    def test_send_sample_does_not_touch_queue(self):
        self.add()

        result = self.service.send_sample(self.project)

        self.assertEqual(result.status, "sent")
        self.assertIn("+ 2 more", self.driver.send.call_args.args[0].subject)
        self.assertTrue(self.unconsumed().exists())

    @override_settings(NOTIFY_DRIVER="email", NOTIFY_CONFIG={"smtp_host": "h"})
    def test_driver_and_config_default_to_settings(self):
        service = DigestService()
        self.assertEqual(service.driver.name, "email")
        self.assertEqual(service.config, {"smtp_host": "h"})
