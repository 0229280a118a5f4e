"""
Analysis job runner.

Drives one job run end to end:

1. Load the entity and move its status pending -> running (skip otherwise)
2. Invoke the external tool in a per-run working directory
3. Record usage telemetry, whatever the outcome
4. Success: interpret output, write derived records and mark completed
   in one transaction
5. Failure: write fallback content and mark failed in one transaction,
   queue an error notification

Tool errors (non-zero exit, timeout, malformed output) end the run as
failed without raising. Anything else is recorded the same way and then
re-raised so the worker logs it.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any

from django.db import transaction

from apps.intelligence.exceptions import AnalysisToolError, ToolTimeoutError
from apps.intelligence.tools import get_tool
from apps.intelligence.tools.base import BaseAnalysisTool, ToolOutcome
from apps.intelligence.usage import UsageRecorder
from apps.orchestration.dtos import JobError, JobRunResult
from apps.orchestration.jobs import BaseJob, get_job
from apps.orchestration.signals import (
    JobTags,
    JobTimer,
    emit_job_failed,
    emit_job_skipped,
    emit_job_started,
    emit_job_succeeded,
)
from apps.orchestration.state_machine import (
    InvalidTransition,
    JobStatus,
    StaleStatus,
    StatusMachine,
)
from apps.orchestration.workspace import analysis_workdir

logger = logging.getLogger(__name__)


class AnalysisJobRunner:
    """
    Runs registered job kinds against the configured analysis tool.

    Usage:
        runner = AnalysisJobRunner()
        result = runner.run("analyze_pull_request", entry.pk)
    """

    def __init__(
        self,
        tool: BaseAnalysisTool | None = None,
        usage_recorder: UsageRecorder | None = None,
        notification_queue=None,
    ):
        self._tool = tool
        self.usage_recorder = usage_recorder or UsageRecorder()
        self._notification_queue = notification_queue

    @property
    def tool(self) -> BaseAnalysisTool:
        if self._tool is None:
            self._tool = get_tool()
        return self._tool

    @property
    def notification_queue(self):
        if self._notification_queue is None:
            from apps.notify.services import NotificationQueue

            self._notification_queue = NotificationQueue()
        return self._notification_queue

    def run(
        self,
        job_name: str,
        entity_id: int,
        params: dict[str, Any] | None = None,
        run_id: str | None = None,
    ) -> JobRunResult:
        job_class = get_job(job_name)
        run_id = run_id or uuid.uuid4().hex
        result = JobRunResult(job=job_name, entity_id=entity_id, run_id=run_id, status="skipped")
        tags = JobTags(
            job=job_name,
            run_id=run_id,
            entity_type=job_class.get_model().__name__,
            entity_id=entity_id,
        )

        entity = job_class.load(entity_id)
        if entity is None:
            logger.warning("Skipping %s: %s#%s not found", job_name, tags.entity_type, entity_id)
            result.reason = "entity not found"
            emit_job_skipped(tags, result.reason)
            return result

        job = job_class(entity, params, run_id)
        machine = job_class.status_machine()
        tags.project_id = job.project.pk

        try:
            machine.transition(entity, JobStatus.RUNNING)
        except (InvalidTransition, StaleStatus) as e:
            logger.info("Skipping %s for %s#%s: %s", job_name, tags.entity_type, entity_id, e)
            result.reason = f"not pending ({machine.status_of(entity) or 'unset'})"
            emit_job_skipped(tags, result.reason)
            return result

        emit_job_started(tags)
        timer = JobTimer()
        try:
            interpreted = self._invoke(job, result)
            with transaction.atomic():
                job.write_result(interpreted)
                machine.transition(entity, JobStatus.COMPLETED, **job.completed_fields(interpreted))
        except AnalysisToolError as e:
            logger.warning("%s failed for %s#%s: %s", job_name, tags.entity_type, entity_id, e)
            return self._fail(job, machine, e, result, tags, timer)
        except Exception as e:
            logger.exception(
                "%s raised unexpectedly for %s#%s",
                job_name,
                tags.entity_type,
                entity_id,
                extra={"run_id": run_id},
            )
            self._fail(job, machine, e, result, tags, timer)
            raise

        result.status = "completed"
        result.duration_ms = timer.elapsed_ms
        emit_job_succeeded(tags, result.duration_ms)
        result.notification_id = self._notify(job, result=interpreted)
        try:
            job.after_success(interpreted)
        except Exception:
            logger.error(
                "after_success hook failed for %s run_id=%s", job_name, run_id, exc_info=True
            )
        return result

    def fail_stale(self, job_name: str, entity, older_than_s: int) -> JobRunResult:
        """Mark a run stuck in ``running`` as failed, as if the tool had timed out."""
        job_class = get_job(job_name)
        job = job_class(entity, run_id=uuid.uuid4().hex)
        result = JobRunResult(job=job_name, entity_id=entity.pk, run_id=job.run_id, status="failed")
        tags = JobTags(
            job=job_name,
            run_id=job.run_id,
            entity_type=type(entity).__name__,
            entity_id=entity.pk,
            project_id=job.project.pk,
        )
        error = ToolTimeoutError(
            f"Run did not finish within {older_than_s}s and was marked failed"
        )
        return self._fail(job, job_class.status_machine(), error, result, tags, JobTimer())

    def _invoke(self, job: BaseJob, result: JobRunResult) -> Any:
        """Run the tool and interpret its output while the working directory exists."""
        with analysis_workdir(f"{job.name}_{job.entity.pk}") as workdir:
            invocation = job.build_invocation(workdir)
            outcome: ToolOutcome | None = None
            try:
                outcome = self.tool.invoke(invocation)
            finally:
                result.usage_record_ids = self._record_usage(job, invocation.output_dir, outcome)
            outcome.raise_for_status()
            return job.interpret(outcome.output_dir)

    def _record_usage(
        self, job: BaseJob, output_dir: Path, outcome: ToolOutcome | None
    ) -> list[int]:
        if not job.usage_files:
            return []
        records = self.usage_recorder.record_all(
            output_dir,
            job.usage_files,
            job_type=job.name,
            project=job.project,
            run_id=job.run_id,
            success=bool(outcome and outcome.success),
            error_message=outcome.error if outcome else "Tool invocation raised",
        )
        return [record.pk for record in records]

    def _fail(
        self,
        job: BaseJob,
        machine: StatusMachine,
        error: Exception,
        result: JobRunResult,
        tags: JobTags,
        timer: JobTimer,
    ) -> JobRunResult:
        entity = job.entity
        # Drop in-memory changes from a rolled back write_result.
        entity.refresh_from_db()
        fallback_written = False
        try:
            with transaction.atomic():
                job.write_fallback(error)
                fallback_written = type(job).write_fallback is not BaseJob.write_fallback
                machine.transition(entity, JobStatus.FAILED, **job.failed_fields(error))
        except Exception:
            logger.error(
                "Could not write fallback for %s %s#%s",
                job.name,
                tags.entity_type,
                entity.pk,
                exc_info=True,
            )
            fallback_written = False
            entity.refresh_from_db()
            if machine.status_of(entity) == JobStatus.RUNNING:
                machine.transition(entity, JobStatus.FAILED, **job.failed_fields(error))

        result.status = "failed"
        result.duration_ms = timer.elapsed_ms
        result.error = JobError(
            error_type=type(error).__name__,
            message=str(error),
            fallback_written=fallback_written,
        )
        emit_job_failed(
            tags,
            error_type=result.error.error_type,
            error_message=result.error.message,
            duration_ms=result.duration_ms,
            fallback_written=fallback_written,
        )
        result.notification_id = self._notify(job, error=error)
        try:
            job.after_failure(error)
        except Exception:
            logger.error(
                "after_failure hook failed for %s run_id=%s", job.name, job.run_id, exc_info=True
            )
        return result

    def _notify(
        self, job: BaseJob, result: Any = None, error: Exception | None = None
    ) -> int | None:
        """Queue the job's pending notification. Never fails the run."""
        try:
            spec = job.notification(result=result, error=error)
            if spec is None:
                return None
            notification = self.notification_queue.record(
                job.project,
                event_type=spec.event_type,
                status="error" if error is not None else "success",
                message=spec.message,
                action_url=spec.action_url,
                metadata=spec.metadata,
            )
        except Exception:
            logger.error(
                "Failed to queue notification for %s run_id=%s", job.name, job.run_id, exc_info=True
            )
            return None
        return notification.pk if notification is not None else None
