"""
Monitoring signals for analysis jobs.

Emits one structured signal at every job boundary:
- job.started
- job.succeeded / job.failed (with duration and fallback flag)
- job.skipped (entity missing or not claimed)
- job.duration metric

Every signal carries the same tags: job, entity_type, entity_id, project_id, run_id.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings

logger = logging.getLogger("apps.orchestration.signals")


@dataclass
class JobTags:
    """Required tags for all job signals."""

    job: str
    run_id: str
    entity_type: str = ""
    entity_id: int | None = None
    project_id: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        base = {
            "job": self.job,
            "run_id": self.run_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "project_id": self.project_id,
        }
        base.update(self.extra)
        return base


class MonitoringBackend:
    """
    Abstract monitoring backend.

    Override emit() to send signals to your preferred monitoring system.
    """

    def emit(
        self,
        signal_name: str,
        tags: JobTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        raise NotImplementedError


class LoggingBackend(MonitoringBackend):
    """Default backend: structured logging."""

    def emit(
        self,
        signal_name: str,
        tags: JobTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        data = {
            "signal": signal_name,
            "value": value,
            **tags.to_dict(),
            **(extra or {}),
        }
        logger.info("[SIGNAL] %s", signal_name, extra={"signal_data": data})


def get_monitoring_backend() -> MonitoringBackend:
    """Build the backend named by ``settings.ORCHESTRATION_METRICS_BACKEND`` (dotted path)."""
    from django.utils.module_loading import import_string

    path = getattr(settings, "ORCHESTRATION_METRICS_BACKEND", "")
    if path:
        return import_string(path)()
    return LoggingBackend()


_backend: MonitoringBackend | None = None


def _get_backend() -> MonitoringBackend:
    global _backend
    if _backend is None:
        _backend = get_monitoring_backend()
    return _backend


def emit_job_started(tags: JobTags) -> None:
    _get_backend().emit("job.started", tags)


def emit_job_skipped(tags: JobTags, reason: str) -> None:
    _get_backend().emit("job.skipped", tags, extra={"reason": reason})


def emit_job_succeeded(tags: JobTags, duration_ms: float) -> None:
    _get_backend().emit("job.succeeded", tags, extra={"duration_ms": duration_ms})
    _get_backend().emit("job.duration", tags, value=duration_ms)


def emit_job_failed(
    tags: JobTags,
    error_type: str,
    error_message: str,
    duration_ms: float,
    fallback_written: bool,
) -> None:
    _get_backend().emit(
        "job.failed",
        tags,
        extra={
            "error_type": error_type,
            "error_message": error_message,
            "duration_ms": duration_ms,
            "fallback_written": fallback_written,
        },
    )
    _get_backend().emit("job.duration", tags, value=duration_ms)


class JobTimer:
    """Measures wall-clock duration of a job run in milliseconds."""

    def __init__(self) -> None:
        self.start_time = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000
