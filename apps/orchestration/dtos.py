"""
Data Transfer Objects (DTOs) for job runs.

The runner returns a JobRunResult for every run instead of raising for
expected failures, so Celery tasks and admin actions can report outcomes
uniformly.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class JobError:
    """Represents the error that ended a run."""

    error_type: str
    message: str
    fallback_written: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class JobRunResult:
    """
    Outcome of one runner invocation.

    status is one of:
    - "completed": derived records written, entity status completed
    - "failed": fallback written (when the job has one), entity status failed
    - "skipped": entity missing or not pending; nothing was run
    """

    job: str
    entity_id: int
    run_id: str
    status: str
    reason: str = ""
    error: JobError | None = None
    usage_record_ids: list[int] = field(default_factory=list)
    notification_id: int | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
