"""
Shared status state machine for analysis-driven entities.

Every job kind drives exactly one status column through the same states:

    unset -> pending -> running -> completed | failed
    failed -> pending        (a new run)
    pending -> unset         (claim released after a failed enqueue)
    completed | failed -> unset   (operator-requested re-run)

Claims and transitions are applied as conditional UPDATEs so that two
dispatchers racing on the same row cannot both start a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any

from django.db import models
from django.db.models import Q
from django.utils import timezone

logger = logging.getLogger(__name__)


class JobStatus(models.TextChoices):
    """Status values shared by every job-driven status column."""

    UNSET = "", "Not started"
    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


STARTABLE = frozenset({JobStatus.UNSET, JobStatus.FAILED})
IN_FLIGHT = frozenset({JobStatus.PENDING, JobStatus.RUNNING})
# Finished states an operator may send back to unset. Automatic dispatch never does.
RESETTABLE = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

TRANSITIONS: dict[str, frozenset[str]] = {
    JobStatus.UNSET: frozenset({JobStatus.PENDING}),
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.UNSET}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
}


class InvalidTransition(Exception):
    """Requested transition is not allowed by the transition table."""

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(
            f"Transition {source or 'unset'!r} -> {target or 'unset'!r} is not allowed"
        )


class StaleStatus(Exception):
    """The row's status changed underneath us before the transition was applied."""


def can_transition(source: str, target: str) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


@dataclass
class StatusMachine:
    """Drives one status column of one model through the shared states.

    Attributes:
        model: Django model class owning the status column.
        field: Name of the status column.
        started_at_field: Column set when the status enters ``running``.
        start_condition: Extra guard a row must satisfy to be claimed.
        update_timestamp: Whether the model has an ``updated_at`` column to touch.
    """

    model: type[models.Model]
    field: str
    started_at_field: str | None = None
    start_condition: Q = dataclass_field(default_factory=Q)
    update_timestamp: bool = True

    def status_of(self, instance: models.Model) -> str:
        return getattr(instance, self.field) or JobStatus.UNSET

    def can_start(self, instance: models.Model) -> bool:
        return self.status_of(instance) in STARTABLE

    def is_in_flight(self, instance: models.Model) -> bool:
        return self.status_of(instance) in IN_FLIGHT

    def claim(self, instance: models.Model) -> bool:
        """Atomically move a startable row to ``pending``.

        Returns False, leaving the row untouched, when the row is already
        pending/running/completed or fails ``start_condition``.
        """
        values = self._values(JobStatus.PENDING)
        updated = (
            self.model.objects.filter(pk=instance.pk)
            .filter(**{f"{self.field}__in": list(STARTABLE)})
            .filter(self.start_condition)
            .update(**values)
        )
        if updated:
            self._apply(instance, values)
            return True
        instance.refresh_from_db(fields=[self.field])
        return False

    def transition(
        self, instance: models.Model, target: str, **extra: Any
    ) -> models.Model:
        """Apply ``current -> target`` plus ``extra`` column updates.

        Raises:
            InvalidTransition: The table does not allow the move.
            StaleStatus: The persisted status no longer matches the instance.
        """
        source = self.status_of(instance)
        if not can_transition(source, target):
            raise InvalidTransition(source, target)

        values = self._values(target)
        values.update(extra)
        updated = (
            self.model.objects.filter(pk=instance.pk)
            .filter(**{self.field: source})
            .update(**values)
        )
        if not updated:
            raise StaleStatus(
                f"{self.model.__name__}#{instance.pk}.{self.field} "
                f"is no longer {source or 'unset'!r}"
            )
        self._apply(instance, values)
        logger.debug(
            "%s#%s %s: %s -> %s",
            self.model.__name__,
            instance.pk,
            self.field,
            source or "unset",
            target or "unset",
        )
        return instance

    def release(self, instance: models.Model) -> None:
        """Give back a claim that was never enqueued (pending -> unset)."""
        self.transition(instance, JobStatus.UNSET)

    def reset(self, instance: models.Model) -> bool:
        """Send a finished row back to unset so an explicit re-run can claim it.

        Returns False, leaving the row untouched, while a run is pending or
        running or when the row fails ``start_condition``.
        """
        values = self._values(JobStatus.UNSET)
        updated = (
            self.model.objects.filter(pk=instance.pk)
            .filter(**{f"{self.field}__in": list(RESETTABLE)})
            .filter(self.start_condition)
            .update(**values)
        )
        if updated:
            self._apply(instance, values)
            return True
        instance.refresh_from_db(fields=[self.field])
        return False

    def stale_running(self, older_than) -> models.QuerySet:
        """Rows stuck in ``running`` since before ``older_than``."""
        qs = self.model.objects.filter(**{self.field: JobStatus.RUNNING})
        if self.started_at_field:
            qs = qs.filter(
                Q(**{f"{self.started_at_field}__lt": older_than})
                | Q(**{f"{self.started_at_field}__isnull": True})
            )
        return qs

    def stale_pending(self, older_than) -> models.QuerySet:
        """Rows claimed before ``older_than`` whose run never started."""
        claimed_at = "updated_at" if self.update_timestamp else "created_at"
        return self.model.objects.filter(
            **{self.field: JobStatus.PENDING, f"{claimed_at}__lt": older_than}
        )

    def _values(self, target: str) -> dict[str, Any]:
        values: dict[str, Any] = {self.field: target}
        now = timezone.now()
        if target == JobStatus.RUNNING and self.started_at_field:
            values[self.started_at_field] = now
        if self.update_timestamp:
            values["updated_at"] = now
        return values

    @staticmethod
    def _apply(instance: models.Model, values: dict[str, Any]) -> None:
        expressions = []
        for name, value in values.items():
            if hasattr(value, "resolve_expression"):
                expressions.append(name)
            else:
                setattr(instance, name, value)
        if expressions:
            instance.refresh_from_db(fields=expressions)
