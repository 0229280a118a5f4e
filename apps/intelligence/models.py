"""
Intelligence models.

Records token, cost and timing telemetry for every external analysis tool
invocation, for audit and spend tracking.
"""

from decimal import Decimal

from django.db import models


class ImmutableRecordError(Exception):
    """Raised when code tries to modify a persisted usage record."""


class UsageRecord(models.Model):
    """
    Per-invocation telemetry read from the tool's usage report.

    Rows are append-only: saving an existing row raises ImmutableRecordError.
    """

    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="usage_records",
        help_text="Project the invocation ran for (if any).",
    )
    job_type = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Job kind that invoked the tool (e.g., 'analyze_codebase').",
    )
    run_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="Job run this invocation belongs to.",
    )
    session_id = models.CharField(max_length=128, blank=True, default="")

    # Token usage
    input_tokens = models.PositiveIntegerField(default=0)
    output_tokens = models.PositiveIntegerField(default=0)
    cache_creation_tokens = models.PositiveIntegerField(default=0)
    cache_read_tokens = models.PositiveIntegerField(default=0)

    cost_usd = models.DecimalField(
        max_digits=12,
        decimal_places=6,
        default=Decimal("0"),
        help_text="Total cost reported by the tool.",
    )
    duration_ms = models.PositiveIntegerField(null=True, blank=True)
    num_turns = models.PositiveIntegerField(null=True, blank=True)
    service_tier = models.CharField(max_length=50, blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    success = models.BooleanField(default=True, db_index=True)
    error_message = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["project", "created_at"]),
            models.Index(fields=["job_type", "created_at"]),
        ]

    def __str__(self):
        status = "ok" if self.success else "failed"
        return f"{self.job_type} [{status}] {self.total_tokens} tokens ${self.cost_usd}"

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise ImmutableRecordError("Usage records cannot be modified once created")
        super().save(*args, **kwargs)
