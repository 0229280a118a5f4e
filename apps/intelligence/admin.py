"""Admin configuration for intelligence app."""

from django.contrib import admin
from django.db import models as db_models
from django_json_widget.widgets import JSONEditorWidget

from apps.intelligence.models import UsageRecord
from config.admin import prettify_json


@admin.register(UsageRecord)
class UsageRecordAdmin(admin.ModelAdmin):
    """Read-only admin for usage telemetry. Records are append-only."""

    list_display = [
        "created_at",
        "job_type",
        "project",
        "success",
        "total_tokens",
        "cost_usd",
        "duration_ms",
        "num_turns",
    ]
    list_filter = ["job_type", "success", "service_tier", "created_at"]
    search_fields = ["run_id", "session_id", "project__name", "error_message"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    readonly_fields = [
        "project",
        "job_type",
        "run_id",
        "session_id",
        "input_tokens",
        "output_tokens",
        "cache_creation_tokens",
        "cache_read_tokens",
        "total_tokens",
        "cost_usd",
        "duration_ms",
        "num_turns",
        "service_tier",
        "success",
        "error_message",
        "pretty_metadata",
        "created_at",
    ]
    date_hierarchy = "created_at"

    fieldsets = [
        (
            "Run",
            {"fields": ["project", "job_type", "run_id", "session_id", "success", "error_message"]},
        ),
        (
            "Tokens",
            {
                "fields": [
                    "input_tokens",
                    "output_tokens",
                    "cache_creation_tokens",
                    "cache_read_tokens",
                    "total_tokens",
                ]
            },
        ),
        ("Cost & timing", {"fields": ["cost_usd", "duration_ms", "num_turns", "service_tier"]}),
        ("Metadata", {"fields": ["pretty_metadata"], "classes": ["collapse"]}),
        ("Timestamps", {"fields": ["created_at"]}),
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("project")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    @admin.display(description="Metadata")
    def pretty_metadata(self, obj):
        return prettify_json(obj.metadata)
