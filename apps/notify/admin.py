"""Admin configuration for notify app."""

from django.contrib import admin
from django.db import models as db_models
from django_json_widget.widgets import JSONEditorWidget

from apps.notify.models import PendingNotification


@admin.register(PendingNotification)
class PendingNotificationAdmin(admin.ModelAdmin):
    list_display = [
        "created_at",
        "project",
        "event_type",
        "status",
        "recipient",
        "digested_at",
    ]
    list_filter = ["event_type", "status", ("digested_at", admin.EmptyFieldListFilter)]
    search_fields = ["message", "recipient", "project__name"]
    readonly_fields = ["created_at", "digested_at", "detail", "next_step"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    date_hierarchy = "created_at"

    fieldsets = [
        (
            "Event",
            {"fields": ["project", "recipient", "event_type", "status", "message", "action_url"]},
        ),
        ("Breakdown", {"fields": ["detail", "next_step", "metadata"]}),
        ("Delivery", {"fields": ["created_at", "digested_at"]}),
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("project")

    @admin.display(description="Detail")
    def detail(self, obj):
        return obj.detail_text() or "-"

    @admin.display(description="Next step")
    def next_step(self, obj):
        return obj.next_step_text() or "-"
