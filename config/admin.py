"""Custom admin site for the supportpages ops console."""

import json
from datetime import timedelta

from django.contrib.admin import AdminSite
from django.db.models import Count, Q, Sum
from django.utils import timezone
from django.utils.html import format_html


def prettify_json(value) -> str:
    """Render a JSON-compatible value as an indented <pre> block for read-only admin fields."""
    if value in (None, "", {}, []):
        return "-"
    try:
        text = json.dumps(value, indent=2, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = str(value)
    return format_html('<pre style="white-space: pre-wrap; margin: 0;">{}</pre>', text)


class SupportPagesAdminSite(AdminSite):
    site_header = "Support Pages"
    site_title = "Support Pages"
    index_title = "Pipeline dashboard"
    index_template = "admin/dashboard.html"

    def index(self, request, extra_context=None):
        extra_context = extra_context or {}
        extra_context.update(self._get_dashboard_context())
        return super().index(request, extra_context=extra_context)

    def _get_dashboard_context(self):
        from apps.intelligence.models import UsageRecord
        from apps.notify.models import PendingNotification
        from apps.orchestration.jobs import JOB_REGISTRY
        from apps.orchestration.state_machine import JobStatus

        now = timezone.now()
        last_7d = now - timedelta(days=7)

        # --- In-flight and failed runs per job kind ---
        job_health = []
        for name, job_class in JOB_REGISTRY.items():
            machine = job_class.status_machine()
            counts = machine.model.objects.filter(job_class.scope()).aggregate(
                running=Count("pk", filter=Q(**{machine.field: JobStatus.RUNNING})),
                pending=Count("pk", filter=Q(**{machine.field: JobStatus.PENDING})),
                failed=Count("pk", filter=Q(**{machine.field: JobStatus.FAILED})),
            )
            job_health.append({"job": name, **counts})

        # --- Tool usage (7d) ---
        usage = (
            UsageRecord.objects.filter(created_at__gte=last_7d)
            .values("job_type")
            .annotate(
                runs=Count("id"),
                failures=Count("id", filter=Q(success=False)),
                cost=Sum("cost_usd"),
                tokens=Sum("output_tokens"),
            )
            .order_by("-runs")
        )

        undigested = PendingNotification.objects.filter(digested_at__isnull=True).count()

        return {
            "job_health": job_health,
            "usage_by_job": list(usage),
            "undigested_notifications": undigested,
        }
