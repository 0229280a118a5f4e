"""
Webhook views for receiving repository events.
"""

import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.webhooks.drivers import get_driver
from apps.webhooks.services import WebhookIngress

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class RepositoryWebhookView(View):
    """
    Webhook endpoint for repository hosts.

    POST /webhooks/<driver>/                  (app-level secret)
    POST /webhooks/<driver>/<project_slug>/   (per-project secret)
    """

    def post(self, request, driver, project_slug=None):
        """Handle an incoming webhook delivery."""
        try:
            webhook_driver = get_driver(driver)
        except ValueError as e:
            return JsonResponse({"status": "error", "message": str(e)}, status=404)

        try:
            result = WebhookIngress(webhook_driver).handle(
                request.body, request.headers, project_slug=project_slug
            )
        except Exception as e:
            logger.exception("Unexpected error processing %s webhook", driver)
            return JsonResponse({"status": "error", "message": str(e)}, status=500)

        return JsonResponse(result.to_dict(), status=result.status_code)

    def get(self, request, driver, project_slug=None):
        """Health check endpoint."""
        return JsonResponse(
            {
                "status": "ok",
                "message": "Webhook endpoint is ready",
                "driver": driver,
            }
        )
